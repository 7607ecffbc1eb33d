"""
Exception hierarchy for the signald webhook service.

Startup errors (ConfigError) are fatal. Per-request errors are mapped to
HTTP status codes by the Flask front door. Daemon errors are either retried
by the connection supervisor (ConnectError) or reported per recipient
(SubmitError).
"""

from typing import List, Optional


class WebhookError(Exception):
    """Base class for all service errors."""


class ConfigError(WebhookError):
    """Configuration file could not be read, parsed or validated."""


class DecodeError(WebhookError):
    """Inbound webhook body is not a valid Alertmanager message."""


class RenderError(WebhookError):
    """A template failed to render against an alert message."""

    def __init__(self, template_text: str, cause: Exception):
        super().__init__(f"{cause}")
        self.template_text = template_text
        self.cause = cause


class DispatchError(WebhookError):
    """Recoverable failure while handling one alert message."""


class UnknownReceiver(DispatchError):
    def __init__(self, receiver_name: str):
        super().__init__(f"{receiver_name!r}: Receiver not configured")
        self.receiver_name = receiver_name


class SubmitFailed(DispatchError):
    """One or more recipients could not be handed to signald."""

    def __init__(self, receiver_name: str, failures: List[str]):
        super().__init__(
            f"{receiver_name!r}: {len(failures)} recipient(s) failed: {'; '.join(failures)}"
        )
        self.receiver_name = receiver_name
        self.failures = failures


class SignaldError(WebhookError):
    """Communication failure with the signald daemon."""


class ConnectError(SignaldError):
    """The daemon socket could not be opened."""


class SubmitError(SignaldError):
    """A send request was rejected or could not be delivered to signald."""

    def __init__(self, message: str, response: Optional[dict] = None):
        super().__init__(message)
        self.response = response


class NotConnected(SubmitError):
    def __init__(self):
        super().__init__("not connected to signald")
