"""
=====================================================================
Alert Dispatcher
=====================================================================
Turns one decoded Alertmanager message into signald send requests.

1. Resolve the receiver by name (UnknownReceiver if absent)
2. Render the body template; on failure fall back to a message that
   names the group labels and the error
3. Render and classify each `to` template independently; render
   failures and unknown prefixes are logged and skipped
4. Submit one send request per recipient; submit failures are
   collected and raised as SubmitFailed after every recipient has
   been tried
=====================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import List

from signald_webhook.config import WebhookConfig
from signald_webhook.errors import RenderError, SubmitError, SubmitFailed, UnknownReceiver
from signald_webhook.metrics import METRIC_MESSAGES_SENT
from signald_webhook.models import AlertMessage, SendRequest, parse_recipient
from signald_webhook.supervisor import ConnectionSupervisor
from signald_webhook.templates import TemplateSet

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    receiver: str
    sent: int = 0
    skipped: int = 0
    body_fallback: bool = False
    recipients: List[str] = field(default_factory=list)


class AlertDispatcher:

    def __init__(self, config: WebhookConfig, templates: TemplateSet, supervisor: ConnectionSupervisor):
        self.config = config
        self.templates = templates
        self.supervisor = supervisor

    def dispatch(self, message: AlertMessage) -> DispatchResult:
        """
        Send `message` to every recipient of its receiver.

        Raises:
            UnknownReceiver: message.receiver is not configured
            SubmitFailed: at least one recipient could not be submitted
        """
        recv = self.config.get_receiver(message.receiver)
        if recv is None:
            raise UnknownReceiver(message.receiver)
        logger.info(f"Send via {recv.name!r}: sender={recv.sender!r}, {len(recv.to)} recipient template(s)")

        result = DispatchResult(receiver=recv.name)
        try:
            body = self.templates.render(recv.template, message)
        except RenderError as e:
            logger.warning(f"Body template expansion failed for {recv.name!r}: {e}")
            body = f"{message.groupLabels!r}: Template expansion failed: {e}"
            result.body_fallback = True

        failures: List[str] = []
        for to_template in recv.to:
            try:
                to = self.templates.render(to_template, message)
            except RenderError as e:
                logger.error(f"Error executing to template: {to_template!r}: {e}")
                result.skipped += 1
                continue

            recipient = parse_recipient(to)
            if recipient is None:
                logger.error(f"Unknown to: {to!r}, expected tel:+number or group:id")
                result.skipped += 1
                continue

            request = SendRequest(username=recv.sender, message_body=body, recipient=recipient)
            try:
                self.supervisor.current_connection().submit(request)
            except SubmitError as e:
                logger.error(f"error sending request to signald for {recipient}: {e}")
                METRIC_MESSAGES_SENT.labels(status='fail').inc()
                failures.append(f"{recipient}: {e}")
                continue

            METRIC_MESSAGES_SENT.labels(status='success').inc()
            result.sent += 1
            result.recipients.append(str(recipient))

        if failures:
            raise SubmitFailed(recv.name, failures)

        logger.info(f"Dispatched {recv.name!r}: {result.sent} sent, {result.skipped} skipped")
        return result
