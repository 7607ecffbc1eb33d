"""
=====================================================================
signald-webhook Configuration
=====================================================================
Two layers of configuration:

- ServiceConfig: runtime settings from CLI flags and environment
  variables (listen address, signald socket, backoff, submit timeout)
- WebhookConfig: receivers and template globs from the YAML file
  named by -config

Both are validated at startup and raise ConfigError on violation.
=====================================================================
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from signald_webhook.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_LISTEN = ":9716"
DEFAULT_SOCKET_PATH = "/var/run/signald/signald.sock"


# =====================================================================
# RUNTIME SETTINGS
# =====================================================================

def parse_listen_address(listen: str) -> Tuple[str, int]:
    """
    Split a Go-style "[host]:port" listen address.

    ":9716" binds every interface; "[::1]:9716" is an IPv6 literal.
    """
    host, sep, port_str = listen.rpartition(":")
    if not sep:
        raise ConfigError(f"listen address must be [host]:port, got: {listen!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"listen port is not a number: {listen!r}")
    if port < 1 or port > 65535:
        raise ConfigError(f"listen port must be between 1-65535, got: {port}")
    return host or "0.0.0.0", port


class ServiceConfig:
    """Service configuration loaded from CLI flags and environment variables."""

    def __init__(
        self,
        listen: Optional[str] = None,
        socket_path: Optional[str] = None,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        env = os.environ if environ is None else environ
        try:
            self.LISTEN = listen or env.get("WEBHOOK_LISTEN", DEFAULT_LISTEN)
            self.SIGNALD_SOCKET = socket_path or env.get("SIGNALD_SOCKET", DEFAULT_SOCKET_PATH)
            self.CONFIG_PATH = config_path or env.get("WEBHOOK_CONFIG", "")

            # Reconnect backoff (seconds)
            self.BACKOFF_BASE = float(env.get("SIGNALD_BACKOFF_BASE", 0.1))
            self.BACKOFF_MAX = float(env.get("SIGNALD_BACKOFF_MAX", 10.0))
            self.BACKOFF_FACTOR = float(env.get("SIGNALD_BACKOFF_FACTOR", 2.0))

            self.SUBMIT_TIMEOUT = float(env.get("SIGNALD_SUBMIT_TIMEOUT", 30.0))
        except ValueError as e:
            raise ConfigError(f"Configuration error: {e}")

        self._validate()

    def _validate(self):
        """Validate critical configuration values."""
        if not self.CONFIG_PATH:
            raise ConfigError("-config is required but not set")
        if not self.SIGNALD_SOCKET:
            raise ConfigError("-signald socket path is empty")

        self.HOST, self.PORT = parse_listen_address(self.LISTEN)

        if self.BACKOFF_BASE <= 0:
            raise ConfigError(f"SIGNALD_BACKOFF_BASE must be positive: {self.BACKOFF_BASE}")
        if self.BACKOFF_MAX < self.BACKOFF_BASE:
            raise ConfigError(
                f"SIGNALD_BACKOFF_MAX ({self.BACKOFF_MAX}) is below "
                f"SIGNALD_BACKOFF_BASE ({self.BACKOFF_BASE})"
            )
        if self.BACKOFF_FACTOR <= 1:
            raise ConfigError(f"SIGNALD_BACKOFF_FACTOR must be greater than 1: {self.BACKOFF_FACTOR}")
        if self.SUBMIT_TIMEOUT <= 0:
            raise ConfigError(f"SIGNALD_SUBMIT_TIMEOUT must be positive: {self.SUBMIT_TIMEOUT}")


# =====================================================================
# RECEIVERS FILE
# =====================================================================

@dataclass(frozen=True)
class Receiver:
    """A named sender identity, recipient templates and body template."""

    name: str
    sender: str = ""
    to: Tuple[str, ...] = ()
    template: str = ""


@dataclass(frozen=True)
class WebhookConfig:
    receivers: Tuple[Receiver, ...]
    templates: Tuple[str, ...] = ()
    receivers_by_name: Dict[str, Receiver] = field(default_factory=dict, compare=False)

    def get_receiver(self, name: str) -> Optional[Receiver]:
        return self.receivers_by_name.get(name)


def _string_list(value, what: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{what} must be a list of strings")
    return tuple(value)


def _parse_receiver(index: int, raw) -> Receiver:
    if not isinstance(raw, dict):
        raise ConfigError(f"receivers[{index}] must be a mapping")
    name = raw.get("name")
    if not name:
        raise ConfigError("Receiver missing 'name:'")
    if not isinstance(name, str):
        raise ConfigError(f"receivers[{index}].name must be a string")
    return Receiver(
        name=name,
        sender=str(raw.get("sender") or ""),
        to=_string_list(raw.get("to"), f"receiver {name!r} 'to'"),
        template=str(raw.get("template") or ""),
    )


def parse_config(document) -> WebhookConfig:
    """Build a WebhookConfig from an already-parsed YAML document."""
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError("configuration must be a mapping")

    raw_receivers = document.get("receivers") or []
    if not isinstance(raw_receivers, list):
        raise ConfigError("'receivers' must be a list")

    receivers: List[Receiver] = []
    by_name: Dict[str, Receiver] = {}
    for index, raw in enumerate(raw_receivers):
        recv = _parse_receiver(index, raw)
        if recv.name in by_name:
            raise ConfigError(f"Duplicate receiver name: {recv.name!r}")
        by_name[recv.name] = recv
        receivers.append(recv)

    if not receivers:
        raise ConfigError("no receivers defined")

    return WebhookConfig(
        receivers=tuple(receivers),
        templates=_string_list(document.get("templates"), "'templates'"),
        receivers_by_name=by_name,
    )


def load_config(path: str) -> WebhookConfig:
    """
    Load and validate the receivers file.

    Raises:
        ConfigError: file missing or unreadable, invalid YAML, missing or
            duplicate receiver names, no receivers
    """
    try:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"{path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}")

    try:
        config = parse_config(document)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}")

    logger.info(
        f"Loaded {len(config.receivers)} receiver(s) and "
        f"{len(config.templates)} template glob(s) from {path}"
    )
    return config
