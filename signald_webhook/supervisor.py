"""
=====================================================================
signald Connection Supervisor
=====================================================================
Keeps one connection to signald open for the lifetime of the process.

    Disconnected -> Connecting -> Connected -> Disconnected -> ...

- Connect failures are retried forever with exponential backoff
  (base * factor^attempt, capped), reset after every successful connect
- While connected the supervisor thread blocks in the connection's
  reader loop; when it returns the connection is dropped and the loop
  reconnects
- The supervisor thread is the only writer of `connected` and of the
  connection handle; the handle is swapped by a single assignment so
  HTTP threads never see a half-built connection
=====================================================================
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from signald_webhook import signald_client
from signald_webhook.errors import ConnectError, NotConnected
from signald_webhook.metrics import METRIC_SIGNAL_CONNECTED, set_signal_info
from signald_webhook.signald_client import SignaldConnection

logger = logging.getLogger(__name__)


class Backoff:
    """Exponential backoff: base, base*factor, base*factor^2, ... up to cap."""

    def __init__(self, base: float = 0.1, cap: float = 10.0, factor: float = 2.0):
        self.base = base
        self.cap = cap
        self.factor = factor
        self.attempt = 0

    def duration(self) -> float:
        """Delay for the current attempt, then advance to the next one."""
        delay = min(self.base * (self.factor ** self.attempt), self.cap)
        if delay < self.cap:
            self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class ConnectionSupervisor:
    """Background reconnect loop owning the live signald connection."""

    def __init__(
        self,
        socket_path: str,
        backoff: Optional[Backoff] = None,
        submit_timeout: float = 30.0,
        connect_fn: Callable[..., SignaldConnection] = signald_client.connect,
    ):
        self.socket_path = socket_path
        self.backoff = backoff or Backoff()
        self.submit_timeout = submit_timeout
        self.connect_fn = connect_fn

        self.connected = False
        self.identity: Optional[Tuple[str, str]] = None
        self._connection: Optional[SignaldConnection] = None
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -----------------------------------------------------------------
    # Readers (HTTP threads)
    # -----------------------------------------------------------------

    def current_connection(self) -> SignaldConnection:
        connection = self._connection
        if connection is None or connection.closed:
            raise NotConnected()
        return connection

    # -----------------------------------------------------------------
    # Supervisor thread
    # -----------------------------------------------------------------

    def _set_connected(self, value: bool) -> None:
        self.connected = value
        METRIC_SIGNAL_CONNECTED.set(1 if value else 0)

    def handle_event(self, message: Dict[str, Any]) -> None:
        """Handle a message pushed by signald outside any request."""
        if message.get("type") == "version":
            data = message.get("data") or {}
            name = str(data.get("name", ""))
            version = str(data.get("version", ""))
            self.identity = (name, version)
            set_signal_info(name, version)
            logger.info(f"Connected to {name} {version}")
        else:
            logger.debug(f"Ignoring signald event: {message.get('type')}")

    def run(self) -> None:
        """Reconnect loop. Returns only after stop()."""
        logger.info(f"signald supervisor started (socket: {self.socket_path})")

        while not self.stop_event.is_set():
            try:
                connection = self.connect_fn(self.socket_path, submit_timeout=self.submit_timeout)
            except ConnectError as e:
                self._set_connected(False)
                delay = self.backoff.duration()
                logger.warning(f"unable to connect: {e}, retry in {delay:.2f}s")
                self.stop_event.wait(delay)
                continue

            self.backoff.reset()
            self._connection = connection
            self._set_connected(True)
            logger.info(f"Connected to signald at {self.socket_path}")

            try:
                connection.listen(self.handle_event)
            finally:
                self._connection = None
                self._set_connected(False)
                connection.close()

            if not self.stop_event.is_set():
                logger.warning("signald connection lost, reconnecting")

        logger.info("signald supervisor stopped")

    def start(self) -> threading.Thread:
        self._set_connected(False)
        self._thread = threading.Thread(target=self.run, daemon=True, name="SignaldSupervisor")
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 5.0) -> None:
        self.stop_event.set()
        connection = self._connection
        if connection is not None:
            connection.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
