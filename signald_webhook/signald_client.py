"""
=====================================================================
signald Socket Client
=====================================================================
Minimal client for the signald daemon's UNIX socket.

signald speaks newline-delimited JSON in both directions. Requests
carry an `id`; the daemon answers with a message holding the same `id`
and pushes unsolicited messages (version banner, incoming messages,
listener state) without one.

Only the surface the webhook needs is implemented:
- connect(socket_path) -> SignaldConnection
- SignaldConnection.listen(handler): reader loop, blocks until the
  connection drops, routes responses to waiting submitters and
  everything else to `handler`
- SignaldConnection.submit(request): writes one request and waits for
  its response
=====================================================================
"""

import json
import uuid
import socket
import logging
import threading
from typing import Any, Callable, Dict, Optional

from signald_webhook.errors import ConnectError, SubmitError
from signald_webhook.models import SendRequest

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LENGTH = 200


class _PendingRequest:
    __slots__ = ("event", "response")

    def __init__(self):
        self.event = threading.Event()
        self.response: Optional[Dict[str, Any]] = None


class SignaldConnection:
    """One open socket to signald. Safe to submit from several threads."""

    def __init__(self, sock: socket.socket, socket_path: str = "", submit_timeout: float = 30.0):
        self.sock = sock
        self.socket_path = socket_path
        self.submit_timeout = submit_timeout
        self._write_lock = threading.Lock()
        self._pending: Dict[str, _PendingRequest] = {}
        self._pending_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    # -----------------------------------------------------------------
    # Reader
    # -----------------------------------------------------------------

    def listen(self, handler: Optional[Callable[[Dict[str, Any]], None]] = None) -> None:
        """
        Read messages until the daemon closes the socket or it errors.

        Responses to submitted requests are handed to the waiting
        submitter; all other messages go to `handler`.
        """
        try:
            with self.sock.makefile("r", encoding="utf-8") as reader:
                for line in reader:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        message = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Discarding non-JSON line from signald: {line[:MESSAGE_PREVIEW_LENGTH]}")
                        continue
                    if not isinstance(message, dict):
                        continue
                    if self._deliver_response(message):
                        continue
                    if handler is not None:
                        try:
                            handler(message)
                        except Exception as e:
                            logger.error(f"signald event handler failed: {e}", exc_info=True)
        except (OSError, ValueError) as e:
            # ValueError: socket closed underneath the reader
            if not self.closed:
                logger.warning(f"signald connection error: {e}")
        finally:
            self._fail_pending()

    def _deliver_response(self, message: Dict[str, Any]) -> bool:
        request_id = message.get("id")
        if not request_id:
            return False
        with self._pending_lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        pending.response = message
        pending.event.set()
        return True

    def _fail_pending(self):
        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for p in pending:
            p.event.set()

    # -----------------------------------------------------------------
    # Writer
    # -----------------------------------------------------------------

    def submit(self, request: SendRequest) -> Dict[str, Any]:
        """
        Send a request and wait for signald's answer.

        Raises:
            SubmitError: write failed, connection dropped, no answer within
                submit_timeout, or signald reported an error
        """
        if self.closed:
            raise SubmitError("signald connection is closed")

        request_id = str(uuid.uuid4())
        payload = request.to_payload()
        payload["id"] = request_id
        pending = _PendingRequest()
        with self._pending_lock:
            self._pending[request_id] = pending

        try:
            data = (json.dumps(payload) + "\n").encode("utf-8")
            with self._write_lock:
                self.sock.sendall(data)
        except OSError as e:
            with self._pending_lock:
                self._pending.pop(request_id, None)
            raise SubmitError(f"error writing to signald: {e}")

        if not pending.event.wait(self.submit_timeout):
            with self._pending_lock:
                self._pending.pop(request_id, None)
            raise SubmitError(f"no response from signald after {self.submit_timeout}s")

        response = pending.response
        if response is None:
            raise SubmitError("signald connection closed before response")
        if response.get("error") or response.get("error_type"):
            error = response.get("error")
            if isinstance(error, dict):
                error = error.get("message") or json.dumps(error)
            raise SubmitError(
                f"signald rejected request: {response.get('error_type', '')} {error or ''}".strip(),
                response=response,
            )
        return response

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
        self._fail_pending()


def connect(socket_path: str, submit_timeout: float = 30.0) -> SignaldConnection:
    """
    Open a connection to signald.

    Raises:
        ConnectError: the socket does not exist or refuses the connection
    """
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(socket_path)
    except OSError as e:
        sock.close()
        raise ConnectError(f"unable to connect to {socket_path}: {e}")
    return SignaldConnection(sock, socket_path=socket_path, submit_timeout=submit_timeout)
