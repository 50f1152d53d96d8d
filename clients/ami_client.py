"""Asterisk Manager Interface (AMI) status poller

Runs one short-lived AMI session per call: connect, read the banner, log in,
ask ExtensionState for each extension, log off, close. Whatever was decoded
before a failure is returned; nothing here raises to the caller.
"""

from __future__ import annotations

import codecs
import logging
import re
import socket
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

log = logging.getLogger(__name__)

TERMINATOR = "\r\n\r\n"
DEFAULT_PORT = 5038
DEFAULT_CONTEXT = "ext-local"


class StatusKind(str, Enum):
    AVAILABLE = "available"
    IN_CALL = "incall"
    BUSY = "busy"
    RINGING = "ringing"
    IN_CALL_AND_RINGING = "incall_ringing"
    ON_HOLD = "hold"
    UNREGISTERED = "unavailable"
    UNKNOWN = "unknown"


# ExtensionState device state codes as reported by Asterisk.
STATUS_TABLE: Dict[int, Tuple[StatusKind, str]] = {
    0: (StatusKind.AVAILABLE, "Available"),
    1: (StatusKind.IN_CALL, "On Call"),
    2: (StatusKind.BUSY, "Busy"),
    4: (StatusKind.UNREGISTERED, "Not Registered"),
    8: (StatusKind.RINGING, "Ringing"),
    9: (StatusKind.IN_CALL_AND_RINGING, "On Call (Ringing)"),
    16: (StatusKind.ON_HOLD, "On Hold"),
}

UNKNOWN_LABEL = "Unknown"

_RE_CODE = re.compile(r"-?\d+")


@dataclass(frozen=True)
class ConnectionParams:
    host: str
    port: int = DEFAULT_PORT
    username: str = ""
    secret: str = ""

    def is_complete(self) -> bool:
        return bool(self.host and self.username and self.secret)


@dataclass(frozen=True)
class SessionTimeouts:
    connect: float = 3.0
    banner: float = 2.0
    command: float = 3.0


@dataclass(frozen=True)
class ExtensionStatus:
    extension: str
    code: int
    kind: StatusKind
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.kind.value, "statusText": self.text}


SessionResult = Dict[str, ExtensionStatus]


class AuthenticationError(Exception):
    """AMI authentication failed."""


class ExchangeTimeout(Exception):
    """No complete response arrived before the exchange deadline."""


def decode_status(code: int) -> Tuple[StatusKind, str]:
    """Map an ExtensionState code to its logical state and default label.

    Negative codes (extension not found / removed) count as unregistered;
    anything missing from the table is unknown.
    """
    if code < 0:
        return StatusKind.UNREGISTERED, "Not Registered"
    return STATUS_TABLE.get(code, (StatusKind.UNKNOWN, UNKNOWN_LABEL))


def parse_fields(frame: str) -> Dict[str, str]:
    """Split a CRLF-framed AMI block into its Key: value fields.

    The first occurrence of a key wins; lines without a colon are ignored.
    """
    fields: Dict[str, str] = {}
    for line in frame.split("\r\n"):
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        fields.setdefault(key.strip(), value.strip())
    return fields


def parse_extension_state(extension: str, response: str) -> Optional[ExtensionStatus]:
    """Decode an ExtensionState response body, or None without a Status line."""
    fields = parse_fields(response)
    raw_code = fields.get("Status", "")
    if not _RE_CODE.fullmatch(raw_code):
        return None

    code = int(raw_code)
    kind, label = decode_status(code)

    if fields.get("StatusText"):
        label = fields["StatusText"]

    return ExtensionStatus(extension=extension, code=code, kind=kind, text=label)


class AMISession:
    """One AMI connection and its read buffer.

    The protocol has no length prefix, so frames are cut on the blank-line
    terminator and any bytes past it stay buffered for the next read.
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self._buffer = ""
        self._action_id = 1

    def _next_action_id(self) -> str:
        action_id = str(self._action_id)
        self._action_id += 1
        return action_id

    def read_until(self, terminator: str, timeout: float) -> str:
        """Return buffered text up to and including `terminator`.

        Raises ExchangeTimeout if the deadline passes first and
        ConnectionError if the peer closes the stream.
        """
        deadline = time.monotonic() + timeout

        while terminator not in self._buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExchangeTimeout(f"no response within {timeout}s")

            self.sock.settimeout(remaining)
            try:
                chunk = self.sock.recv(4096)
            except socket.timeout:
                raise ExchangeTimeout(f"no response within {timeout}s")

            if not chunk:
                raise ConnectionError("AMI connection closed by peer")
            self._buffer += self._decoder.decode(chunk)

        end = self._buffer.index(terminator) + len(terminator)
        frame, self._buffer = self._buffer[:end], self._buffer[end:]
        return frame

    def read_banner(self, timeout: float) -> str:
        """Read the greeting line. Partial text at the deadline still counts."""
        try:
            return self.read_until("\r\n", timeout).strip()
        except ExchangeTimeout:
            if self._buffer:
                banner, self._buffer = self._buffer, ""
                return banner.strip()
            raise

    def send_action(self, action: str, **fields: str) -> str:
        """Write one action frame and return its ActionID.

        Raises ValueError for a field value carrying CR or LF, which would
        otherwise end the frame early and smuggle in a second action.
        """
        for key, value in fields.items():
            if "\r" in str(value) or "\n" in str(value):
                raise ValueError(f"line break in AMI field {key}")
        action_id = self._next_action_id()
        lines = [f"Action: {action}", f"ActionID: {action_id}"]
        lines.extend(f"{key}: {value}" for key, value in fields.items())
        self.sock.sendall(("\r\n".join(lines) + TERMINATOR).encode("utf-8"))
        return action_id

    def exchange(self, action: str, timeout: float, **fields: str) -> str:
        """Send one action and return its response frame.

        Event frames and replies to earlier (timed-out) actions are skipped,
        all within the same deadline.
        """
        action_id = self.send_action(action, **fields)
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExchangeTimeout(f"{action} timed out after {timeout}s")

            frame = self.read_until(TERMINATOR, remaining)
            if "Response:" not in frame:
                continue

            reply_id = parse_fields(frame).get("ActionID")
            if reply_id is None or reply_id == action_id:
                return frame
            log.debug("Skipping stale AMI reply for ActionID %s", reply_id)

    def login(self, username: str, secret: str, timeout: float) -> None:
        response = self.exchange("Login", timeout, Username=username, Secret=secret)
        if "Success" not in response:
            raise AuthenticationError("AMI login rejected")

    def logoff(self, timeout: float) -> None:
        self.send_action("Logoff")
        try:
            self.read_until(TERMINATOR, timeout)
        except (ExchangeTimeout, ConnectionError):
            pass

    def close(self) -> None:
        self.sock.close()


def poll_statuses(
    params: ConnectionParams,
    extensions: Iterable[str],
    timeouts: SessionTimeouts = SessionTimeouts(),
    *,
    context: str = DEFAULT_CONTEXT,
    cancel: Optional[threading.Event] = None,
    connect: Callable[..., socket.socket] = socket.create_connection,
) -> SessionResult:
    """Poll ExtensionState for each extension over a single AMI session.

    Args:
        params: AMI host, port and manager credentials
        extensions: Extension numbers, queried in order
        timeouts: Connect, banner and per-command limits in seconds
        context: Dialplan context holding the extension hints
        cancel: Set to stop before the next ExtensionState query
        connect: Socket factory, called as connect((host, port), timeout=...)

    Returns:
        Mapping of extension to decoded status. Extensions that timed out or
        returned no Status line are absent; an empty mapping means the session
        could not be established.
    """
    results: SessionResult = {}

    if not params.is_complete():
        log.info("AMI status polling disabled: host or credentials not configured")
        return results

    try:
        sock = connect((params.host, params.port), timeout=timeouts.connect)
    except OSError as e:
        log.warning("Failed to connect to AMI at %s:%s: %s", params.host, params.port, e)
        return results

    session = AMISession(sock)
    logged_in = False
    try:
        try:
            banner = session.read_banner(timeouts.banner)
        except (ExchangeTimeout, ConnectionError) as e:
            log.warning("No AMI banner from %s:%s: %s", params.host, params.port, e)
            return results
        log.debug("AMI banner: %s", banner)

        try:
            session.login(params.username, params.secret, timeouts.command)
        except (AuthenticationError, ExchangeTimeout) as e:
            log.warning("AMI authentication failed for %s:%s: %s", params.host, params.port, e)
            return results
        logged_in = True

        for extension in extensions:
            if cancel is not None and cancel.is_set():
                log.info("AMI status poll cancelled after %d results", len(results))
                break

            try:
                response = session.exchange(
                    "ExtensionState", timeouts.command, Exten=extension, Context=context
                )
            except ExchangeTimeout:
                log.warning("ExtensionState timed out for %s", extension)
                continue
            except ValueError:
                log.warning("Skipping extension %r: not a valid AMI field value", extension)
                continue

            status = parse_extension_state(extension, response)
            if status is None:
                log.warning("No Status field in ExtensionState reply for %s", extension)
                continue
            results[extension] = status
    except OSError as e:
        log.warning("AMI session aborted after %d results: %s", len(results), e)
    except Exception:
        log.exception("Unexpected error during AMI session with %s:%s", params.host, params.port)
    finally:
        if logged_in:
            try:
                session.logoff(timeouts.command)
            except OSError:
                pass
        try:
            session.close()
        except OSError:
            pass

    return results
