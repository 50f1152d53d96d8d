import socket
from typing import Dict, List, Optional, Sequence, Union

import pytest

BANNER = b"Asterisk Call Manager/5.0.1\r\n"


def extension_state_body(exten: str, status: Optional[int], status_text: Optional[str] = None) -> str:
    lines = ["Message: Extension Status", f"Exten: {exten}", "Context: ext-local", f"Hint: PJSIP/{exten}"]
    if status is not None:
        lines.append(f"Status: {status}")
    if status_text is not None:
        lines.append(f"StatusText: {status_text}")
    return "\r\n".join(lines)


class FakeAMISocket:
    """Scripted stand-in for an AMI TCP connection.

    Replies are queued on sendall and handed back a few bytes per recv, so
    the client has to reassemble frames. An empty queue behaves like a read
    timeout. login_ok=None leaves the Login action unanswered.
    """

    def __init__(
        self,
        states: Optional[Dict[str, Union[str, List[str]]]] = None,
        banner: bytes = BANNER,
        login_ok: Optional[bool] = True,
        silent: Sequence[str] = (),
        late: Sequence[str] = (),
        fail_on: Optional[str] = None,
        pre_login_events: Sequence[str] = (),
        chunk_size: int = 7,
    ):
        self.states = dict(states or {})
        self.login_ok = login_ok
        self.silent = set(silent)
        self.late = set(late)
        self.fail_on = fail_on
        self.pre_login_events = list(pre_login_events)
        self.chunk_size = chunk_size

        self.sent: List[str] = []
        self.timeouts: List[float] = []
        self.close_calls = 0
        self._pending = bytearray(banner)
        self._deferred: List[bytes] = []
        self._broken = False

    def settimeout(self, value):
        self.timeouts.append(value)

    def sendall(self, data: bytes):
        if self.close_calls:
            raise OSError("socket closed")
        text = data.decode("utf-8")
        self.sent.append(text)

        fields = {}
        for line in text.strip().split("\r\n"):
            key, _, value = line.partition(": ")
            fields[key] = value
        action = fields["Action"]
        action_id = fields["ActionID"]

        # A reply held back from the previous action arrives first.
        for frame in self._deferred:
            self._pending += frame
        self._deferred = []

        if action == "Login":
            for event in self.pre_login_events:
                self._pending += f"{event}\r\n\r\n".encode("utf-8")
            if self.login_ok is None:
                return
            if self.login_ok:
                body = "Response: Success\r\nActionID: {id}\r\nMessage: Authentication accepted"
            else:
                body = "Response: Error\r\nActionID: {id}\r\nMessage: Authentication failed"
        elif action == "ExtensionState":
            exten = fields["Exten"]
            if exten == self.fail_on:
                self._broken = True
                return
            if exten in self.silent:
                return
            scripted = self.states.get(exten)
            if isinstance(scripted, list):
                scripted = scripted.pop(0)
            if scripted is None:
                body = "Response: Error\r\nActionID: {id}\r\nMessage: Extension not found"
            else:
                body = "Response: Success\r\nActionID: {id}\r\n" + scripted
            if exten in self.late:
                self._deferred.append((body.format(id=action_id) + "\r\n\r\n").encode("utf-8"))
                return
        elif action == "Logoff":
            body = "Response: Goodbye\r\nActionID: {id}\r\nMessage: Thanks for all the fish."
        else:
            body = "Response: Error\r\nActionID: {id}\r\nMessage: Invalid/unknown command"

        self._pending += (body.format(id=action_id) + "\r\n\r\n").encode("utf-8")

    def recv(self, bufsize: int) -> bytes:
        if self._broken:
            raise ConnectionResetError("connection reset by peer")
        if not self._pending:
            raise socket.timeout("timed out")
        size = min(bufsize, self.chunk_size)
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk

    def close(self):
        self.close_calls += 1

    def actions(self, name: str) -> List[str]:
        return [s for s in self.sent if s.startswith(f"Action: {name}\r\n")]


class FakeConnector:
    """Replacement for socket.create_connection that records each open."""

    def __init__(self, sock: Optional[FakeAMISocket] = None, error: Optional[Exception] = None):
        self.sock = sock
        self.error = error
        self.calls = []

    def __call__(self, address, timeout=None):
        self.calls.append((address, timeout))
        if self.error is not None:
            raise self.error
        return self.sock


@pytest.fixture
def connection_params():
    from clients.ami_client import ConnectionParams

    return ConnectionParams(host="pbx.local", port=5038, username="admin", secret="s3cret")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "freepbx:\n"
        "  url: https://pbx.example.com/\n"
        "  client_id: cid\n"
        "  client_secret: csecret\n"
        "ami:\n"
        "  host: pbx.local\n"
        "  port: 5038\n"
        "  username: admin\n"
        "  secret: s3cret\n"
        "  command_timeout: 1.5\n"
        "cache:\n"
        f"  directory: {tmp_path / 'cache'}\n"
        "  default_ttl_seconds: 60\n",
        encoding="utf-8",
    )
    return path
