import socket
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path

import pytest

SDK_DIR = Path(__file__).resolve().parents[1] / "sdk-python"
if str(SDK_DIR) not in sys.path:
    sys.path.insert(0, str(SDK_DIR))

from salmon_send.keys import generate_private_key, private_key_to_pem  # noqa: E402


ATOM_ENTRY = b"""<?xml version='1.0' encoding='UTF-8'?>
<entry xmlns="http://www.w3.org/2005/Atom">
  <id>tag:example.com,2011:cafebabe</id>
  <author><name>test</name><uri>acct:test@example.com</uri></author>
  <content>Salmon swim upstream!</content>
  <title>Salmon swim upstream!</title>
  <updated>2011-03-01T12:00:00Z</updated>
</entry>
"""


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_private_key(2048)


@pytest.fixture()
def key_file(tmp_path: Path, rsa_key) -> Path:
    p = tmp_path / "private.key"
    p.write_bytes(private_key_to_pem(rsa_key))
    return p


@pytest.fixture()
def atom_file(tmp_path: Path) -> Path:
    p = tmp_path / "atom.xml"
    p.write_bytes(ATOM_ENTRY)
    return p


class _RecordingHandler(BaseHTTPRequestHandler):
    def log_message(self, fmt, *args):
        pass

    def do_POST(self):
        srv = self.server
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length)
        srv.requests.append({"path": self.path, "headers": dict(self.headers), "body": body})

        payload = srv.reply_body
        self.send_response(srv.reply_status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


class RecordingServer(HTTPServer):
    """Answers every POST with a fixed status/body and records the request."""

    def __init__(self, reply_status: int = 200, reply_body: bytes = b"OK"):
        super().__init__(("127.0.0.1", 0), _RecordingHandler)
        self.reply_status = reply_status
        self.reply_body = reply_body
        self.requests = []

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.server_address[1]}/salmon"


@pytest.fixture()
def mock_endpoint():
    server = RecordingServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture()
def refused_url():
    """URL of a local port with nothing listening."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}/salmon"
