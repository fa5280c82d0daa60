import os
import shutil
import ssl
import subprocess
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Iterable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest


def pytest_configure(config):
    """
    Hook that runs before test collection.
    Point the client at a host that can never resolve, so no test reaches the real service.
    """
    os.environ["SPEEDPROBE_HOST"] = "speedprobe.invalid"
    os.environ.pop("SPEEDPROBE_TIMEOUT", None)
    os.environ.pop("SPEEDPROBE_SERVER_TIMING_METRIC", None)


@pytest.fixture
def ticking_clock() -> Callable[[Iterable[float]], Callable[[], float]]:
    """Build a clock that returns the given timestamps one call at a time."""

    def make(ticks: Iterable[float]) -> Callable[[], float]:
        values = iter(ticks)
        return lambda: next(values)

    return make


@pytest.fixture
def mock_transport() -> Callable[..., Callable]:
    """Build a transport_factory that serves every request from a handler."""

    def make(handler: Callable[[httpx.Request], httpx.Response]) -> Callable:
        return lambda recorder: httpx.MockTransport(handler)

    return make


def make_transaction(
    started: float = 0.0,
    first_byte_at: float = 50.0,
    completed_at: float = 100.0,
    server_processing_ms: float = 10.0,
):
    # Imported late so pytest_configure has set the environment before speedprobe.config loads
    from speedprobe.timing import TimedTransaction

    return TimedTransaction(
        started=started,
        first_byte_at=first_byte_at,
        completed_at=completed_at,
        server_processing_ms=server_processing_ms,
    )


class FakeClient:
    """Stands in for SpeedTestClient; records every call in order."""

    def __init__(self, download=None, upload=None, locations=None, trace=None):
        self.calls = []
        self._download = download or (lambda byte_count: make_transaction())
        self._upload = upload or (lambda byte_count: make_transaction())
        self._locations = locations or (lambda: {"IAD": "Ashburn"})
        self._trace = trace or (lambda: {"ip": "203.0.113.7", "loc": "US", "colo": "IAD"})

    def download(self, byte_count):
        self.calls.append(("download", byte_count))
        return self._download(byte_count)

    def upload(self, byte_count):
        self.calls.append(("upload", byte_count))
        return self._upload(byte_count)

    def fetch_server_locations(self):
        return self._locations()

    def fetch_trace(self):
        return self._trace()


class _SpeedHandler(BaseHTTPRequestHandler):
    """Serves the download and upload endpoints the way the real service shapes them."""

    protocol_version = "HTTP/1.1"

    def _reply(self, body: bytes) -> None:
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Server-Timing", "cfRequestDuration;dur=0.5")
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        url = urlparse(self.path)
        if url.path != "/__down":
            self.send_error(404)
            return
        byte_count = int(parse_qs(url.query).get("bytes", ["0"])[0])
        self._reply(b"0" * byte_count)

    def do_POST(self):
        if self.path != "/__up":
            self.send_error(404)
            return
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        self._reply(b"")

    def log_message(self, format, *args):
        pass


@pytest.fixture(scope="session")
def tls_server(tmp_path_factory):
    """
    Run a local HTTPS server with a throwaway self-signed certificate.
    Yields the port it listens on (127.0.0.1 only).
    """
    openssl = shutil.which("openssl")
    if openssl is None:
        pytest.skip("openssl is needed to generate a test certificate")

    cert_dir = tmp_path_factory.mktemp("tls")
    cert, key = cert_dir / "cert.pem", cert_dir / "key.pem"
    subprocess.run(
        [
            openssl, "req", "-x509", "-newkey", "rsa:2048", "-nodes",
            "-keyout", str(key), "-out", str(cert),
            "-days", "1", "-subj", "/CN=localhost",
        ],
        check=True,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert, key)

    server = ThreadingHTTPServer(("127.0.0.1", 0), _SpeedHandler)
    server.daemon_threads = True
    server.socket = context.wrap_socket(server.socket, server_side=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    try:
        yield server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)
