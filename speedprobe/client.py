"""
HTTP client for the speed test service.

Each transaction runs on its own connection so that DNS, TCP and TLS phases
are measured fresh every time and no trial shares state with another.
"""

from __future__ import annotations

import contextlib
import ipaddress
import json
import logging
import socket
import typing
from typing import Any, Callable, Iterator

import httpcore
import httpx

from speedprobe import config
from speedprobe.errors import ProtocolError, TransportError
from speedprobe.timing import Clock, PhaseRecorder, TimedTransaction, parse_server_timing

logger = logging.getLogger(__name__)

# Content of the synthesized upload body is irrelevant, only its length matters
UPLOAD_FILLER = b"0"

TransportFactory = Callable[[PhaseRecorder], httpx.BaseTransport]

_HTTPCORE_ERRORS: tuple[tuple[type[Exception], type[httpx.TransportError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.ProtocolError, httpx.RemoteProtocolError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
)


@contextlib.contextmanager
def _map_httpcore_errors() -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        for source, target in _HTTPCORE_ERRORS:
            if isinstance(exc, source):
                raise target(str(exc)) from exc
        raise


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


class PhaseRecordingBackend(httpcore.NetworkBackend):
    """Network backend that timestamps name resolution and the TCP handshake.

    httpcore resolves and connects in a single call, so resolution is done
    here explicitly and the inner backend is handed the resolved address.
    TLS still uses the original host name for SNI and certificate checks.
    """

    def __init__(self, recorder: PhaseRecorder, backend: httpcore.NetworkBackend | None = None):
        self._recorder = recorder
        self._backend = backend or httpcore.SyncBackend()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: typing.Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        addresses = [host]
        if not _is_ip_literal(host):
            self._recorder.phase = "dns"
            try:
                infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
            except OSError as exc:
                raise httpcore.ConnectError(str(exc)) from exc
            self._recorder.mark("dns_lookup")
            addresses = list(dict.fromkeys(info[4][0] for info in infos))

        # Try every resolved address in order, like socket.create_connection
        self._recorder.phase = "connect"
        last_error: Exception | None = None
        for address in addresses:
            try:
                stream = self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                logger.debug(f"connect to {address}:{port} failed: {exc}")
                last_error = exc
                continue
            self._recorder.mark("tcp_connect")
            return stream

        assert last_error is not None
        raise last_error

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: typing.Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        return self._backend.connect_unix_socket(path, timeout=timeout, socket_options=socket_options)

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


class _ResponseStream(httpx.SyncByteStream):
    def __init__(self, httpcore_stream: typing.Iterable[bytes]) -> None:
        self._httpcore_stream = httpcore_stream

    def __iter__(self) -> Iterator[bytes]:
        with _map_httpcore_errors():
            for part in self._httpcore_stream:
                yield part

    def close(self) -> None:
        if hasattr(self._httpcore_stream, "close"):
            self._httpcore_stream.close()


class TimedTransport(httpx.BaseTransport):
    """Single-connection transport that reports connection phases to a recorder.

    Keep-alive is disabled, so the connection is torn down with the response
    and never reused by a later transaction.
    """

    def __init__(self, recorder: PhaseRecorder, verify: bool = True):
        self._pool = httpcore.ConnectionPool(
            ssl_context=httpx.create_ssl_context(verify=verify),
            max_connections=1,
            max_keepalive_connections=0,
            network_backend=PhaseRecordingBackend(recorder),
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        assert isinstance(request.stream, httpx.SyncByteStream)

        req = httpcore.Request(
            method=request.method,
            url=httpcore.URL(
                scheme=request.url.raw_scheme,
                host=request.url.raw_host,
                port=request.url.port,
                target=request.url.raw_path,
            ),
            headers=request.headers.raw,
            content=request.stream,
            extensions=request.extensions,
        )
        with _map_httpcore_errors():
            resp = self._pool.handle_request(req)

        assert isinstance(resp.stream, typing.Iterable)

        return httpx.Response(
            status_code=resp.status,
            headers=resp.headers,
            stream=_ResponseStream(resp.stream),
            extensions=resp.extensions,
        )

    def close(self) -> None:
        self._pool.close()


def parse_locations(payload: Any) -> dict[str, str]:
    """Turn the /locations payload into a {colo code: city} mapping."""
    if not isinstance(payload, list):
        raise ProtocolError(f"expected a list of locations, got {type(payload).__name__}")
    try:
        return {entry["iata"]: entry["city"] for entry in payload}
    except (KeyError, TypeError) as e:
        raise ProtocolError(f"malformed location entry: {e!r}") from e


def parse_trace(text: str) -> dict[str, str]:
    """Parse the newline-delimited key=value lines of /cdn-cgi/trace."""
    data = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        data[key.strip()] = value.strip()
    return data


class SpeedTestClient:
    """HTTP client for the speed test service.

    Issues timed transactions for the benchmark primitives:
    - Download: GET /__down?bytes=N
    - Upload: POST /__up with an N-byte body
    and plain requests for the metadata endpoints:
    - GET /locations
    - GET /cdn-cgi/trace
    """

    def __init__(
        self,
        host: str | None = None,
        timeout: float | None = None,
        server_timing_metric: str | None = None,
        clock: Clock | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.host = host or config.get_host()
        self.base_url = f"https://{self.host}"
        self.timeout = timeout  # None disables the deadline
        self.server_timing_metric = server_timing_metric or config.get_server_timing_metric()
        self.clock = clock
        self.transport_factory = transport_factory or TimedTransport

    def _new_client(self, recorder: PhaseRecorder) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            transport=self.transport_factory(recorder),
            timeout=httpx.Timeout(self.timeout),
            trust_env=False,
        )

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
    ) -> TimedTransaction:
        """Perform one round trip and return its phase timestamps.

        Raises:
            TransportError: the connection failed at any phase.
            ProtocolError: error status or missing/malformed Server-Timing header.
        """
        recorder = PhaseRecorder(self.clock)

        with self._new_client(recorder) as client:
            request = client.build_request(
                method,
                path,
                params=params,
                content=content,
                extensions={"trace": recorder.trace},
            )
            try:
                recorder.mark("started")
                response = client.send(request, stream=True)
                try:
                    recorder.mark("first_byte")
                    recorder.phase = "body"
                    for _ in response.iter_raw():
                        pass
                    recorder.mark("completed")
                finally:
                    response.close()
            except httpx.TransportError as e:
                raise TransportError(recorder.phase, e) from e

        if response.status_code >= 400:
            raise ProtocolError(f"{method} {path} returned HTTP {response.status_code}")

        server_processing_ms = parse_server_timing(
            response.headers.get("server-timing"),
            self.server_timing_metric,
        )
        transaction = recorder.finalize(server_processing_ms)

        logger.debug(f"{method} {path} params={params}: {transaction.to_dict()}")
        return transaction

    def download(self, byte_count: int) -> TimedTransaction:
        """Fetch byte_count bytes from the download endpoint."""
        return self.request("GET", "/__down", params={"bytes": byte_count})

    def upload(self, byte_count: int) -> TimedTransaction:
        """Send a byte_count-byte body to the upload endpoint."""
        body = UPLOAD_FILLER * byte_count
        return self.request("POST", "/__up", content=body)

    def _get_text(self, path: str) -> str:
        recorder = PhaseRecorder(self.clock)
        try:
            with self._new_client(recorder) as client:
                response = client.get(path)
        except httpx.TransportError as e:
            raise TransportError(recorder.phase, e) from e

        if response.status_code >= 400:
            raise ProtocolError(f"GET {path} returned HTTP {response.status_code}")
        return response.text

    def fetch_server_locations(self) -> dict[str, str]:
        """Map of edge location codes to city names."""
        text = self._get_text("/locations")
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise ProtocolError(f"/locations did not return JSON: {e}") from e
        return parse_locations(payload)

    def fetch_trace(self) -> dict[str, str]:
        """Caller diagnostics: ip, loc, colo and friends."""
        return parse_trace(self._get_text("/cdn-cgi/trace"))
