import pytest

from speedprobe.errors import ProtocolError
from speedprobe.timing import PhaseRecorder, TimedTransaction, parse_server_timing


def test_parse_cloudflare_header():
    assert parse_server_timing("cfRequestDuration;dur=12.345") == 12.345


def test_parse_does_not_depend_on_name_length():
    header = "edge;desc=\"Edge\";dur=3, origin;dur=17.5"
    assert parse_server_timing(header, metric="origin") == 17.5
    assert parse_server_timing(header, metric="edge") == 3.0


def test_parse_quoted_duration_and_whitespace():
    assert parse_server_timing(' cfRequestDuration ; dur="8.25" ') == 8.25


@pytest.mark.parametrize(
    "header",
    [
        "cfRequestDuration",
        "cfRequestDuration;desc=x",
        "cfRequestDuration;dur=",
        "cfRequestDuration;dur=fast",
        "cfRequestDuration;dur=-1",
        "cfRequestDuration;dur=inf",
        "otherMetric;dur=5",
        "",
    ],
)
def test_parse_rejects_malformed_headers(header):
    with pytest.raises(ProtocolError) as excinfo:
        parse_server_timing(header)
    assert repr(header) in str(excinfo.value)


def test_parse_missing_header():
    with pytest.raises(ProtocolError, match="no Server-Timing header"):
        parse_server_timing(None)


def test_recorder_keeps_first_mark(ticking_clock):
    recorder = PhaseRecorder(ticking_clock([1.0, 2.0, 3.0]))
    assert recorder.mark("started") == 1.0
    assert recorder.mark("started") == 1.0
    assert recorder.mark("first_byte") == 2.0


def test_recorder_follows_trace_events(ticking_clock):
    recorder = PhaseRecorder(ticking_clock([10.0, 20.0, 30.0, 40.0]))
    recorder.mark("started")

    recorder.trace("connection.start_tls.started", {})
    assert recorder.phase == "tls"
    recorder.trace("connection.start_tls.complete", {})
    recorder.trace("http11.send_request_headers.started", {})
    assert recorder.phase == "request"
    recorder.trace("http11.receive_response_headers.complete", {})
    recorder.mark("completed")

    tx = recorder.finalize(server_processing_ms=5.0)
    assert tx.tls_handshake_at == 20.0
    assert tx.first_byte_at == 30.0
    assert tx.completed_at == 40.0
    assert tx.dns_lookup_at is None
    assert tx.tcp_connect_at is None


def test_recorder_ignores_unrelated_events(ticking_clock):
    recorder = PhaseRecorder(ticking_clock([]))
    recorder.trace("connection.close.started", {})
    assert recorder.get("tls_handshake") is None
    assert recorder.phase == "connect"


def test_transaction_phases_are_ordered():
    tx = TimedTransaction(
        started=0.0,
        dns_lookup_at=2.0,
        tcp_connect_at=5.0,
        tls_handshake_at=9.0,
        first_byte_at=20.0,
        completed_at=35.0,
        server_processing_ms=4.0,
    )
    stamps = [at for _, at in tx.phases()]
    assert stamps == sorted(stamps)
    assert tx.ttfb_ms == 20.0
    assert tx.transfer_ms == 15.0
    assert tx.total_ms == 35.0


def test_transaction_phases_skip_absent_steps():
    tx = TimedTransaction(started=0.0, first_byte_at=1.0, completed_at=2.0, server_processing_ms=0.5)
    assert [name for name, _ in tx.phases()] == ["started", "first_byte", "completed"]
    assert tx.to_dict()["dns_lookup_at"] is None
