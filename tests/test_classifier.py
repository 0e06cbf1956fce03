from __future__ import annotations

from abt.metrics import LogLevel
from abt.runner.classifier import (
    EventKind,
    ParserState,
    classify_stderr,
    classify_stdout,
)


def test_benchmark_start_is_info() -> None:
    event = classify_stdout("Benchmarking example.com (be patient)...", ParserState())
    assert event is not None
    assert event.level is LogLevel.INFO
    assert event.kind is EventKind.TEST_START


def test_json_response_is_buffered_then_combined_with_warning() -> None:
    state = ParserState()
    assert classify_stdout('{"status": "fail", "code": "E42", "message": "nope", "statusCode": 403}', state) is None
    assert state.pending is not None

    event = classify_stdout("WARNING: Response code not 2xx (403)", state)
    assert event is not None
    assert event.level is LogLevel.ERROR
    assert event.message == "Request #1: statusCode: 403, status: fail, code: E42, message: nope"
    assert state.pending is None
    assert state.response_count == 1


def test_buffered_response_below_400_only_surfaces_at_high_verbosity() -> None:
    quiet = ParserState(verbosity=2)
    classify_stdout('{"status": "moved", "statusCode": 302}', quiet)
    assert classify_stdout("WARNING: Response code not 2xx (302)", quiet) is None
    assert quiet.pending is None

    loud = ParserState(verbosity=3)
    classify_stdout('{"status": "moved", "statusCode": 302}', loud)
    event = classify_stdout("WARNING: Response code not 2xx (302)", loud)
    assert event is not None
    assert event.level is LogLevel.DEBUG


def test_warning_without_buffer_is_error() -> None:
    event = classify_stdout("WARNING: Response code not 2xx (500)", ParserState())
    assert event is not None
    assert event.level is LogLevel.ERROR
    assert event.message == "Request #1: statusCode: 500"

    event = classify_stdout("WARNING: Response code not 2xx", ParserState())
    assert event is not None
    assert event.message == "Request #1: Non-2xx response"


def test_malformed_json_is_debug_noise() -> None:
    line = "{" + "x" * 200 + "}"
    event = classify_stdout(line, ParserState())
    assert event is not None
    assert event.level is LogLevel.DEBUG
    assert event.kind is EventKind.PARSE_NOISE
    assert event.message == f"Failed to parse JSON: {line[:100]}..."


def test_success_codes_report_progress_every_tenth() -> None:
    state = ParserState(verbosity=2)
    events = [classify_stdout("LOG: Response code = 200", state) for _ in range(20)]
    surfaced = [e for e in events if e is not None]
    assert [e.message for e in surfaced] == [
        "Progress: 10 requests completed",
        "Progress: 20 requests completed",
    ]


def test_success_codes_per_request_at_high_verbosity() -> None:
    state = ParserState(verbosity=3)
    event = classify_stdout("LOG: Response code = 201", state)
    assert event is not None
    assert event.message == "Request #1: HTTP 201"


def test_non_2xx_log_line_is_not_counted() -> None:
    state = ParserState(verbosity=5)
    assert classify_stdout("LOG: Response code = 404", state) is None
    assert state.response_count == 0


def test_unclassified_stdout_is_dropped() -> None:
    assert classify_stdout("Requests per second:    482.33 [#/sec] (mean)", ParserState()) is None
    assert classify_stdout("   ", ParserState()) is None


def test_stderr_rules() -> None:
    state = ParserState()
    completed = classify_stderr("Completed 100 requests", state)
    assert completed is not None
    assert completed.level is LogLevel.INFO
    assert completed.message == "Finished: 100 requests"

    failure = classify_stderr("apr_socket_recv: Connection reset by peer (104)", state)
    assert failure is not None
    assert failure.level is LogLevel.ERROR

    assert classify_stderr("Finished 100 requests", state) is None
    assert classify_stderr("SSL/TLS Handshake [Length 0046] ServerHello", state) is None
    assert classify_stderr("Cipher Bits: 256", state) is None

    other = classify_stderr("something unexpected", state)
    assert other is not None
    assert other.level is LogLevel.DEBUG
    assert other.message == "STDERR: something unexpected"


def test_verbosity_defaults_when_unset() -> None:
    assert ParserState.for_verbosity(None).verbosity == 2
    assert ParserState.for_verbosity(4).verbosity == 4
