from __future__ import annotations

from abt.metrics import aggregate, status_message

AB_OUTPUT = """\
This is ApacheBench, Version 2.3 <$Revision: 1903618 $>
Benchmarking example.com (be patient)...
Server Software:        nginx/1.25.3
Server Hostname:        example.com
Server Port:            8080

Document Path:          /api/items
Document Length:        612 bytes

Concurrency Level:      10
Time taken for tests:   0.207 seconds
Complete requests:      100
Failed requests:        3
Non-2xx responses:      3
Total transferred:      84800 bytes
HTML transferred:       61200 bytes
Requests per second:    482.33 [#/sec] (mean)
Time per request:       20.733 [ms] (mean)
Time per request:       2.073 [ms] (mean, across all concurrent requests)
Transfer rate:          399.42 [Kbytes/sec] received

Percentage of the requests served within a certain time (ms)
  50%     19
  90%     25
 100%     40 (longest request)
"""


def test_parses_labelled_fields() -> None:
    result = aggregate(AB_OUTPUT)
    assert result.server_software == "nginx/1.25.3"
    assert result.server_hostname == "example.com"
    assert result.server_port == 8080
    assert result.document_path == "/api/items"
    assert result.document_length == 612
    assert result.concurrency_level == 10
    assert result.time_taken == 0.207
    assert result.complete_requests == 100
    assert result.failed_requests == 3
    assert result.non_2xx_responses == 3
    assert result.total_transferred == 84800
    assert result.html_transferred == 61200
    assert result.requests_per_second == 482.33
    assert result.time_per_request == 20.733
    assert result.time_per_request_concurrent == 2.073
    assert result.transfer_rate == 399.42
    assert result.percentiles == {50: 19.0, 90: 25.0, 100: 40.0}


def test_histogram_absent_without_status_lines() -> None:
    result = aggregate(AB_OUTPUT)
    assert result.status_codes is None
    assert result.successful_requests is None
    assert result.client_errors is None
    assert result.server_errors is None
    assert result.redirects is None
    assert result.error_summary is None


def test_histogram_from_status_lines() -> None:
    result = aggregate("HTTP/1.1 200\nHTTP/1.1 200\nHTTP/1.1 404\n")
    assert result.status_codes == {"200": 2, "404": 1}
    assert result.successful_requests == 2
    assert result.client_errors == 1
    assert result.server_errors == 0
    assert result.redirects == 0
    assert len(result.error_summary) == 1
    entry = result.error_summary[0]
    assert (entry.status_code, entry.count, entry.message) == ("404", 1, "Not Found")


def test_histogram_classifies_every_range() -> None:
    output = "HTTP/1.0 301 Moved\nHTTP/1.1 503 Service Unavailable\nHTTP/1.1 418 I'm a teapot\n"
    result = aggregate(output)
    assert result.redirects == 1
    assert result.server_errors == 1
    assert result.client_errors == 1
    assert result.successful_requests == 0
    messages = {e.status_code: e.message for e in result.error_summary}
    assert messages == {"301": "Moved Permanently", "503": "Service Unavailable", "418": "HTTP 418"}


def test_unparseable_numbers_default_to_zero() -> None:
    result = aggregate("Document Length:        Variable\nServer Port:\nRequests per second:    n/a\n")
    assert result.document_length == 0
    assert result.server_port == 0
    assert result.requests_per_second == 0.0


def test_empty_output_gives_defaults() -> None:
    result = aggregate("")
    assert result.requests_per_second == 0.0
    assert result.server_hostname == ""
    assert result.percentiles == {}
    assert result.status_codes is None


def test_status_message_table() -> None:
    assert status_message(429) == "Too Many Requests"
    assert status_message(502) == "Bad Gateway"
    assert status_message(599) == "HTTP 599"
