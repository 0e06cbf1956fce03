from __future__ import annotations

import json
import os
from pathlib import Path

from abt.config import HttpMethod, TrialConfig
from abt.runner.command import build_command, redact_argv, remove_payload, transform_body


def _headers_from_argv(argv: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for flag, value in zip(argv, argv[1:]):
        if flag == "-H":
            key, _, rest = value.partition(": ")
            headers[key] = rest
    return headers


def test_minimal_get_command() -> None:
    config = TrialConfig(url="http://example.com/", requests=100, concurrency=10)
    built = build_command(config, "s1")
    assert built.argv == ["ab", "-n", "100", "-c", "10", "-v", "3", "http://example.com/"]
    assert built.payload_file is None


def test_full_argument_order(tmp_path: Path) -> None:
    config = TrialConfig(
        url="http://example.com/api",
        requests=50,
        concurrency=5,
        method=HttpMethod.PUT,
        timelimit=30,
        timeout=10,
        keepalive=True,
        headers={"X-A": "1"},
        cookies={"sid": "abc"},
        body='{"a": 1}',
        content_type="application/json",
        auth_username="user",
        auth_password="pw",
        proxy_url="proxy:3128",
        verbosity=4,
        accept_varying_length=True,
    )
    built = build_command(config, "s2", scratch_dir=str(tmp_path))
    assert built.payload_file is not None
    assert built.argv == [
        "ab",
        "-n", "50",
        "-c", "5",
        "-t", "30",
        "-k",
        "-m", "PUT",
        "-s", "10",
        "-v", "4",
        "-l",
        "-H", "X-A: 1",
        "-C", "sid=abc",
        "-A", "user:pw",
        "-X", "proxy:3128",
        "-u", built.payload_file,
        "-T", "application/json",
        "http://example.com/api",
    ]
    assert Path(built.payload_file).parent == tmp_path
    assert Path(built.payload_file).name.startswith("ab-s2-")
    assert Path(built.payload_file).read_text(encoding="utf-8") == '{"a":1}'
    remove_payload(built.payload_file)
    assert not os.path.exists(built.payload_file)


def test_verbosity_never_below_minimum() -> None:
    for requested in (None, 0, 1, 2, 3):
        config = TrialConfig(url="http://example.com/", requests=1, concurrency=1, verbosity=requested)
        argv = build_command(config, "s").argv
        assert argv[argv.index("-v") + 1] == "3"


def test_headers_round_trip() -> None:
    headers = {"X-A": "1", "X-B": "2"}
    config = TrialConfig(url="http://example.com/", requests=1, concurrency=1, headers=headers)
    assert _headers_from_argv(build_command(config, "s").argv) == headers


def test_post_body_uses_p_flag(tmp_path: Path) -> None:
    config = TrialConfig(
        url="http://example.com/",
        requests=1,
        concurrency=1,
        method=HttpMethod.POST,
        body='{"name": "a b", "n": 2}',
        content_type="application/x-www-form-urlencoded",
    )
    built = build_command(config, "s", scratch_dir=str(tmp_path))
    idx = built.argv.index("-p")
    assert built.argv[idx + 1] == built.payload_file
    assert Path(built.payload_file).read_text(encoding="utf-8") == "name=a+b&n=2"
    remove_payload(built.payload_file)


def test_delete_ignores_body() -> None:
    config = TrialConfig(
        url="http://example.com/",
        requests=1,
        concurrency=1,
        method=HttpMethod.DELETE,
        body="x",
    )
    built = build_command(config, "s")
    assert built.payload_file is None
    assert "-p" not in built.argv and "-u" not in built.argv


def test_transform_body_by_content_type() -> None:
    assert transform_body('{"a": 1, "b": [1, 2]}', "application/json; charset=utf-8") == '{"a":1,"b":[1,2]}'
    assert transform_body('{"flag": true}', "application/x-www-form-urlencoded") == "flag=true"
    assert transform_body('{"a": 1}', "multipart/form-data") == '{"a":1}'
    assert transform_body('{"a": 1}', None) == '{"a":1}'
    assert transform_body("42", "text/plain") == "42"
    assert transform_body('"quoted"', None) == "quoted"


def test_transform_body_keeps_non_json_verbatim() -> None:
    assert transform_body("{a: 1}", "application/json") == "{a: 1}"
    assert transform_body("plain text", None) == "plain text"


def test_redact_argv_masks_password() -> None:
    argv = ["ab", "-A", "user:secret", "http://x/"]
    assert redact_argv(argv) == ["ab", "-A", "user:***", "http://x/"]
    assert json.dumps(argv).count("secret") == 1


def test_remove_payload_ignores_missing(tmp_path: Path) -> None:
    remove_payload(str(tmp_path / "missing.txt"))
    remove_payload(None)
