from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

import httpx

from abt.client import ApiClient
from abt.config import HttpMethod, ServiceSettings, TrialConfig, validate
from abt.metrics import LogLevel, TrialResult
from abt.runner.errors import AbtError
from abt.runner.supervisor import Outcome, ProcessSupervisor
from abt.sessions import SessionStatus, SessionStore
from abt.storage import ArchiveError, TrialArchive, default_archive


def _parse_pairs(values: list[str] | None, separator: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values or []:
        key, sep, rest = value.partition(separator)
        if not sep:
            raise argparse.ArgumentTypeError(f"Expected KEY{separator}VALUE, got {value!r}")
        pairs[key.strip()] = rest.strip()
    return pairs


def _build_config(args: argparse.Namespace) -> TrialConfig:
    username = password = None
    if args.auth:
        username, _, password = args.auth.partition(":")
    return TrialConfig(
        url=args.url,
        requests=args.requests,
        concurrency=args.concurrency,
        method=HttpMethod(args.method),
        timelimit=args.timelimit,
        timeout=args.timeout,
        keepalive=args.keepalive,
        headers=_parse_pairs(args.header, ":"),
        cookies=_parse_pairs(args.cookie, "="),
        body=args.body,
        content_type=args.content_type,
        auth_username=username or None,
        auth_password=password or None,
        proxy_url=args.proxy,
        verbosity=args.verbosity,
        accept_varying_length=args.accept_varying_length,
    )


def _print_log(level: LogLevel, message: str) -> None:
    print(f"[{level.value}] {message}")


def _print_result(result: TrialResult) -> None:
    print(f"Requests per second: {result.requests_per_second:.2f}")
    print(f"Time per request:    {result.time_per_request:.3f} ms")
    print(f"Complete / failed:   {result.complete_requests} / {result.failed_requests}")
    if result.status_codes is not None:
        print(f"Status codes:        {json.dumps(result.status_codes, sort_keys=True)}")


async def _run_local(
    config: TrialConfig,
    settings: ServiceSettings,
    archive: TrialArchive | None,
) -> int:
    store = SessionStore()
    session = store.create(config)
    store.mark_running(session.id)
    supervisor = ProcessSupervisor(settings.executable, settings.scratch_dir, settings.heartbeat_interval)
    try:
        outcome = await supervisor.run(config, session.id, _print_log)
    except AbtError as exc:
        store.mark_finished(session.id, SessionStatus.ERROR)
        print(f"Error executing test: {exc}", file=sys.stderr)
        return 1
    if outcome is Outcome.CANCELLED:
        return 130
    finished = store.mark_finished(session.id, SessionStatus.COMPLETED, outcome)
    _print_result(outcome)
    if archive is not None and finished is not None:
        try:
            archive.save_trial(finished)
        except ArchiveError as exc:
            print(f"Warning: {exc}", file=sys.stderr)
        else:
            print(f"Run complete: {session.id}")
    return 0


async def _submit(config: TrialConfig, server: str) -> int:
    async with httpx.AsyncClient(base_url=server) as http:
        api = ApiClient(http)
        payload = {**config.to_metadata(), "auth_password": config.auth_password}
        session_id = await api.create_session(payload)
        await api.start_session(session_id)
        print(f"Started session {session_id}")
        session = await api.wait_for_completion(session_id)
    for entry in session["logs"]:
        print(f"[{entry['level']}] {entry['message']}")
    if session["result"]:
        print(json.dumps(session["result"], indent=2))
    return 0 if session["status"] == SessionStatus.COMPLETED.value else 1


def _add_trial_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Target URL")
    parser.add_argument("-n", "--requests", type=int, default=100)
    parser.add_argument("-c", "--concurrency", type=int, default=10)
    parser.add_argument("-m", "--method", choices=[m.value for m in HttpMethod], default="GET")
    parser.add_argument("-t", "--timelimit", type=int, default=None)
    parser.add_argument("-s", "--timeout", type=int, default=None)
    parser.add_argument("-k", "--keepalive", action="store_true")
    parser.add_argument("-H", "--header", action="append", help="'Name: value', repeatable")
    parser.add_argument("-C", "--cookie", action="append", help="name=value, repeatable")
    parser.add_argument("--body", default=None)
    parser.add_argument("-T", "--content-type", default=None)
    parser.add_argument("-A", "--auth", default=None, help="user:password")
    parser.add_argument("-X", "--proxy", default=None)
    parser.add_argument("-v", "--verbosity", type=int, default=None)
    parser.add_argument("-l", "--accept-varying-length", action="store_true")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="ApacheBench trial runner")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--executable", default=None, help="Path to the ab binary")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one trial locally")
    _add_trial_arguments(run)
    run.add_argument("--no-archive", action="store_true")

    submit = sub.add_parser("submit", help="Run one trial on a running service")
    _add_trial_arguments(submit)
    submit.add_argument("--server", default="http://localhost:5173")

    serve = sub.add_parser("serve", help="Start the HTTP/WebSocket service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    sub.add_parser("check", help="Check that ab can be executed")
    sub.add_parser("history", help="List archived trials")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = ServiceSettings.from_env()
    if args.executable:
        settings = replace(settings, executable=args.executable)

    if args.command == "serve":
        import uvicorn

        from abt.server.app import create_app

        settings = replace(
            settings,
            host=args.host or settings.host,
            port=args.port or settings.port,
        )
        uvicorn.run(create_app(settings, archive=default_archive(settings)), host=settings.host, port=settings.port)
        return 0

    if args.command == "check":
        available = asyncio.run(ProcessSupervisor(settings.executable).check_availability())
        print("Apache Benchmark available" if available else "Apache Benchmark not found")
        return 0 if available else 1

    if args.command == "history":
        print(default_archive(settings).list_trials().to_string(index=False))
        return 0

    try:
        config = _build_config(args)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    validation = validate(config)
    if not validation.ok:
        parser.error("; ".join(validation.errors))

    if args.command == "submit":
        return asyncio.run(_submit(config, args.server))

    archive = None if args.no_archive else default_archive(settings)
    try:
        return asyncio.run(_run_local(config, settings, archive))
    except KeyboardInterrupt:
        print("Test stopped by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
