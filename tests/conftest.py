from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

AB_REPORT = """\
This is ApacheBench, Version 2.3 <$Revision: 1903618 $>
Benchmarking example.com (be patient).....done
Server Software:        nginx
Server Hostname:        example.com
Server Port:            80

Document Path:          /
Document Length:        612 bytes

Concurrency Level:      2
Time taken for tests:   0.021 seconds
Complete requests:      10
Failed requests:        0
Total transferred:      8480 bytes
HTML transferred:       6120 bytes
Requests per second:    482.33 [#/sec] (mean)
Time per request:       4.146 [ms] (mean)
Time per request:       2.073 [ms] (mean, across all concurrent requests)
Transfer rate:          399.42 [Kbytes/sec] received
"""


@pytest.fixture
def fake_ab(tmp_path: Path) -> Callable[..., str]:
    """Build a shell script that behaves like a canned ab run.

    ``hang=True`` execs ``sleep`` after printing so a kill reaches the process
    holding the pipes.
    """

    def make(
        stdout: str = AB_REPORT,
        stderr: str = "",
        exit_code: int = 0,
        hang: bool = False,
    ) -> str:
        lines = [
            "#!/bin/sh",
            'if [ "$1" = "-V" ]; then echo "This is ApacheBench, Version 2.3"; exit 0; fi',
        ]
        if stdout:
            lines.append("cat <<'EOF'\n" + stdout.rstrip("\n") + "\nEOF")
        if stderr:
            lines.append("cat >&2 <<'EOF'\n" + stderr.rstrip("\n") + "\nEOF")
        if hang:
            lines.append("exec sleep 30")
        lines.append(f"exit {exit_code}")
        script = tmp_path / "ab"
        script.write_text("\n".join(lines) + "\n", encoding="utf-8")
        script.chmod(0o755)
        return str(script)

    return make


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path
