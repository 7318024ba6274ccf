from __future__ import annotations

import json
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class CommandError(RuntimeError):
    def __init__(self, argv: list[str], returncode: int, stdout: str, stderr: str):
        super().__init__(f"command failed: {argv} (exit {returncode})")
        self.argv = argv
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def detail(self) -> str:
        """Best human-readable message: stderr, then stdout, then the exit code."""
        return (
            self.stderr.strip()
            or self.stdout.strip()
            or f"{self.argv[0]} failed with code {self.returncode}"
        )


@dataclass(frozen=True)
class ProcessResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def run_process(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> ProcessResult:
    """Run ``argv`` to completion without raising on a non-zero exit.

    ``FileNotFoundError`` (missing binary) and ``subprocess.TimeoutExpired``
    propagate to the caller.
    """
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        env=env,
        text=True,
        capture_output=True,
        check=False,
        timeout=timeout,
    )
    return ProcessResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")


def run_capture(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> str:
    result = run_process(argv, cwd=cwd, env=env, timeout=timeout)
    if result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stdout, result.stderr)
    return result.stdout


def extract_json(output: str) -> str:
    """Return ``output`` from the first ``{`` or ``[`` onwards.

    bd prints warnings ahead of its JSON payload, so the payload has to be
    located rather than parsed from the start of the stream.
    """
    starts = [idx for idx in (output.find("{"), output.find("[")) if idx != -1]
    if not starts:
        raise ValueError("No JSON found in output")
    return output[min(starts):]


def parse_json_output(output: str) -> Any:
    return json.loads(extract_json(output))
