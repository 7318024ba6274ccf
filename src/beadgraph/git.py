from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .util import CommandError, run_capture, run_process

logger = logging.getLogger(__name__)


@dataclass
class GitGateway:
    cwd: Path
    binary: str = "git"
    timeout: float | None = None

    def add(self, path: str) -> None:
        run_capture([self.binary, "add", path], cwd=self.cwd, timeout=self.timeout)

    def has_staged_changes(self) -> bool:
        argv = [self.binary, "diff", "--cached", "--quiet"]
        result = run_process(argv, cwd=self.cwd, timeout=self.timeout)
        # --quiet: exit 1 means a diff exists, 0 means none.
        if result.returncode == 0:
            return False
        if result.returncode == 1:
            return True
        raise CommandError(argv, result.returncode, result.stdout, result.stderr)

    def commit(self, message: str) -> None:
        run_capture([self.binary, "commit", "-m", message], cwd=self.cwd, timeout=self.timeout)
        logger.debug("committed in %s: %s", self.cwd, message)
