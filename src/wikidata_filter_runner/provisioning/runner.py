"""Subprocess command runner shared by provisioning steps."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CmdResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    def run(
        self,
        cmd: Sequence[str] | str,
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CmdResult:
        """Run a command to completion. A ``str`` command goes through ``sh -c``."""


class SubprocessRunner:
    """Runs commands with captured output; exit status is left to the caller."""

    def run(
        self,
        cmd: Sequence[str] | str,
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CmdResult:
        logger.info("RUN: %s", format_command(cmd))

        merged_env = os.environ.copy()
        if env:
            merged_env.update({key: str(value) for key, value in env.items()})

        proc = subprocess.run(  # noqa: S603
            cmd if isinstance(cmd, str) else list(cmd),
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            shell=isinstance(cmd, str),  # noqa: S604
            check=False,
            capture_output=True,
            text=True,
        )
        if proc.returncode != 0:
            logger.warning(
                "Command exited with %s: %s\n%s",
                proc.returncode,
                format_command(cmd),
                (proc.stderr or "").strip(),
            )
        return CmdResult(proc.returncode, proc.stdout or "", proc.stderr or "")


def format_command(cmd: Sequence[str] | str) -> str:
    if isinstance(cmd, str):
        return cmd
    return " ".join(shlex.quote(part) for part in cmd)
