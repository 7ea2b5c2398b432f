from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shlex
import subprocess
import time
from typing import Mapping, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    name: str
    uid: int
    gid: int
    home: str


class CommandRunner(Protocol):
    def __call__(
        self,
        command: list[str],
        *,
        cwd: Path,
        identity: Identity,
        env: Mapping[str, str],
        timeout: float | None,
    ) -> subprocess.CompletedProcess[str]:
        ...


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_command(command: list[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


def default_runner(
    command: list[str],
    *,
    cwd: Path,
    identity: Identity,
    env: Mapping[str, str],
    timeout: float | None,
) -> subprocess.CompletedProcess[str]:
    kwargs: dict = {}
    if identity.uid != os.geteuid():
        # Requires privileges; a PermissionError surfaces to the caller.
        kwargs.update(user=identity.uid, group=identity.gid, extra_groups=[])
    return subprocess.run(
        command,
        cwd=str(cwd),
        env=dict(env),
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
        **kwargs,
    )


def run_command(
    command: list[str],
    *,
    cwd: Path,
    identity: Identity,
    env: Mapping[str, str],
    timeout: float | None = None,
    runner: CommandRunner | None = None,
) -> CommandResult:
    active_runner = runner or default_runner
    logger.debug("CMD %s (cwd=%s user=%s)", format_command(command), cwd, identity.name)
    started = time.monotonic()
    completed = active_runner(command, cwd=cwd, identity=identity, env=env, timeout=timeout)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration=time.monotonic() - started,
    )
    if result.stdout:
        logger.debug("STDOUT %s", result.stdout.strip())
    if result.stderr:
        logger.debug("STDERR %s", result.stderr.strip())
    return result
