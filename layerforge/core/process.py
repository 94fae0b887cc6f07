"""Cancellable subprocess execution for stage commands."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import BuildCancelledError, StageExecutionError

logger = logging.getLogger(__name__)

# Keep at most this many characters of combined output in reports.
OUTPUT_TAIL_CHARS = 20_000


class CommandResult(BaseModel):
    """Outcome of one stage command."""

    model_config = ConfigDict(frozen=True)

    command: list[str]
    returncode: int
    output: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    command: Sequence[str],
    *,
    cwd: Path,
    cancel_token: CancellationToken | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    poll_interval: float = 0.1,
) -> CommandResult:
    """Run *command* in *cwd*, polling for cancellation and timeout.

    Output (stdout and stderr combined) is spooled to a temporary file so a
    chatty process cannot block on a full pipe. On cancellation the child is
    terminated and ``BuildCancelledError`` is raised; on timeout it is
    killed and ``StageExecutionError`` is raised.
    """
    argv = [str(part) for part in command]
    if not argv:
        raise StageExecutionError("Empty command")

    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    started = time.monotonic()
    logger.info("Running %s in %s", " ".join(argv), cwd)
    with tempfile.TemporaryFile() as log:
        try:
            proc = subprocess.Popen(
                argv, cwd=cwd, env=full_env, stdout=log, stderr=subprocess.STDOUT
            )
        except OSError as exc:
            raise StageExecutionError(f"Cannot start {argv[0]!r}: {exc}") from exc

        while True:
            try:
                proc.wait(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel_token is not None and cancel_token.cancelled:
                _stop(proc)
                raise BuildCancelledError(
                    f"Command {argv[0]!r} cancelled: {cancel_token.reason}"
                )
            if timeout is not None and time.monotonic() - started > timeout:
                _stop(proc)
                raise StageExecutionError(
                    f"Command {argv[0]!r} exceeded timeout of {timeout:.0f}s"
                )

        log.seek(0)
        output = log.read().decode("utf-8", errors="replace")

    return CommandResult(
        command=argv,
        returncode=proc.returncode,
        output=output[-OUTPUT_TAIL_CHARS:],
        duration_seconds=round(time.monotonic() - started, 3),
    )


def _stop(proc: subprocess.Popen, grace_seconds: float = 5.0) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
