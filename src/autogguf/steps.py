"""External step execution.

Every external tool invocation goes through `run_step`, which races the child
process against the run's CancellationSignal and always reaps the child.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path

from .cancel import CancellationSignal
from .common import format_command, is_verbose, log_line, print_output
from .errors import RunCancelledError, SpawnError, StepFailedError


@dataclass(frozen=True)
class StepSpec:
    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: tuple[tuple[str, str], ...] = ()
    label: str = ""

    @property
    def name(self) -> str:
        return self.label or Path(self.program).name

    def command(self) -> str:
        return format_command(self.program, self.args)


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class ExitFailure:
    code: int
    output: str = ""


@dataclass(frozen=True)
class SpawnFailure:
    cause: OSError


@dataclass(frozen=True)
class Cancelled:
    pass


StepOutcome = Success | ExitFailure | SpawnFailure | Cancelled


def _build_env(overrides: tuple[tuple[str, str], ...]) -> dict[str, str] | None:
    if not overrides:
        return None
    env = dict(os.environ)
    for key, value in overrides:
        env[key] = value
    return env


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


async def run_step(spec: StepSpec, cancellation: CancellationSignal) -> StepOutcome:
    """Run one external program until it exits or cancellation is requested.

    Output is captured unless verbose mode is enabled; captured output is
    returned with ExitFailure so callers can show it.
    """
    if cancellation.is_requested():
        return Cancelled()

    # Not a pipe: grandchildren (make, pip) may outlive the child and hold it open.
    with tempfile.TemporaryFile() if not is_verbose() else nullcontext() as log:
        try:
            process = await asyncio.create_subprocess_exec(
                spec.program,
                *spec.args,
                cwd=spec.cwd,
                env=_build_env(spec.env),
                stdout=log,
                stderr=asyncio.subprocess.STDOUT if log is not None else None,
            )
        except OSError as exc:
            return SpawnFailure(exc)

        outcome = await _race(process, cancellation)
        if isinstance(outcome, ExitFailure) and log is not None:
            _ = log.seek(0)
            return ExitFailure(outcome.code, _decode(log.read()))
        return outcome


async def _race(
    process: asyncio.subprocess.Process, cancellation: CancellationSignal
) -> StepOutcome:
    exited = asyncio.ensure_future(process.wait())
    cancelled = asyncio.ensure_future(cancellation.wait())
    try:
        done, _ = await asyncio.wait(
            {exited, cancelled}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        _kill(process)
        _ = cancelled.cancel()
        _ = await asyncio.gather(exited, cancelled, return_exceptions=True)
        raise

    if exited in done:
        _ = cancelled.cancel()
        _ = await asyncio.gather(cancelled, return_exceptions=True)
        code = exited.result()
        if code == 0:
            return Success()
        return ExitFailure(code)

    _kill(process)
    _ = await asyncio.gather(exited, return_exceptions=True)
    return Cancelled()


def raise_for_outcome(spec: StepSpec, outcome: StepOutcome) -> None:
    if isinstance(outcome, Success):
        return
    if isinstance(outcome, Cancelled):
        raise RunCancelledError(f"{spec.name} cancelled")
    if isinstance(outcome, SpawnFailure):
        raise SpawnError(
            f"{spec.name} could not be started: {outcome.cause}\n"
            + f"  Command: {spec.command()}"
        )
    if outcome.output:
        print_output(outcome.output)
    raise StepFailedError(
        f"{spec.name} failed with exit code {outcome.code}\n"
        + f"  Command: {spec.command()}",
        outcome.code,
    )


async def run_checked(
    spec: StepSpec, cancellation: CancellationSignal, *, indent: str = "  "
) -> None:
    log_line(f"Running: {spec.command()}", indent=indent)
    outcome = await run_step(spec, cancellation)
    raise_for_outcome(spec, outcome)
