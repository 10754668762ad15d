"""Background publication of finished artifacts.

The pipeline calls `PublicationCoordinator.notify()` after each finished
quantization. A single worker task re-syncs the whole model directory to the
HuggingFace Hub. Triggers that pile up while an upload is in flight are folded
into the next run, so at most one upload runs at a time and every trigger is
covered by an upload that started after it was sent.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

from .artifacts import UPLOAD_PATTERNS, Artifacts
from .cancel import CancellationSignal
from .common import log_error, log_line, log_stage, log_success
from .errors import PipelineError, PublicationError
from .steps import StepSpec, run_checked

Publisher = Callable[[], Awaitable[None]]

_TRIGGER = object()
_CLOSE = object()


def hub_repo_id(hf_user: str, model_name: str) -> str:
    return f"{hf_user}/{model_name}-GGUF"


def build_upload_spec(
    hf_cli: str,
    *,
    hf_user: str,
    hf_token: str,
    model_name: str,
    local_dir: Path,
) -> StepSpec:
    return StepSpec(
        hf_cli,
        (
            "upload",
            hub_repo_id(hf_user, model_name),
            str(local_dir),
            ".",
            "--include",
            *UPLOAD_PATTERNS,
        ),
        env=(("HF_USER", hf_user), ("HF_TOKEN", hf_token)),
        label=f"{model_name} upload",
    )


def make_hub_publisher(
    artifacts: Artifacts,
    cancellation: CancellationSignal,
    *,
    hf_cli: str,
    hf_user: str,
    hf_token: str,
) -> Publisher:
    spec = build_upload_spec(
        hf_cli,
        hf_user=hf_user,
        hf_token=hf_token,
        model_name=artifacts.model_name,
        local_dir=artifacts.model_dir,
    )

    async def publish() -> None:
        indent = log_stage(f"Uploading {artifacts.model_name} to HuggingFace Hub")
        candidates = artifacts.upload_candidates()
        if not candidates:
            log_line(f"No files to upload in {artifacts.model_dir}", indent=indent)
            return
        for path in candidates:
            log_line(path.name, indent=indent)
        try:
            await run_checked(spec, cancellation, indent=indent)
        except PipelineError as exc:
            raise PublicationError(str(exc)) from exc
        log_success(
            f"Uploaded to {hub_repo_id(hf_user, artifacts.model_name)}", indent=indent
        )

    return publish


class PublicationCoordinator:
    def __init__(self, publish: Publisher) -> None:
        self._publish = publish
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._busy = False
        self._closed = False
        self.runs = 0
        self.failures: list[PublicationError] = []

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._worker())

    def notify(self) -> None:
        if self._closed:
            raise RuntimeError("publication coordinator is closed")
        self._queue.put_nowait(_TRIGGER)

    async def finish(self) -> None:
        """Publish the final state once more, then wait for the worker to exit.

        The trailing trigger covers a last quantization whose own trigger was
        folded into a run that started before it finished. Raises the first
        PublicationError seen during the run.
        """
        self.notify()
        await self._close()
        if self.failures:
            raise self.failures[0]

    async def close(self) -> None:
        """Publish what was already triggered, then stop; failures stay recorded."""
        await self._close()

    async def abort(self) -> None:
        """Drop queued triggers and wait for an in-flight run to end on its own."""
        while not self._queue.empty():
            _ = self._queue.get_nowait()
        await self._close()

    async def _close(self) -> None:
        self._closed = True
        self._queue.put_nowait(_CLOSE)
        if self._task is not None:
            await self._task

    def _drain(self) -> bool:
        """Fold every already-queued trigger into the next run."""
        closing = False
        while not self._queue.empty():
            if self._queue.get_nowait() is _CLOSE:
                closing = True
        return closing

    async def _worker(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            closing = self._drain()

            self._busy = True
            try:
                self.runs += 1
                await self._publish()
            except PublicationError as exc:
                log_error(f"Upload failed: {exc}")
                self.failures.append(exc)
            finally:
                self._busy = False

            if closing:
                return
