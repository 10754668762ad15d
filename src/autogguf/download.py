from __future__ import annotations

from pathlib import Path

from .cancel import CancellationSignal
from .common import log_success
from .steps import StepSpec, run_checked


def build_download_spec(
    hf_cli: str, model_id: str, local_dir: Path, *, verbose: bool
) -> StepSpec:
    args = ["download", model_id, "--local-dir", str(local_dir)]
    if not verbose:
        args.append("--quiet")
    return StepSpec(hf_cli, tuple(args), label=f"{model_id} download")


async def download_model(
    model_id: str,
    local_dir: Path,
    cancellation: CancellationSignal,
    *,
    hf_cli: str,
    verbose: bool = False,
    indent: str = "",
) -> None:
    local_dir.mkdir(parents=True, exist_ok=True)
    spec = build_download_spec(hf_cli, model_id, local_dir, verbose=verbose)
    await run_checked(spec, cancellation, indent=indent)
    log_success(f"Downloaded {model_id} to {local_dir}", indent=indent)
