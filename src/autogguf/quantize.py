from __future__ import annotations

import os
from pathlib import Path

from .cancel import CancellationSignal
from .common import log_success
from .errors import VerificationError
from .quants import QuantJob
from .steps import StepSpec, run_checked


def build_quantize_options(imatrix: Path | None) -> list[str]:
    options: list[str] = []
    if imatrix is not None:
        options.extend(["--imatrix", str(imatrix)])
    return options


def build_quantize_spec(
    job: QuantJob,
    fp: Path,
    pending_path: Path,
    *,
    imatrix: Path,
    llama_quantize: Path,
) -> StepSpec:
    options = build_quantize_options(imatrix if job.requires_imatrix else None)
    return StepSpec(
        str(llama_quantize),
        (*options, str(fp), str(pending_path), job.level),
        label=f"{job.label} quantization",
    )


async def quantize_gguf(
    job: QuantJob,
    fp: Path,
    output_path: Path,
    pending_path: Path,
    cancellation: CancellationSignal,
    *,
    imatrix: Path,
    llama_quantize: Path,
    indent: str = "",
) -> Path:
    """Quantize into pending_path, then rename onto output_path.

    Readers of the output directory see either no file or a complete one.
    """
    spec = build_quantize_spec(
        job, fp, pending_path, imatrix=imatrix, llama_quantize=llama_quantize
    )
    await run_checked(spec, cancellation, indent=indent)

    try:
        os.replace(pending_path, output_path)
    except FileNotFoundError as exc:
        raise VerificationError(
            f"{spec.name} reported success but {pending_path} was not written"
        ) from exc

    log_success(f"Quantized GGUF saved to {output_path}", indent=indent)
    return output_path
