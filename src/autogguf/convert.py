from __future__ import annotations

import sys
from pathlib import Path

from .cancel import CancellationSignal
from .common import log_success
from .errors import VerificationError
from .gguf_path import build_gguf_env
from .steps import StepSpec, run_checked


def build_convert_spec(
    model_path: Path,
    output_path: Path,
    *,
    precision: str,
    convert_script: Path,
    llama_path: Path,
) -> StepSpec:
    return StepSpec(
        sys.executable,
        (
            str(convert_script),
            str(model_path),
            "--outtype",
            precision,
            "--outfile",
            str(output_path),
        ),
        env=build_gguf_env(llama_path),
        label=f"{precision.upper()} conversion",
    )


async def convert_full_precision(
    model_path: Path,
    output_path: Path,
    cancellation: CancellationSignal,
    *,
    precision: str,
    convert_script: Path,
    llama_path: Path,
    indent: str = "",
) -> Path:
    spec = build_convert_spec(
        model_path,
        output_path,
        precision=precision,
        convert_script=convert_script,
        llama_path=llama_path,
    )
    await run_checked(spec, cancellation, indent=indent)

    # Exit status alone is not trusted.
    if not output_path.exists():
        raise VerificationError(
            f"{spec.name} reported success but {output_path} was not written"
        )

    log_success(f"Converted output saved to {output_path}", indent=indent)
    return output_path
