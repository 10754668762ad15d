from __future__ import annotations

import os
from pathlib import Path

import httpx

from .cancel import CancellationSignal, run_cancellable
from .common import log_line, log_success, remove_files
from .config import ImatrixParams
from .errors import PipelineError
from .steps import StepSpec, run_checked

DOWNLOAD_TIMEOUT = httpx.Timeout(60.0, connect=15.0)


def build_imatrix_spec(
    llama_imatrix: Path,
    fp: Path,
    calibration: Path,
    output_path: Path,
    params: ImatrixParams,
) -> StepSpec:
    return StepSpec(
        str(llama_imatrix),
        (
            "-m",
            str(fp),
            "-f",
            str(calibration),
            "-o",
            str(output_path),
            "-t",
            str(params.threads),
            "-ngl",
            str(params.gpu_layers),
            "--chunks",
            str(params.chunks),
        ),
        label="imatrix generation",
    )


async def download_calibration_data(
    url: str,
    dest: Path,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Path:
    """Stream the calibration dataset to dest via a temporary .part file."""
    partial = dest.with_name(dest.name + ".part")
    try:
        async with httpx.AsyncClient(
            timeout=DOWNLOAD_TIMEOUT, follow_redirects=True, transport=transport
        ) as client:
            async with client.stream("GET", url) as response:
                _ = response.raise_for_status()
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        _ = handle.write(chunk)
    except httpx.HTTPError as exc:
        _ = remove_files([partial])
        raise PipelineError(f"Calibration dataset download failed: {exc}") from exc
    except BaseException:
        _ = remove_files([partial])
        raise
    os.replace(partial, dest)
    return dest


async def generate_imatrix(
    fp: Path,
    output_path: Path,
    calibration: Path,
    cancellation: CancellationSignal,
    *,
    llama_imatrix: Path,
    params: ImatrixParams,
    indent: str = "",
) -> Path:
    if not calibration.exists():
        log_line("Downloading calibration dataset...", indent=indent)
        _ = await run_cancellable(
            download_calibration_data(params.calibration_url, calibration),
            cancellation,
            "Calibration dataset download",
        )

    spec = build_imatrix_spec(llama_imatrix, fp, calibration, output_path, params)
    await run_checked(spec, cancellation, indent=indent)

    # Only removed on success; after a failure it stays as a cache for the next run.
    log_line("Cleaning up calibration dataset...", indent=indent)
    _ = remove_files([calibration])

    log_success(f"imatrix saved to {output_path}", indent=indent)
    return output_path
