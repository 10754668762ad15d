from __future__ import annotations

import asyncio

from .artifacts import Artifacts
from .cancel import CancellationSignal, install_interrupt_handler
from .common import log_error, log_line, log_stage, log_success, set_verbose
from .config import RunConfig
from .convert import convert_full_precision
from .download import download_model
from .errors import PipelineError, RunCancelledError
from .imatrix import generate_imatrix
from .publish import PublicationCoordinator, make_hub_publisher
from .quantize import quantize_gguf
from .quants import needs_imatrix
from .resolve import (
    ToolResolutionError,
    check_deps,
    print_env_hint,
    resolve_binary,
    resolve_convert_hf_to_gguf,
    resolve_hf_cli,
)
from .update import update_llama_cpp

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def should_download(config: RunConfig) -> bool:
    return not (config.skip_download or config.fp is not None or config.only_upload)


def should_convert(config: RunConfig) -> bool:
    return not (config.fp is not None or config.only_upload)


def should_generate_imatrix(config: RunConfig) -> bool:
    return (
        config.imatrix is None
        and not config.only_upload
        and needs_imatrix(config.quants)
    )


def _log_config(config: RunConfig) -> None:
    indent = log_stage("Validating inputs")
    log_line(f"Model: {config.model_id} ({config.model_name})", indent=indent)
    log_line(
        f"Quants: {', '.join(job.label for job in config.quants)}", indent=indent
    )
    log_line(f"Full precision: {config.precision.upper()}", indent=indent)
    if config.fp is not None:
        log_line(f"Full-precision GGUF: {config.fp}", indent=indent)
    if config.imatrix is not None:
        log_line(f"imatrix: {config.imatrix}", indent=indent)
    log_line(f"llama.cpp: {config.llama_path}", indent=indent)
    log_line(f"Working directory: {config.work_dir}", indent=indent)
    if config.skip_upload:
        log_line("Upload: disabled", indent=indent)
    else:
        log_line(f"Upload: {config.hf_user}/{config.model_name}-GGUF", indent=indent)


async def _prepare_full_precision(
    config: RunConfig,
    artifacts: Artifacts,
    cancellation: CancellationSignal,
    hf_cli: str,
) -> None:
    if should_download(config):
        indent = log_stage(f"Downloading {config.model_id}")
        await download_model(
            config.model_id,
            artifacts.model_dir,
            cancellation,
            hf_cli=hf_cli,
            verbose=config.verbose,
            indent=indent,
        )
    else:
        log_success("Skipping download from HuggingFace Hub.")

    if not should_convert(config):
        log_success(f"Skipping {config.precision.upper()} conversion.")
        return

    indent = log_stage(
        f"Converting {config.model_name} to {config.precision.upper()}"
    )
    if not config.update_llama:
        missing = check_deps()
        if missing:
            raise ToolResolutionError(
                "Missing Python dependencies for conversion: "
                + ", ".join(missing)
                + "\nInstall them with --update-llama or pip install 'autogguf[convert]'."
            )
    _ = await convert_full_precision(
        artifacts.model_dir,
        artifacts.full_precision_gguf(),
        cancellation,
        precision=config.precision,
        convert_script=resolve_convert_hf_to_gguf(config.llama_path),
        llama_path=config.llama_path,
        indent=indent,
    )


async def run_pipeline(
    config: RunConfig,
    cancellation: CancellationSignal,
    *,
    publish_cancellation: CancellationSignal | None = None,
) -> None:
    """Run every enabled stage in order; raises PipelineError on the first failure."""
    artifacts = Artifacts.from_config(config)
    hf_cli = resolve_hf_cli()
    _log_config(config)

    if config.update_llama:
        indent = log_stage("Updating llama.cpp")
        await update_llama_cpp(
            config.llama_path, cancellation, verbose=config.verbose, indent=indent
        )

    if not config.only_upload:
        artifacts.mkdir_all()
        await _prepare_full_precision(config, artifacts, cancellation, hf_cli)

    if should_generate_imatrix(config):
        indent = log_stage(f"Generating imatrix for {config.model_name}")
        _ = await generate_imatrix(
            artifacts.full_precision_gguf(),
            artifacts.imatrix(),
            artifacts.calibration_data(),
            cancellation,
            llama_imatrix=resolve_binary(config.llama_path, "llama-imatrix"),
            params=config.imatrix_params,
            indent=indent,
        )

    coordinator: PublicationCoordinator | None = None
    if not config.skip_upload:
        coordinator = PublicationCoordinator(
            make_hub_publisher(
                artifacts,
                publish_cancellation or CancellationSignal(),
                hf_cli=hf_cli,
                hf_user=config.hf_user,
                hf_token=config.hf_token,
            )
        )
        coordinator.start()

    try:
        if not config.only_upload:
            llama_quantize = resolve_binary(config.llama_path, "llama-quantize")
            for job in config.quants:
                indent = log_stage(f"Quantizing {config.model_name} to {job.label}")
                _ = await quantize_gguf(
                    job,
                    artifacts.full_precision_gguf(),
                    artifacts.quantized_gguf(job),
                    artifacts.pending_gguf(job),
                    cancellation,
                    imatrix=artifacts.imatrix(),
                    llama_quantize=llama_quantize,
                    indent=indent,
                )
                if coordinator is not None:
                    coordinator.notify()
    except BaseException as exc:
        if coordinator is not None:
            if cancellation.is_requested() or isinstance(
                exc, (RunCancelledError, asyncio.CancelledError)
            ):
                if coordinator.busy:
                    log_error(
                        "Waiting for the in-flight upload; interrupt again to stop it."
                    )
                await coordinator.abort()
            else:
                # Files that finished before the failure still get published.
                await coordinator.close()
        raise

    if coordinator is not None:
        await coordinator.finish()


async def _run_async(config: RunConfig) -> None:
    cancellation = CancellationSignal()
    publish_cancellation = CancellationSignal()
    remove_handler = install_interrupt_handler(cancellation, publish_cancellation)
    try:
        await run_pipeline(
            config, cancellation, publish_cancellation=publish_cancellation
        )
    finally:
        remove_handler()


def run(config: RunConfig) -> int:
    set_verbose(config.verbose)
    try:
        asyncio.run(_run_async(config))
    except RunCancelledError as exc:
        log_line(str(exc), indent="")
        log_error("Cancelled.")
        return EXIT_CANCELLED
    except ToolResolutionError as exc:
        log_error(str(exc))
        print_env_hint(config.llama_path)
        return EXIT_FAILED
    except PipelineError as exc:
        log_error(str(exc))
        return EXIT_FAILED
    except OSError as exc:
        log_error(f"Filesystem error: {exc}")
        return EXIT_FAILED

    log_success("Done!")
    return EXIT_OK
