from __future__ import annotations

import sys
from pathlib import Path

from .cancel import CancellationSignal
from .common import log_line, log_success
from .resolve import LLAMA_CPP_REPO
from .steps import StepSpec, run_checked


def build_update_specs(
    llama_path: Path, *, installed: bool, verbose: bool
) -> list[StepSpec]:
    specs: list[StepSpec] = []
    if not installed:
        specs.append(
            StepSpec(
                "git",
                ("clone", LLAMA_CPP_REPO, str(llama_path)),
                label="llama.cpp clone",
            )
        )
    specs.extend(
        [
            StepSpec("git", ("pull",), cwd=llama_path, label="llama.cpp update"),
            StepSpec("make", ("clean",), cwd=llama_path, label="llama.cpp build clean"),
            StepSpec("make", (), cwd=llama_path, label="llama.cpp build"),
            StepSpec(
                sys.executable,
                (
                    "-m",
                    "pip",
                    "install",
                    "-r",
                    "requirements.txt",
                    "-v" if verbose else "-q",
                ),
                cwd=llama_path,
                label="llama.cpp python deps install",
            ),
        ]
    )
    return specs


async def update_llama_cpp(
    llama_path: Path,
    cancellation: CancellationSignal,
    *,
    verbose: bool = False,
    indent: str = "",
) -> None:
    installed = llama_path.exists()
    if not installed:
        log_line(f"llama.cpp not found at {llama_path}, installing...", indent=indent)

    for spec in build_update_specs(llama_path, installed=installed, verbose=verbose):
        await run_checked(spec, cancellation, indent=indent)

    log_success(f"llama.cpp at {llama_path} is up to date", indent=indent)
