from __future__ import annotations

import importlib
import os
import shutil
from pathlib import Path

from .errors import PipelineError

# Python modules llama.cpp's convert_hf_to_gguf.py imports.
CONVERT_DEPENDENCIES = [
    "numpy",
    "sentencepiece",
    "transformers",
    "google.protobuf",
    "gguf",
    "torch",
]

HF_CLI_ENV = "AUTOGGUF_HF_CLI"
HF_CLI_CANDIDATES = ("huggingface-cli", "hf")
LLAMA_CPP_REPO = "https://github.com/ggerganov/llama.cpp"


class ToolResolutionError(PipelineError):
    pass


def _resolve_from_path(command: str) -> Path | None:
    resolved = shutil.which(command)
    if not resolved:
        return None
    return Path(resolved)


def _resolve_from_llama_cpp_dir(
    root: Path, command: str, *, require_exec: bool
) -> Path | None:
    candidates = [
        root / command,
        root / "bin" / command,
        root / "build" / "bin" / command,
    ]

    for candidate in candidates:
        if candidate.exists() and (not require_exec or os.access(candidate, os.X_OK)):
            return candidate

    return None


def resolve_binary(llama_path: Path, command: str) -> Path:
    """Find a llama.cpp binary under llama_path, then on PATH.

    Falls back to llama_path/command so that a missing tool surfaces as a
    spawn failure naming the expected location.
    """
    path = _resolve_from_llama_cpp_dir(llama_path, command, require_exec=True)
    if path:
        return path

    path = _resolve_from_path(command)
    if path:
        return path

    return llama_path / command


def resolve_convert_hf_to_gguf(llama_path: Path) -> Path:
    path = _resolve_from_llama_cpp_dir(
        llama_path, "convert_hf_to_gguf.py", require_exec=False
    )
    if path:
        return path

    raise ToolResolutionError(
        f"convert_hf_to_gguf.py not found in {llama_path}. "
        + "Pass --llama-path or run with --update-llama to install llama.cpp."
    )


def resolve_hf_cli() -> str:
    override = os.getenv(HF_CLI_ENV)
    if override:
        return override
    for command in HF_CLI_CANDIDATES:
        path = _resolve_from_path(command)
        if path:
            return str(path)
    # Let the spawn fail with the canonical name.
    return HF_CLI_CANDIDATES[0]


def check_deps() -> list[str]:
    missing: list[str] = []
    for name in CONVERT_DEPENDENCIES:
        try:
            _ = importlib.import_module(name)
        except Exception:
            missing.append(name)
    return missing


def print_env_hint(llama_path: Path) -> None:
    print("Environment:")
    print(f"  llama.cpp path: {llama_path}")
    for env in (HF_CLI_ENV, "HF_USER"):
        value = os.getenv(env)
        suffix = f"={value}" if value else " (not set)"
        print(f"  {env}{suffix}")
