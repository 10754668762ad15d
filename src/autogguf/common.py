from __future__ import annotations

import sys
from pathlib import Path

_verbose = False


def set_verbose(value: bool) -> None:
    global _verbose
    _verbose = value


def is_verbose() -> bool:
    return _verbose


def log_stage(title: str) -> str:
    if not _verbose:
        return ""
    print(f"{title}:")
    return "  "


def log_line(message: str, *, indent: str = "  ") -> None:
    if not _verbose:
        return
    print(f"{indent}{message}")


def log_success(message: str, *, indent: str = "") -> None:
    if not _verbose:
        return
    print(f"{indent}{message}")


def log_error(message: str) -> None:
    print(message, file=sys.stderr)


def print_output(output: str) -> None:
    """Echo captured child output after a failure."""
    text = output.rstrip()
    if text:
        print(text)


def remove_files(paths: list[Path]) -> bool:
    for path in paths:
        if not path.exists():
            continue
        if not path.is_file():
            print(f"Refusing to remove non-file: {path}")
            return False
        path.unlink()
    return True


def format_command(program: str, args: tuple[str, ...] | list[str]) -> str:
    return " ".join([program, *args])
