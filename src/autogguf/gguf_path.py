from __future__ import annotations

import os
from pathlib import Path


def resolve_gguf_root(llama_path: Path) -> Path | None:
    """Return llama.cpp's gguf-py directory when it holds the gguf package."""
    return _normalize_gguf_root(llama_path / "gguf-py")


def build_gguf_env(llama_path: Path) -> tuple[tuple[str, str], ...]:
    """PYTHONPATH override putting llama.cpp's gguf-py ahead of any installed gguf."""
    root = resolve_gguf_root(llama_path)
    if not root:
        return ()
    existing = os.environ.get("PYTHONPATH")
    prefix = str(root)
    if existing:
        paths = existing.split(os.pathsep)
        if prefix in paths:
            return ()
        return (("PYTHONPATH", os.pathsep.join([prefix, *paths])),)
    return (("PYTHONPATH", prefix),)


def _normalize_gguf_root(path: Path) -> Path | None:
    package_root = path / "gguf"
    if (package_root / "__init__.py").exists():
        return path
    if path.name == "gguf" and (path / "__init__.py").exists():
        return path.parent
    return None
