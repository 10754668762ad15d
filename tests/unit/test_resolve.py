from pathlib import Path
from unittest.mock import patch

import pytest
from pytest import CaptureFixture, MonkeyPatch

from autogguf.resolve import (
    HF_CLI_ENV,
    ToolResolutionError,
    check_deps,
    print_env_hint,
    resolve_binary,
    resolve_convert_hf_to_gguf,
    resolve_hf_cli,
)


def _make_exec(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return path


def test_resolve_binary_prefers_llama_dir(tmp_path: Path) -> None:
    tool = _make_exec(tmp_path / "build" / "bin" / "llama-quantize")

    with patch("autogguf.resolve.shutil.which", return_value="/usr/bin/llama-quantize"):
        assert resolve_binary(tmp_path, "llama-quantize") == tool


def test_resolve_binary_root_before_build_dir(tmp_path: Path) -> None:
    root_tool = _make_exec(tmp_path / "llama-imatrix")
    _ = _make_exec(tmp_path / "build" / "bin" / "llama-imatrix")

    assert resolve_binary(tmp_path, "llama-imatrix") == root_tool


def test_resolve_binary_skips_non_executable(tmp_path: Path) -> None:
    _ = (tmp_path / "llama-quantize").write_text("")

    with patch("autogguf.resolve.shutil.which", return_value=None):
        # Falls back to the expected location so the spawn error names it.
        assert resolve_binary(tmp_path, "llama-quantize") == tmp_path / "llama-quantize"


def test_resolve_binary_uses_path(tmp_path: Path) -> None:
    with patch("autogguf.resolve.shutil.which", return_value="/usr/bin/llama-quantize"):
        assert resolve_binary(tmp_path, "llama-quantize") == Path("/usr/bin/llama-quantize")


def test_resolve_convert_script(tmp_path: Path) -> None:
    script = tmp_path / "convert_hf_to_gguf.py"
    _ = script.write_text("")

    assert resolve_convert_hf_to_gguf(tmp_path) == script


def test_resolve_convert_script_missing(tmp_path: Path) -> None:
    with pytest.raises(ToolResolutionError, match="convert_hf_to_gguf.py not found"):
        _ = resolve_convert_hf_to_gguf(tmp_path)


def test_resolve_hf_cli_env_override(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setenv(HF_CLI_ENV, "/opt/bin/hf")

    assert resolve_hf_cli() == "/opt/bin/hf"


def test_resolve_hf_cli_search(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.delenv(HF_CLI_ENV, raising=False)

    def which(command: str) -> str | None:
        return "/usr/local/bin/hf" if command == "hf" else None

    with patch("autogguf.resolve.shutil.which", side_effect=which):
        assert resolve_hf_cli() == "/usr/local/bin/hf"

    with patch("autogguf.resolve.shutil.which", return_value=None):
        assert resolve_hf_cli() == "huggingface-cli"


def test_check_deps_reports_missing() -> None:
    def fake_import(name: str) -> object:
        if name in ("torch", "sentencepiece"):
            raise ImportError(name)
        return object()

    with patch("autogguf.resolve.importlib.import_module", side_effect=fake_import):
        assert check_deps() == ["sentencepiece", "torch"]


def test_check_deps_all_present() -> None:
    with patch("autogguf.resolve.importlib.import_module", return_value=object()):
        assert check_deps() == []


def test_print_env_hint(
    tmp_path: Path, monkeypatch: MonkeyPatch, capsys: CaptureFixture[str]
) -> None:
    monkeypatch.setenv("HF_USER", "alice")
    monkeypatch.delenv(HF_CLI_ENV, raising=False)

    print_env_hint(tmp_path)

    captured = capsys.readouterr()
    assert f"llama.cpp path: {tmp_path}" in captured.out
    assert "HF_USER=alice" in captured.out
    assert f"{HF_CLI_ENV} (not set)" in captured.out
