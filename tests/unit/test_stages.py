from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from autogguf.cancel import CancellationSignal
from autogguf.config import ImatrixParams
from autogguf.convert import convert_full_precision
from autogguf.errors import PipelineError, StepFailedError, VerificationError
from autogguf.imatrix import download_calibration_data, generate_imatrix
from autogguf.quantize import quantize_gguf
from autogguf.quants import QuantJob
from autogguf.steps import StepSpec


def _arg_after(spec: StepSpec, flag: str) -> str:
    return spec.args[spec.args.index(flag) + 1]


@pytest.mark.asyncio
async def test_quantize_renames_pending_on_success(tmp_path: Path) -> None:
    output = tmp_path / "tiny.Q4_0.gguf"
    pending = tmp_path / "tiny.Q4_0.gguf.pending"

    async def fake_run(spec: StepSpec, *_args: object, **_kwargs: object) -> None:
        assert not output.exists()
        _ = Path(spec.args[-2]).write_bytes(b"quantized")

    with patch("autogguf.quantize.run_checked", side_effect=fake_run):
        result = await quantize_gguf(
            QuantJob("q4_0"),
            tmp_path / "tiny.f16.gguf",
            output,
            pending,
            CancellationSignal(),
            imatrix=tmp_path / "tiny.imatrix",
            llama_quantize=Path("llama-quantize"),
        )

    assert result == output
    assert output.read_bytes() == b"quantized"
    assert not pending.exists()


@pytest.mark.asyncio
async def test_quantize_missing_pending_is_verification_error(tmp_path: Path) -> None:
    with patch("autogguf.quantize.run_checked", new=AsyncMock()):
        with pytest.raises(VerificationError, match="was not written"):
            _ = await quantize_gguf(
                QuantJob("q8_0"),
                tmp_path / "tiny.f16.gguf",
                tmp_path / "tiny.Q8_0.gguf",
                tmp_path / "tiny.Q8_0.gguf.pending",
                CancellationSignal(),
                imatrix=tmp_path / "tiny.imatrix",
                llama_quantize=Path("llama-quantize"),
            )

    assert not (tmp_path / "tiny.Q8_0.gguf").exists()


@pytest.mark.asyncio
async def test_quantize_failure_leaves_final_name_absent(tmp_path: Path) -> None:
    async def failing(spec: StepSpec, *_args: object, **_kwargs: object) -> None:
        _ = Path(spec.args[-2]).write_bytes(b"partial")
        raise StepFailedError("Q4_0 quantization failed with exit code 1", 1)

    with patch("autogguf.quantize.run_checked", side_effect=failing):
        with pytest.raises(StepFailedError):
            _ = await quantize_gguf(
                QuantJob("q4_0"),
                tmp_path / "tiny.f16.gguf",
                tmp_path / "tiny.Q4_0.gguf",
                tmp_path / "tiny.Q4_0.gguf.pending",
                CancellationSignal(),
                imatrix=tmp_path / "tiny.imatrix",
                llama_quantize=Path("llama-quantize"),
            )

    assert not (tmp_path / "tiny.Q4_0.gguf").exists()


@pytest.mark.asyncio
async def test_convert_verifies_output_exists(tmp_path: Path) -> None:
    output = tmp_path / "tiny.f16.gguf"

    with patch("autogguf.convert.run_checked", new=AsyncMock()):
        with pytest.raises(VerificationError, match="reported success"):
            _ = await convert_full_precision(
                tmp_path,
                output,
                CancellationSignal(),
                precision="f16",
                convert_script=tmp_path / "convert_hf_to_gguf.py",
                llama_path=tmp_path,
            )


@pytest.mark.asyncio
async def test_convert_success(tmp_path: Path) -> None:
    output = tmp_path / "tiny.f16.gguf"

    async def fake_run(spec: StepSpec, *_args: object, **_kwargs: object) -> None:
        _ = Path(_arg_after(spec, "--outfile")).write_bytes(b"gguf")

    with patch("autogguf.convert.run_checked", side_effect=fake_run):
        result = await convert_full_precision(
            tmp_path,
            output,
            CancellationSignal(),
            precision="f16",
            convert_script=tmp_path / "convert_hf_to_gguf.py",
            llama_path=tmp_path,
        )

    assert result == output


@pytest.mark.asyncio
async def test_download_calibration_data_streams_to_dest(tmp_path: Path) -> None:
    dest = tmp_path / "calibration_data.txt"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == httpx.URL("https://example.test/groups_merged.txt")
        return httpx.Response(200, content=b"calibration text\n" * 100)

    result = await download_calibration_data(
        "https://example.test/groups_merged.txt",
        dest,
        transport=httpx.MockTransport(handler),
    )

    assert result == dest
    assert dest.read_bytes() == b"calibration text\n" * 100
    assert not (tmp_path / "calibration_data.txt.part").exists()


@pytest.mark.asyncio
async def test_download_calibration_data_http_error(tmp_path: Path) -> None:
    dest = tmp_path / "calibration_data.txt"

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with pytest.raises(PipelineError, match="Calibration dataset download failed"):
        _ = await download_calibration_data(
            "https://example.test/missing.txt",
            dest,
            transport=httpx.MockTransport(handler),
        )

    assert not dest.exists()
    assert not (tmp_path / "calibration_data.txt.part").exists()


@pytest.mark.asyncio
async def test_generate_imatrix_downloads_and_cleans_up(tmp_path: Path) -> None:
    calibration = tmp_path / "calibration_data.txt"
    output = tmp_path / "tiny.imatrix"
    seen: list[StepSpec] = []

    async def fake_download(_url: str, dest: Path) -> Path:
        _ = dest.write_text("calibration")
        return dest

    async def fake_run(spec: StepSpec, *_args: object, **_kwargs: object) -> None:
        assert calibration.exists()
        seen.append(spec)
        _ = Path(_arg_after(spec, "-o")).write_bytes(b"imatrix")

    with (
        patch("autogguf.imatrix.download_calibration_data", side_effect=fake_download) as mock_download,
        patch("autogguf.imatrix.run_checked", side_effect=fake_run),
    ):
        _ = await generate_imatrix(
            tmp_path / "tiny.f16.gguf",
            output,
            calibration,
            CancellationSignal(),
            llama_imatrix=Path("llama-imatrix"),
            params=ImatrixParams(),
        )

    mock_download.assert_called_once()
    assert _arg_after(seen[0], "-f") == str(calibration)
    assert output.exists()
    assert not calibration.exists()


@pytest.mark.asyncio
async def test_generate_imatrix_reuses_cached_calibration(tmp_path: Path) -> None:
    calibration = tmp_path / "calibration_data.txt"
    _ = calibration.write_text("cached")

    with (
        patch("autogguf.imatrix.download_calibration_data") as mock_download,
        patch("autogguf.imatrix.run_checked", new=AsyncMock()),
    ):
        _ = await generate_imatrix(
            tmp_path / "tiny.f16.gguf",
            tmp_path / "tiny.imatrix",
            calibration,
            CancellationSignal(),
            llama_imatrix=Path("llama-imatrix"),
            params=ImatrixParams(),
        )

    mock_download.assert_not_called()


@pytest.mark.asyncio
async def test_generate_imatrix_keeps_calibration_on_failure(tmp_path: Path) -> None:
    calibration = tmp_path / "calibration_data.txt"
    _ = calibration.write_text("cached")

    async def failing(*_args: object, **_kwargs: object) -> None:
        raise StepFailedError("imatrix generation failed with exit code 1", 1)

    with patch("autogguf.imatrix.run_checked", side_effect=failing):
        with pytest.raises(StepFailedError):
            _ = await generate_imatrix(
                tmp_path / "tiny.f16.gguf",
                tmp_path / "tiny.imatrix",
                calibration,
                CancellationSignal(),
                llama_imatrix=Path("llama-imatrix"),
                params=ImatrixParams(),
            )

    assert calibration.read_text() == "cached"
