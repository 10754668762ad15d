from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import cast

from . import config as config_mod
from .main import run
from .quants import DEFAULT_QUANTS

# Flags whose argparse default is None so a config file value can show through.
_OVERRIDE_KEYS = (
    "model_id",
    "quants",
    "full_precision",
    "fp",
    "imatrix",
    "llama_path",
    "hf_token",
    "hf_user",
)
_SWITCH_KEYS = (
    "verbose",
    "skip_download",
    "skip_upload",
    "only_upload",
    "update_llama",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autogguf",
        description="Convert a HuggingFace model to quantized GGUF files and upload them.",
    )
    _ = parser.add_argument(
        "model_id",
        nargs="?",
        help="HuggingFace model id to convert (e.g. org/model)",
    )
    _ = parser.add_argument(
        "-q",
        "--quants",
        action="append",
        help="comma-separated quant levels (default: "
        + ",".join(DEFAULT_QUANTS)
        + ")",
    )
    _ = parser.add_argument(
        "-v", "--verbose", action="store_true", default=None, help="show verbose output"
    )
    _ = parser.add_argument(
        "--full-precision",
        choices=["f16", "bf16", "f32"],
        type=str.lower,
        help="full-precision GGUF format to convert to and quantize from (default: f16)",
    )
    _ = parser.add_argument(
        "--fp",
        help="existing full-precision GGUF to quantize; skips download and conversion",
    )
    _ = parser.add_argument(
        "--imatrix",
        help="existing imatrix file; skips calibration download and imatrix generation",
    )
    _ = parser.add_argument(
        "--skip-download",
        action="store_true",
        default=None,
        help="skip downloading the model from HuggingFace Hub",
    )
    _ = parser.add_argument(
        "--skip-upload",
        action="store_true",
        default=None,
        help="skip uploading converted files to HuggingFace Hub",
    )
    _ = parser.add_argument(
        "--only-upload",
        action="store_true",
        default=None,
        help="only upload .gguf and .imatrix files already in the model directory",
    )
    _ = parser.add_argument(
        "-u",
        "--update-llama",
        action="store_true",
        default=None,
        help="update (or install) and rebuild llama.cpp before converting",
    )
    _ = parser.add_argument(
        "-l",
        "--llama-path",
        help=f"path to the llama.cpp repo (default: {config_mod.DEFAULT_LLAMA_PATH})",
    )
    _ = parser.add_argument(
        "--hf-token", help="HuggingFace API token (default: $HF_TOKEN)"
    )
    _ = parser.add_argument("--hf-user", help="HuggingFace username (default: $HF_USER)")
    _ = parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="YAML file with defaults for any of the options above",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, object]:
    values = vars(args)
    overrides: dict[str, object] = {key: values.get(key) for key in _OVERRIDE_KEYS}
    for key in _SWITCH_KEYS:
        overrides[key] = values.get(key)
    return overrides


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    config_path = cast(Path | None, args.config)
    if config_path is not None:
        config_path = config_path.expanduser()

    config = config_mod.load_config(config_path, overrides_from_args(args))
    if not config:
        sys.exit(1)

    if config.verbose:
        print(f"Got args: {config}")

    sys.exit(run(config))
