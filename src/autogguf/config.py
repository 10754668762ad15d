from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Literal, cast

import yaml
from pydantic import BaseModel, BeforeValidator, ValidationError, field_validator

from .quants import (
    DEFAULT_QUANTS,
    QuantJob,
    UnknownQuantLevelError,
    build_jobs,
    parse_quant_level,
    split_quant_list,
)

Precision = Literal["f16", "bf16", "f32"]

DEFAULT_LLAMA_PATH = "~/code/llama.cpp"
CALIBRATION_URL = (
    "https://github.com/ggerganov/llama.cpp/files/14194570/groups_merged.txt"
)


def _ensure_list(v: object) -> object:
    if isinstance(v, str):
        v = [v]
    if isinstance(v, list):
        items = cast(list[object], v)
        if all(isinstance(item, str) for item in items):
            return split_quant_list(cast(list[str], items))
    return v


QuantList = Annotated[list[str], BeforeValidator(_ensure_list)]


class HubConfig(BaseModel):
    user: str | None = None
    token: str | None = None


class ImatrixParams(BaseModel):
    threads: int = 7
    gpu_layers: int = 999
    chunks: int = 2000
    calibration_url: str = CALIBRATION_URL


class ConfigFile(BaseModel):
    model_id: str | None = None
    quants: QuantList = list(DEFAULT_QUANTS)
    full_precision: Precision = "f16"
    fp: str | None = None
    imatrix: str | None = None
    skip_download: bool = False
    skip_upload: bool = False
    only_upload: bool = False
    update_llama: bool = False
    llama_path: str = DEFAULT_LLAMA_PATH
    verbose: bool = False
    hub: HubConfig = HubConfig()
    imatrix_params: ImatrixParams = ImatrixParams()

    @field_validator("quants")
    @classmethod
    def _check_quants(cls, value: list[str]) -> list[str]:
        try:
            return [parse_quant_level(level) for level in value]
        except UnknownQuantLevelError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("full_precision", mode="before")
    @classmethod
    def _lower_precision(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value


@dataclass(frozen=True)
class RunConfig:
    model_id: str
    model_name: str
    quants: tuple[QuantJob, ...]
    precision: Precision
    fp: Path | None
    imatrix: Path | None
    skip_download: bool
    skip_upload: bool
    only_upload: bool
    update_llama: bool
    llama_path: Path
    hf_user: str
    hf_token: str = field(repr=False)
    verbose: bool
    imatrix_params: ImatrixParams
    work_dir: Path


def model_short_name(model_id: str) -> str:
    return model_id.strip().rstrip("/").rsplit("/", 1)[-1]


def _expand(value: str | None, work_dir: Path) -> Path | None:
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = work_dir / path
    return path


def read_config_file(path: Path) -> ConfigFile | None:
    try:
        text = path.read_text()
    except FileNotFoundError:
        print(f"Config file not found: {path}")
        return None
    except OSError as exc:
        print(f"Failed to read config: {exc}")
        return None

    try:
        data = cast(object, yaml.safe_load(text)) or {}
        return ConfigFile.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        print(f"Failed to read config: {exc}")
        return None


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, object] | None = None,
    *,
    work_dir: Path | None = None,
) -> RunConfig | None:
    """Merge an optional YAML file with command-line overrides.

    Overrides whose value is None are ignored so unset flags keep the file's
    (or the default) value. Returns None after printing the problem.
    """
    base: dict[str, object] = {}
    if config_path is not None:
        file_config = read_config_file(config_path)
        if file_config is None:
            return None
        base = file_config.model_dump(exclude_unset=True)

    hub = dict(cast(dict[str, object], base.pop("hub", None) or {}))
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in ("hf_user", "hf_token"):
            hub[key.removeprefix("hf_")] = value
        else:
            base[key] = value
    base["hub"] = hub

    try:
        config = ConfigFile.model_validate(base)
    except ValidationError as exc:
        print(f"Invalid options: {exc}")
        return None

    if not config.model_id:
        print("A model id is required (e.g. org/model).")
        return None
    model_name = model_short_name(config.model_id)
    if not model_name:
        print(f"Could not derive a model name from: {config.model_id}")
        return None
    if not config.quants and not config.only_upload:
        print("No quant levels requested.")
        return None

    root = (work_dir or Path.cwd()).resolve()
    hf_user = config.hub.user or os.getenv("HF_USER", "")
    hf_token = config.hub.token or os.getenv("HF_TOKEN", "")
    if not config.skip_upload and not hf_user:
        print("Uploading requires a HuggingFace user. Pass --hf-user or set HF_USER.")
        print("Use --skip-upload to keep files local.")
        return None

    return RunConfig(
        model_id=config.model_id,
        model_name=model_name,
        quants=build_jobs(config.quants),
        precision=config.full_precision,
        fp=_expand(config.fp, root),
        imatrix=_expand(config.imatrix, root),
        skip_download=config.skip_download,
        skip_upload=config.skip_upload,
        only_upload=config.only_upload,
        update_llama=config.update_llama,
        llama_path=Path(config.llama_path).expanduser(),
        hf_user=hf_user,
        hf_token=hf_token,
        verbose=config.verbose,
        imatrix_params=config.imatrix_params,
        work_dir=root,
    )
