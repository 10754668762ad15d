"""Centralized output path conventions.

Every stage derives paths from a single Artifacts instance so naming
and directory layout stay consistent across the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import RunConfig
from .quants import QuantJob

CALIBRATION_FILE = "calibration_data.txt"
PENDING_SUFFIX = ".pending"
UPLOAD_PATTERNS = ("*.gguf", "*.imatrix")


@dataclass(frozen=True)
class Artifacts:
    work_dir: Path
    model_name: str
    precision: str
    fp_override: Path | None = None
    imatrix_override: Path | None = None

    @staticmethod
    def from_config(config: RunConfig) -> "Artifacts":
        return Artifacts(
            work_dir=config.work_dir,
            model_name=config.model_name,
            precision=config.precision,
            fp_override=config.fp,
            imatrix_override=config.imatrix,
        )

    @property
    def slug(self) -> str:
        return self.model_name.lower()

    # -- directory roots --

    @property
    def model_dir(self) -> Path:
        return self.work_dir / self.model_name

    # -- specific file paths --

    def full_precision_gguf(self) -> Path:
        if self.fp_override is not None:
            return self.fp_override
        return self.model_dir / f"{self.slug}.{self.precision}.gguf"

    def imatrix(self) -> Path:
        if self.imatrix_override is not None:
            return self.imatrix_override
        return self.model_dir / f"{self.slug}.imatrix"

    def quantized_gguf(self, job: QuantJob) -> Path:
        return self.model_dir / f"{self.slug}.{job.label}.gguf"

    def pending_gguf(self, job: QuantJob) -> Path:
        final = self.quantized_gguf(job)
        return final.with_name(final.name + PENDING_SUFFIX)

    def calibration_data(self) -> Path:
        return self.work_dir / CALIBRATION_FILE

    def upload_candidates(self) -> list[Path]:
        """Files in the model directory that a publication run would sync."""
        if not self.model_dir.is_dir():
            return []
        found: set[Path] = set()
        for pattern in UPLOAD_PATTERNS:
            found.update(path for path in self.model_dir.glob(pattern) if path.is_file())
        return sorted(found)

    def mkdir_all(self) -> None:
        """Create the model directory (idempotent)."""
        self.model_dir.mkdir(parents=True, exist_ok=True)
