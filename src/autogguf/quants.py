from __future__ import annotations

from dataclasses import dataclass

QUANT_LEVELS = (
    "q2_k",
    "q3_k_s",
    "q3_k_m",
    "q3_k_l",
    "q4_0",
    "q4_1",
    "q4_k_s",
    "q4_k_m",
    "q5_0",
    "q5_1",
    "q5_k_s",
    "q5_k_m",
    "q6_k",
    "q8_0",
    "bf16",
    "iq1_s",
    "iq1_m",
    "iq2_xxs",
    "iq2_xs",
    "iq2_s",
    "iq2_m",
    "q2_k_s",
    "iq3_xxs",
    "iq3_xs",
    "iq3_s",
    "iq3_m",
    "iq4_xs",
    "iq4_nl",
)

IMATRIX_LEVELS = frozenset(
    {
        "iq1_s",
        "iq1_m",
        "iq2_xxs",
        "iq2_xs",
        "iq2_s",
        "iq2_m",
        "q2_k_s",
        "iq3_xxs",
        "iq3_xs",
        "iq3_s",
        "iq3_m",
        "iq4_xs",
        "iq4_nl",
    }
)

# Everything that quantizes without an importance matrix, except bf16.
DEFAULT_QUANTS = (
    "q2_k",
    "q3_k_s",
    "q3_k_m",
    "q3_k_l",
    "q4_0",
    "q4_1",
    "q4_k_s",
    "q4_k_m",
    "q5_0",
    "q5_1",
    "q5_k_s",
    "q5_k_m",
    "q6_k",
    "q8_0",
)


class UnknownQuantLevelError(ValueError):
    pass


@dataclass(frozen=True)
class QuantJob:
    level: str

    @property
    def requires_imatrix(self) -> bool:
        return self.level in IMATRIX_LEVELS

    @property
    def label(self) -> str:
        return self.level.upper()


def parse_quant_level(value: str) -> str:
    level = value.strip().lower()
    if level not in QUANT_LEVELS:
        raise UnknownQuantLevelError(f"'{value}' is not a valid quant level")
    return level


def split_quant_list(values: list[str]) -> list[str]:
    """Flatten comma-separated entries, dropping blanks."""
    levels: list[str] = []
    for value in values:
        levels.extend(part for part in value.split(",") if part.strip())
    return levels


def build_jobs(levels: list[str]) -> tuple[QuantJob, ...]:
    return tuple(QuantJob(parse_quant_level(level)) for level in levels)


def needs_imatrix(jobs: tuple[QuantJob, ...]) -> bool:
    return any(job.requires_imatrix for job in jobs)
