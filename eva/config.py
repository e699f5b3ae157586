from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DATA_PATH = ROOT_DIR / "data" / "eva_rows.csv"

TOTAL_KEY = "TOTAL"
ALL_STORES = "TOTAL"
DEFAULT_TOLERANCE = 1e-6
DEFAULT_DIMENSION = "family"
DEFAULT_TOP_N = 15


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    data_path: Path = DEFAULT_DATA_PATH
    tolerance: float = DEFAULT_TOLERANCE
    default_dimension: str = DEFAULT_DIMENSION
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings from the environment; unset or malformed values keep their defaults."""
    defaults = Settings()
    return Settings(
        data_path=Path(os.environ.get("EVA_DATA_PATH") or defaults.data_path),
        tolerance=_env_float("EVA_TOLERANCE", defaults.tolerance),
        default_dimension=(os.environ.get("EVA_DEFAULT_DIMENSION") or defaults.default_dimension).strip(),
        cors_origins=_env_list("EVA_CORS_ORIGINS", defaults.cors_origins),
        log_level=(os.environ.get("EVA_LOG_LEVEL") or defaults.log_level).upper(),
    )
