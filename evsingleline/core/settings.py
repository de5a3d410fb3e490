# evsingleline/core/settings.py
# Configuration lives in one place: a pydantic BaseSettings instance fed from
# the process environment and an optional .env file at the project root.
from __future__ import annotations
from pathlib import Path
from typing import List

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[2]  # project root: evsingleline/core -> evsingleline -> ROOT


def _load_env_files() -> None:
    """
    Load `.env` from the project root, falling back to `.env.txt`.
    Real environment variables always win over file values.
    """
    env_candidates = [ROOT / ".env", ROOT / ".env.txt"]
    for p in env_candidates:
        if p.exists():
            load_dotenv(dotenv_path=p, override=False)
            break


_load_env_files()


class Settings(BaseSettings):
    # ---- Paths ----
    ROOT: Path = ROOT
    OUT: Path = Field(default=ROOT / "out", description="Where exported DXF/XLSX files are written")
    STANDARDS_FILE: Path = Field(
        default=Path(__file__).resolve().parents[1] / "standards" / "active.json",
        description="Optional JSON overriding one-line layer names and text styles",
    )

    # ---- Runtime ----
    LOG_LEVEL: str = Field("INFO", description="Root logger level")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # ---- Editing defaults ----
    DEFAULT_FEED_AMPS: float = Field(0.0, ge=0, description="Feeder breaker rating given to a new sub-panel")

    model_config = SettingsConfigDict(
        env_prefix="EVSL_",
        case_sensitive=True,
        extra="ignore",
    )


try:
    settings = Settings()
except ValidationError as e:
    raise RuntimeError(
        "Invalid EVSL_* environment configuration. "
        f"Check your environment or .env file: {e}"
    ) from e
