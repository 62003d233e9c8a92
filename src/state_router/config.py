"""Centralised engine settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Runtime configuration for the state-router engine.

    Values are read from ``STATE_ROUTER_*`` environment variables first,
    then from a *.env* file at the project root.  The rule tables,
    centroids and micro catalogue are code constants and are **not**
    configurable here.
    """

    model_config = SettingsConfigDict(
        env_prefix="STATE_ROUTER_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Baseline mapper ───────────────────────────────────────
    evidence_weight: float = Field(0.35, ge=0.0, le=1.0)  # blend weight for evidence vectors
    deep_evidence_weight: float = Field(0.25, ge=0.0, le=1.0)

    # ── Eligibility ───────────────────────────────────────────
    eligibility_mode: Literal["baseline", "deep"] = "baseline"
    eligibility_debug: bool = True  # attach filter diagnostics to rankings

    # ── Micro selector ────────────────────────────────────────
    micro_threshold: float = 0.3
    micro_prefer_specific: bool = True

    # ── Extensions ────────────────────────────────────────────
    macro_flip_enabled: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
