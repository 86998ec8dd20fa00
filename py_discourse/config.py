"""Client configuration: YAML defaults with environment overrides."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from py_discourse.api import DEFAULT_API_BASE
from py_discourse.models import ScoreWeights
from py_discourse.submission import DEFAULT_VIDEO_EXTENSIONS

LOGGER = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


class SyncConfig(BaseModel):
    """Settings for the analysis job client."""

    api_base: str = DEFAULT_API_BASE
    connect_timeout_s: float = Field(10.0, gt=0)
    request_timeout_s: float = Field(30.0, gt=0)
    upload_timeout_s: float = Field(600.0, gt=0)

    # Fallback polling
    poll_interval_s: float = Field(0.5, gt=0)
    poll_backoff_factor: float = Field(4.0, ge=1)
    poll_unchanged_threshold: int = Field(3, ge=0)

    # Progress animation
    smoothing_duration_s: float = Field(0.15, ge=0)
    frame_interval_s: float = Field(1.0 / 60.0, gt=0)

    stop_grace_s: float = Field(2.0, ge=0)
    queue_refresh_s: float = Field(30.0, gt=0)

    display_timezone: str = "America/New_York"
    accepted_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_VIDEO_EXTENSIONS))
    score_weights: ScoreWeights = Field(default_factory=ScoreWeights)

    @field_validator("api_base")
    @classmethod
    def _strip_base(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("api_base must not be empty")
        return value

    @field_validator("accepted_extensions")
    @classmethod
    def _normalize_extensions(cls, value: List[str]) -> List[str]:
        normalized = []
        for ext in value:
            ext = ext.strip().lower()
            if ext and not ext.startswith("."):
                ext = f".{ext}"
            if ext:
                normalized.append(ext)
        return normalized

    @classmethod
    def from_yaml(cls, yaml_dict: Optional[Dict[str, Any]]) -> "SyncConfig":
        """Create config from YAML dict (handles nested sync key)."""
        yaml_dict = yaml_dict or {}
        sync_cfg = yaml_dict.get("sync", yaml_dict)
        return cls(**(sync_cfg or {}))

    def with_env_overrides(self) -> "SyncConfig":
        overrides = {
            "api_base": _env_str("DISCOURSE_API_BASE", self.api_base),
            "upload_timeout_s": _env_float("DISCOURSE_UPLOAD_TIMEOUT", self.upload_timeout_s),
            "poll_interval_s": _env_float("DISCOURSE_POLL_INTERVAL", self.poll_interval_s),
            "stop_grace_s": _env_float("DISCOURSE_STOP_GRACE", self.stop_grace_s),
            "queue_refresh_s": _env_float("DISCOURSE_QUEUE_REFRESH", self.queue_refresh_s),
            "display_timezone": _env_str("DISCOURSE_DISPLAY_TZ", self.display_timezone),
        }
        return self.model_validate({**self.model_dump(), **overrides})


def load_config(config_path: Optional[Path] = None, *, use_env: bool = True) -> SyncConfig:
    """Load client configuration from YAML, then apply DISCOURSE_* env overrides."""
    if config_path is None:
        candidates = [
            Path("config/sync.yaml"),
            Path(__file__).parents[1] / "config" / "sync.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None or not Path(config_path).exists():
        LOGGER.warning("Sync config not found, using defaults")
        config = SyncConfig()
    else:
        with Path(config_path).open("r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        config = SyncConfig.from_yaml(yaml_data)

    return config.with_env_overrides() if use_env else config
