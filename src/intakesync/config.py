"""
Configuration for the draft core.

Settings live in ``<home>/config.yaml``. A missing or broken file
falls back to defaults so the wizard always starts.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from . import INTAKE_HOME

logger = logging.getLogger("intakesync.config")

CONFIG_FILE = "config.yaml"
DEVICE_ID_FILE = "device-id"


class IntakeConfig(BaseModel):
    """Timing and remote settings shared by the store, lease, and sync engine."""

    save_debounce_seconds: float = Field(default=0.5, ge=0)
    sync_debounce_seconds: float = Field(default=3.0, ge=0)
    lease_ttl_seconds: int = Field(default=30 * 60, gt=0)
    lease_renewal_seconds: float = Field(default=5 * 60, gt=0)
    remote_url: Optional[str] = None
    remote_token_env_var: str = "INTAKESYNC_TOKEN"
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    audit_enabled: bool = True

    @field_validator("lease_renewal_seconds")
    @classmethod
    def renewal_inside_ttl(cls, v: float, info: ValidationInfo) -> float:
        """Renewal must run at least twice per lease TTL."""
        ttl = info.data.get("lease_ttl_seconds")
        if ttl is not None and v * 2 > ttl:
            raise ValueError(
                f"lease_renewal_seconds must be at most half of lease_ttl_seconds: got {v} for TTL {ttl}"
            )
        return v


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the home directory, defaulting to INTAKE_HOME."""
    return Path(home or INTAKE_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> IntakeConfig:
    """Load configuration from disk.

    Args:
        home: Home directory. Defaults to INTAKE_HOME.

    Returns:
        IntakeConfig, defaults if the file is missing or invalid.
    """
    config_file = resolve_home(home) / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return IntakeConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return IntakeConfig()


def save_config(config: IntakeConfig, home: Optional[Path] = None) -> Path:
    """Persist configuration as YAML."""
    home_path = resolve_home(home)
    home_path.mkdir(parents=True, exist_ok=True)
    config_file = home_path / CONFIG_FILE
    config_file.write_text(
        yaml.dump(config.model_dump(mode="json"), default_flow_style=False),
        encoding="utf-8",
    )
    return config_file


def get_device_id(home: Optional[Path] = None) -> str:
    """Return this device's stable identifier, creating it on first use."""
    home_path = resolve_home(home)
    id_file = home_path / DEVICE_ID_FILE
    if id_file.exists():
        device_id = id_file.read_text(encoding="utf-8").strip()
        if device_id:
            return device_id

    device_id = f"device-{uuid.uuid4()}"
    try:
        home_path.mkdir(parents=True, exist_ok=True)
        id_file.write_text(device_id + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not persist device id: %s", exc)
    return device_id
