"""Tests for YAML configuration and device identity."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from intakesync.config import (
    CONFIG_FILE,
    DEVICE_ID_FILE,
    IntakeConfig,
    get_device_id,
    load_config,
    save_config,
)


class TestLoadConfig:
    """Config file loading."""

    def test_missing_file_gives_defaults(self, tmp_home: Path):
        config = load_config(tmp_home)
        assert config.save_debounce_seconds == 0.5
        assert config.sync_debounce_seconds == 3.0
        assert config.lease_ttl_seconds == 1800
        assert config.lease_renewal_seconds == 300
        assert config.remote_url is None
        assert config.audit_enabled is True

    def test_values_from_yaml(self, tmp_home: Path):
        (tmp_home / CONFIG_FILE).write_text(
            yaml.dump({"sync_debounce_seconds": 1.5, "remote_url": "https://x.test"})
        )
        config = load_config(tmp_home)
        assert config.sync_debounce_seconds == 1.5
        assert config.remote_url == "https://x.test"
        assert config.save_debounce_seconds == 0.5

    def test_broken_yaml_falls_back(self, tmp_home: Path):
        (tmp_home / CONFIG_FILE).write_text("remote_url: [unclosed\n")
        assert load_config(tmp_home) == IntakeConfig()

    def test_invalid_values_fall_back(self, tmp_home: Path):
        (tmp_home / CONFIG_FILE).write_text(yaml.dump({"lease_ttl_seconds": -5}))
        assert load_config(tmp_home).lease_ttl_seconds == 1800

    def test_renewal_longer_than_half_ttl_rejected(self, tmp_home: Path):
        (tmp_home / CONFIG_FILE).write_text(
            yaml.dump({"lease_ttl_seconds": 600, "lease_renewal_seconds": 400})
        )
        assert load_config(tmp_home).lease_renewal_seconds == 300

    def test_renewal_validated_against_ttl(self):
        with pytest.raises(ValueError, match="at most half"):
            IntakeConfig(lease_ttl_seconds=60, lease_renewal_seconds=45)
        assert IntakeConfig(lease_ttl_seconds=60, lease_renewal_seconds=30).lease_renewal_seconds == 30

    def test_save_then_load(self, tmp_home: Path):
        path = save_config(IntakeConfig(remote_url="https://drafts.test"), tmp_home)
        assert path.exists()
        assert load_config(tmp_home).remote_url == "https://drafts.test"


class TestDeviceId:
    """Stable per-device identifier."""

    def test_created_with_prefix(self, tmp_home: Path):
        device_id = get_device_id(tmp_home)
        assert device_id.startswith("device-")
        assert (tmp_home / DEVICE_ID_FILE).exists()

    def test_stable_across_calls(self, tmp_home: Path):
        assert get_device_id(tmp_home) == get_device_id(tmp_home)
