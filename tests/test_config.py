"""Tests for engine configuration."""

import json
import tempfile
from pathlib import Path

import pytest

from commission_engine.core.config import EngineConfig, EngineConfigManager


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("COMMISSION_ENGINE_DATA_DIR", "COMMISSION_ENGINE_TOLERANCE", "COMMISSION_ENGINE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestEngineConfigManager:
    """Tests for EngineConfigManager."""

    def test_defaults_without_file(self, temp_data_dir):
        manager = EngineConfigManager(temp_data_dir / "config.json")

        assert manager.config.reconciliation_tolerance == 0.01
        assert manager.config.forecast_lookback_weeks == 8
        assert manager.config.log_level == "INFO"

    def test_save_and_reload(self, temp_data_dir):
        path = temp_data_dir / "config.json"
        manager = EngineConfigManager(path)
        manager.set_tolerance(0.05)
        manager.set_lookback_weeks(12)

        reloaded = EngineConfigManager(path)
        assert reloaded.config.reconciliation_tolerance == 0.05
        assert reloaded.config.forecast_lookback_weeks == 12

    def test_env_overrides(self, temp_data_dir, monkeypatch):
        monkeypatch.setenv("COMMISSION_ENGINE_DATA_DIR", str(temp_data_dir / "data"))
        monkeypatch.setenv("COMMISSION_ENGINE_TOLERANCE", "0.02")
        monkeypatch.setenv("COMMISSION_ENGINE_LOG_LEVEL", "debug")

        config = EngineConfigManager(temp_data_dir / "config.json").config

        assert config.data_dir == temp_data_dir / "data"
        assert config.ledger_path == temp_data_dir / "data" / "ledger.json"
        assert config.reconciliation_tolerance == 0.02
        assert config.log_level == "DEBUG"

    def test_invalid_env_tolerance_ignored(self, temp_data_dir, monkeypatch):
        monkeypatch.setenv("COMMISSION_ENGINE_TOLERANCE", "lots")
        config = EngineConfigManager(temp_data_dir / "config.json").config
        assert config.reconciliation_tolerance == 0.01

    def test_corrupt_file_falls_back_to_defaults(self, temp_data_dir):
        path = temp_data_dir / "config.json"
        path.write_text("{not json")
        assert EngineConfigManager(path).config.reconciliation_tolerance == 0.01

    def test_rejects_bad_values(self, temp_data_dir):
        manager = EngineConfigManager(temp_data_dir / "config.json")
        with pytest.raises(ValueError):
            manager.set_tolerance(-0.01)
        with pytest.raises(ValueError):
            manager.set_lookback_weeks(1)

    def test_file_contents(self, temp_data_dir):
        path = temp_data_dir / "config.json"
        EngineConfigManager(path).save_config()
        data = json.loads(path.read_text())
        assert data["default_quota_period"] == "annual"


def test_data_paths():
    config = EngineConfig(data_dir=Path("/tmp/commissions"))
    assert config.plans_path == Path("/tmp/commissions/plans.json")
    assert config.reps_path == Path("/tmp/commissions/reps.json")
