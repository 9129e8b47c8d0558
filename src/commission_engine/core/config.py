"""Engine configuration with JSON persistence and environment overrides."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".commission-engine"


@dataclass
class EngineConfig:
    """Tunable settings for the engine."""

    # Currency rounding tolerance for earned == paid + pending
    reconciliation_tolerance: float = 0.01

    # Weeks of Earned history the forecaster looks back over
    forecast_lookback_weeks: int = 8

    # Where plans.json, reps.json and ledger.json live
    data_dir: Path = DEFAULT_HOME

    log_level: str = "INFO"
    default_quota_period: str = "annual"

    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def plans_path(self) -> Path:
        return self.data_dir / "plans.json"

    @property
    def reps_path(self) -> Path:
        return self.data_dir / "reps.json"

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / "ledger.json"


class EngineConfigManager:
    """Load, override and persist the engine configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or DEFAULT_HOME / "config.json"
        self.config = self._load_config()
        self._apply_env_overrides()

    def _load_config(self) -> EngineConfig:
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                    return EngineConfig(
                        reconciliation_tolerance=data.get("reconciliation_tolerance", 0.01),
                        forecast_lookback_weeks=data.get("forecast_lookback_weeks", 8),
                        data_dir=Path(data["data_dir"]) if data.get("data_dir") else DEFAULT_HOME,
                        log_level=data.get("log_level", "INFO"),
                        default_quota_period=data.get("default_quota_period", "annual"),
                    )
            except (OSError, ValueError) as e:
                logger.error(f"Error loading engine config: {e}")

        return EngineConfig()

    def _apply_env_overrides(self):
        data_dir = os.getenv("COMMISSION_ENGINE_DATA_DIR")
        if data_dir:
            self.config.data_dir = Path(data_dir)

        tolerance = os.getenv("COMMISSION_ENGINE_TOLERANCE")
        if tolerance:
            try:
                self.config.reconciliation_tolerance = float(tolerance)
            except ValueError:
                logger.warning(f"Ignoring invalid COMMISSION_ENGINE_TOLERANCE={tolerance!r}")

        log_level = os.getenv("COMMISSION_ENGINE_LOG_LEVEL")
        if log_level:
            self.config.log_level = log_level.upper()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "reconciliation_tolerance": self.config.reconciliation_tolerance,
            "forecast_lookback_weeks": self.config.forecast_lookback_weeks,
            "data_dir": str(self.config.data_dir),
            "log_level": self.config.log_level,
            "default_quota_period": self.config.default_quota_period,
            "updated_at": self.config.updated_at.isoformat(),
        }
        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

    def set_tolerance(self, tolerance: float):
        """Update the reconciliation tolerance."""
        if tolerance < 0:
            raise ValueError("Tolerance cannot be negative")
        self.config.reconciliation_tolerance = tolerance
        self.config.updated_at = datetime.now()
        self.save_config()

    def set_lookback_weeks(self, weeks: int):
        """Update how many weeks of history the forecaster uses."""
        if weeks < 2:
            raise ValueError("Forecast lookback needs at least two weeks")
        self.config.forecast_lookback_weeks = weeks
        self.config.updated_at = datetime.now()
        self.save_config()
