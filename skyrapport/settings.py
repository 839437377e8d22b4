"""
Skyrapport Settings Management

File Purpose: Engine configuration, persistence and validation
Primary Functions/Classes: EngineSettings, SettingsManager, load_environment
Inputs and Outputs (I/O): Settings file I/O, environment variables

Holds every knob the engine consumes: limiter quota and spacing, fan-out batch
size, per-stage lookback windows, analytics TTL and outlier thresholds.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".skyrapport"
PUBLIC_API_BASE = "https://public.api.bsky.app"


@dataclass
class EngineSettings:
    """User-adjustable defaults for the sync and analytics engine."""

    # Rate limiter (external limit is 3000 requests per 5 minutes)
    max_requests: int = 2500
    window_seconds: float = 300.0
    min_delay_seconds: float = 0.05
    # Fan-out and paging
    batch_size: int = 10
    page_size: int = 100
    thread_depth: int = 6
    http_timeout: float = 30.0
    public_api_base: str = PUBLIC_API_BASE
    # Lookback windows in days
    posts_days_back: int = 7
    engagements_days_back: int = 7
    incremental_days_back: int = 1
    retention_days: int = 30
    # Analytics
    cache_ttl: float = 15 * 60.0
    noise_threshold: float = 0.7
    reciprocity_threshold: float = 0.3
    # Storage
    db_path: str = str(DEFAULT_HOME / "skyrapport.db")
    session_file: str = str(DEFAULT_HOME / "session.json")


INT_RANGES = {
    "max_requests": (1, None),
    "batch_size": (1, None),
    "page_size": (1, 100),
    "thread_depth": (0, 1000),
    "posts_days_back": (0, None),
    "engagements_days_back": (0, None),
    "incremental_days_back": (0, None),
    "retention_days": (1, None),
}


def _clamp(value: int, low: Optional[int], high: Optional[int]) -> int:
    if low is not None:
        value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


class SettingsManager:
    """Loads, validates and saves :class:`EngineSettings`."""

    def __init__(self, settings_file: Optional[Path] = None):
        self.settings_file = Path(settings_file or DEFAULT_HOME / "settings.json")
        self.settings = self._load_settings()

    def _load_settings(self) -> EngineSettings:
        """Load settings from file or fall back to defaults."""
        base = EngineSettings()
        if not self.settings_file.exists():
            return base
        try:
            with open(self.settings_file, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self.settings_file, e)
            return base
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self.settings_file)
            return base

        for key, value in data.items():
            if not hasattr(base, key):
                continue
            try:
                self._apply(base, key, value)
            except ValidationError as e:
                logger.warning("Ignoring setting %s: %s", key, e.message)
        return base

    def save_settings(self) -> None:
        """Save current settings to file."""
        self.settings_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_file, "w") as f:
            json.dump(asdict(self.settings), f, indent=2)

    def update_setting(self, key: str, new_val: Any) -> None:
        """Update a single setting with validation."""
        if not hasattr(self.settings, key):
            raise ValidationError(f"Unknown setting '{key}'")
        self._apply(self.settings, key, new_val)

    def _apply(self, target: EngineSettings, key: str, value: Any) -> None:
        kind = {f.name: f.type for f in fields(EngineSettings)}[key]
        try:
            if kind in (int, "int"):
                low, high = INT_RANGES.get(key, (None, None))
                value = _clamp(int(value), low, high)
            elif kind in (float, "float"):
                value = float(value)
                if value < 0:
                    raise ValidationError(f"{key} must be non-negative")
            else:
                value = str(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid value for {key}: {value!r}", original_error=e) from e
        setattr(target, key, value)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self.settings)


def load_environment(settings: EngineSettings) -> Dict[str, Optional[str]]:
    """Load ``.env`` and apply environment overrides.

    Returns the credentials found (handle and app password may be None).
    """
    load_dotenv()
    db_path = os.getenv("SKYRAPPORT_DB_PATH")
    if db_path:
        settings.db_path = db_path
    return {
        "handle": os.getenv("SKYRAPPORT_HANDLE"),
        "app_password": os.getenv("SKYRAPPORT_APP_PASSWORD"),
    }
