"""
Configuration management and loading.

Handles sync settings (per-provider forward/backfill tuning, identity
resolution, projection) loaded from a YAML file.
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_BACKFILL_TARGET = date(2025, 1, 1)


@dataclass(frozen=True)
class ForwardConfig:
    """Forward sync tuning.

    ``initial_lookback_days`` of None lets the provider pick its default
    (a week for daily providers, a day for hourly ones).
    """
    initial_lookback_days: Optional[int] = None
    refresh_identities: bool = True

    def __post_init__(self):
        if self.initial_lookback_days is not None and self.initial_lookback_days <= 0:
            raise ValueError("initial_lookback_days must be > 0")


@dataclass(frozen=True)
class BackfillConfig:
    """Backfill walk and completion heuristic tuning."""
    target_date: date = DEFAULT_BACKFILL_TARGET
    window_days: int = 1
    stop_on_empty_days: int = 7
    small_window_days: int = 7
    max_windows: int = 30
    window_delay_seconds: float = 0.0

    def __post_init__(self):
        """Validate backfill values are positive."""
        if self.window_days <= 0:
            raise ValueError("window_days must be > 0")
        if self.stop_on_empty_days <= 0:
            raise ValueError("stop_on_empty_days must be > 0")
        if self.small_window_days <= 0:
            raise ValueError("small_window_days must be > 0")
        if self.max_windows <= 0:
            raise ValueError("max_windows must be > 0")
        if self.window_delay_seconds < 0:
            raise ValueError("window_delay_seconds cannot be negative")


@dataclass(frozen=True)
class ProviderConfig:
    """Settings for one provider."""
    enabled: bool = True
    request_delay_seconds: Optional[float] = None
    forward: ForwardConfig = field(default_factory=ForwardConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)

    def __post_init__(self):
        if self.request_delay_seconds is not None and self.request_delay_seconds < 0:
            raise ValueError("request_delay_seconds cannot be negative")


@dataclass(frozen=True)
class IdentityConfig:
    """Identity resolution strategy selection."""
    incremental_threshold: int = 20

    def __post_init__(self):
        if self.incremental_threshold < 0:
            raise ValueError("incremental_threshold cannot be negative")


@dataclass(frozen=True)
class ProjectionConfig:
    """Projection of incomplete dates."""
    work_start_hour: float = 7.0
    work_end_hour: float = 19.0
    cap_multiplier: float = 1.5
    min_same_weekday_samples: int = 2

    def __post_init__(self):
        """Validate the working-hours window and blend cap."""
        if not 0 <= self.work_start_hour < self.work_end_hour <= 24:
            raise ValueError("working hours must satisfy 0 <= start < end <= 24")
        if self.cap_multiplier < 1:
            raise ValueError("cap_multiplier must be >= 1")
        if self.min_same_weekday_samples <= 0:
            raise ValueError("min_same_weekday_samples must be > 0")


@dataclass(frozen=True)
class Settings:
    """Complete sync configuration."""
    database: str = "ai_usage_sync.db"
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)

    def get_provider_config(self, provider: str) -> ProviderConfig:
        """Get configuration for a provider, using defaults if not specified."""
        return self.providers.get(provider, ProviderConfig())


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate sync settings from a YAML file.

    Strict validation ensures no silent misconfigurations: a mistyped key
    would otherwise quietly fall back to a default backfill target or
    completion threshold.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return Settings()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _check_keys(raw_config, {'database', 'providers', 'identity', 'projection'}, "configuration")

    database = raw_config.get('database', Settings.database)
    if not isinstance(database, str) or not database:
        raise ValueError("'database' must be a non-empty string")

    providers_data = _section(raw_config, 'providers')
    providers = {}
    for provider_name, provider_data in providers_data.items():
        if not isinstance(provider_data, dict):
            raise ValueError(f"Provider '{provider_name}' must be a dictionary")
        providers[provider_name] = _parse_provider_config(provider_data, f"providers.{provider_name}")

    identity_data = _section(raw_config, 'identity')
    _check_keys(identity_data, {'incremental_threshold'}, "identity")
    identity = IdentityConfig(**identity_data)

    projection = _parse_projection_config(_section(raw_config, 'projection'))

    return Settings(
        database=database,
        providers=providers,
        identity=identity,
        projection=projection,
    )


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return section


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_provider_config(data: Dict[str, Any], path: str) -> ProviderConfig:
    """Parse and validate one provider section.

    Args:
        data: Provider configuration data
        path: Path for error messages

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    _check_keys(data, {'enabled', 'request_delay_seconds', 'forward', 'backfill'}, path)

    forward_data = _section(data, 'forward')
    _check_keys(forward_data, {'initial_lookback_days', 'refresh_identities'}, f"{path}.forward")

    backfill_data = dict(_section(data, 'backfill'))
    _check_keys(
        backfill_data,
        {'target_date', 'window_days', 'stop_on_empty_days', 'small_window_days',
         'max_windows', 'window_delay_seconds'},
        f"{path}.backfill",
    )
    if 'target_date' in backfill_data:
        backfill_data['target_date'] = _parse_date(backfill_data['target_date'], f"{path}.backfill.target_date")

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError(f"'enabled' in {path} must be a boolean")

    return ProviderConfig(
        enabled=enabled,
        request_delay_seconds=data.get('request_delay_seconds'),
        forward=ForwardConfig(**forward_data),
        backfill=BackfillConfig(**backfill_data),
    )


def _parse_projection_config(data: Dict[str, Any]) -> ProjectionConfig:
    _check_keys(data, {'working_hours', 'cap_multiplier', 'min_same_weekday_samples'}, "projection")

    kwargs: Dict[str, Any] = {}
    hours = data.get('working_hours')
    if hours is not None:
        if not isinstance(hours, dict):
            raise ValueError("'projection.working_hours' must be a dictionary")
        _check_keys(hours, {'start', 'end'}, "projection.working_hours")
        if 'start' in hours:
            kwargs['work_start_hour'] = float(hours['start'])
        if 'end' in hours:
            kwargs['work_end_hour'] = float(hours['end'])
    if 'cap_multiplier' in data:
        kwargs['cap_multiplier'] = float(data['cap_multiplier'])
    if 'min_same_weekday_samples' in data:
        kwargs['min_same_weekday_samples'] = int(data['min_same_weekday_samples'])

    return ProjectionConfig(**kwargs)


def _parse_date(value: Any, path: str) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValueError(f"'{path}' must be a YYYY-MM-DD date")
