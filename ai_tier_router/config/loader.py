"""
Configuration management and loading.

Handles the tier catalog, the fallback graph and runtime settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ai_tier_router.core.errors import ConfigurationError

# Config values meaning "no limit"
UNLIMITED_SENTINEL = -1
UNLIMITED_WORD = "unlimited"

MODEL_OVERRIDE_FEATURE = "modelOverride"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Per-tier request limits. ``None`` means unlimited."""
    requests_per_minute: Optional[int]
    max_tokens_per_request: Optional[int]

    def __post_init__(self):
        """Validate limits are not negative."""
        if self.requests_per_minute is not None and self.requests_per_minute < 0:
            raise ConfigurationError("requests_per_minute must be >= 0 or unlimited")
        if self.max_tokens_per_request is not None and self.max_tokens_per_request < 0:
            raise ConfigurationError("max_tokens_per_request must be >= 0 or unlimited")


@dataclass(frozen=True)
class TierConfig:
    """Everything a single subscription tier is allowed to do."""
    name: str
    models: Dict[str, str]
    features: Dict[str, bool]
    rate_limits: RateLimitPolicy
    max_daily_chats: Optional[int] = None

    def __post_init__(self):
        if self.max_daily_chats is not None and self.max_daily_chats < 0:
            raise ConfigurationError(f"max_daily_chats for tier '{self.name}' must be >= 0 or unlimited")


@dataclass(frozen=True)
class RuntimeSettings:
    """Process-level settings shared by all requests."""
    timezone: str = "Asia/Tokyo"
    timeout_seconds: float = 30.0
    db_path: str = "ai_tier_router.db"
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0

    def __post_init__(self):
        """Validate timeout, retry policy and time zone."""
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0")
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be an integer >= 1")
        if self.retry_delay_seconds < 0:
            raise ConfigurationError("retry_delay_seconds must be >= 0")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError, TypeError):
            raise ConfigurationError(f"Unknown timezone: {self.timezone}")


@dataclass(frozen=True)
class CatalogConfig:
    """Complete validated configuration."""
    tiers: Dict[str, TierConfig]
    fallbacks: Dict[str, Tuple[str, ...]]
    settings: RuntimeSettings = field(default_factory=RuntimeSettings)


# Default tier table, used when no catalog file is given
DEFAULT_CATALOG: Dict[str, Any] = {
    "tiers": {
        "free": {
            "max_daily_chats": UNLIMITED_SENTINEL,  # more chats unlocked by rewarded ads
            "models": {
                "characterReply": "gpt-3.5-turbo",
                "emotionDetect": "gpt-3.5-turbo",
                "scheduleExtract": "gpt-3.5-turbo",
                "diary": "gpt-3.5-turbo",
                "big5Analysis": "gpt-4o",
                "characterDetails": "gpt-4o",
            },
            "features": {
                "highQualityAnalysis": True,
                "advancedPersonality": True,
                "voiceGeneration": False,
                "customCharacterCreation": True,
                MODEL_OVERRIDE_FEATURE: False,
            },
            "rate_limits": {
                "requests_per_minute": 5,
                "max_tokens_per_request": 1000,
            },
        },
        "premium": {
            "max_daily_chats": UNLIMITED_SENTINEL,
            "models": {
                "characterReply": "gpt-4o",
                "emotionDetect": "gpt-4o-mini",
                "scheduleExtract": "gpt-4o-mini",
                "diary": "gpt-4o",
                "big5Analysis": "gpt-4o",
                "characterDetails": "gpt-4o",
            },
            "features": {
                "highQualityAnalysis": True,
                "advancedPersonality": True,
                "voiceGeneration": True,
                "customCharacterCreation": True,
                MODEL_OVERRIDE_FEATURE: True,
            },
            "rate_limits": {
                "requests_per_minute": 30,
                "max_tokens_per_request": 4000,
            },
        },
    },
    "fallbacks": {
        "gpt-4o": ["gpt-4o-mini", "gpt-3.5-turbo"],
        "gpt-4o-mini": ["gpt-3.5-turbo"],
        "gpt-3.5-turbo": [],
    },
    "settings": {
        "timezone": "Asia/Tokyo",
        "timeout_seconds": 30,
        "db_path": "ai_tier_router.db",
        # Per model, with exponential backoff: 1s, 2s, ...
        "max_attempts": 3,
        "retry_delay_seconds": 1,
    },
}


def default_catalog_config() -> CatalogConfig:
    """Build the configuration from the built-in tier table."""
    return parse_catalog_config(DEFAULT_CATALOG)


def load_catalog_config(path: str) -> CatalogConfig:
    """Load and validate the catalog configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    put a user on the wrong billing tier.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated CatalogConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If YAML or configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Catalog config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")

    return parse_catalog_config(raw_config)


def parse_catalog_config(raw_config: Dict[str, Any]) -> CatalogConfig:
    """Validate an already-parsed configuration mapping.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a dictionary")

    _reject_unknown_keys(raw_config, {'tiers', 'fallbacks', 'settings'}, "configuration")

    if 'tiers' not in raw_config:
        raise ConfigurationError("Missing required 'tiers' section")
    tiers_data = raw_config['tiers']
    if not isinstance(tiers_data, dict) or not tiers_data:
        raise ConfigurationError("'tiers' must be a non-empty dictionary")

    tiers = {}
    for tier_name, tier_data in tiers_data.items():
        tiers[str(tier_name)] = _parse_tier(str(tier_name), tier_data)

    fallbacks_data = raw_config.get('fallbacks') or {}
    if not isinstance(fallbacks_data, dict):
        raise ConfigurationError("'fallbacks' must be a dictionary")

    fallbacks = {}
    for model, chain in fallbacks_data.items():
        if chain is None:
            chain = []
        if not isinstance(chain, list) or not all(isinstance(m, str) and m for m in chain):
            raise ConfigurationError(f"'fallbacks.{model}' must be a list of model names")
        fallbacks[str(model)] = tuple(chain)

    settings_data = raw_config.get('settings') or {}
    if not isinstance(settings_data, dict):
        raise ConfigurationError("'settings' must be a dictionary")
    _reject_unknown_keys(
        settings_data,
        {'timezone', 'timeout_seconds', 'db_path', 'max_attempts', 'retry_delay_seconds'},
        "settings"
    )

    try:
        settings = RuntimeSettings(**settings_data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings: {e}")

    return CatalogConfig(tiers=tiers, fallbacks=fallbacks, settings=settings)


def _parse_tier(name: str, data: Any) -> TierConfig:
    """Parse and validate a single tier section.

    Args:
        name: Tier name
        data: Tier configuration data

    Returns:
        Validated TierConfig

    Raises:
        ConfigurationError: If configuration is invalid
    """
    path = f"tiers.{name}"
    if not isinstance(data, dict):
        raise ConfigurationError(f"Tier '{name}' must be a dictionary")

    _reject_unknown_keys(data, {'models', 'features', 'rate_limits', 'max_daily_chats'}, path)

    models = data.get('models')
    if not isinstance(models, dict) or not models:
        raise ConfigurationError(f"Missing required 'models' in {path}")
    for capability, model in models.items():
        if not isinstance(model, str) or not model.strip():
            raise ConfigurationError(f"'{path}.models.{capability}' must be a model name")

    features = data.get('features') or {}
    if not isinstance(features, dict):
        raise ConfigurationError(f"'features' in {path} must be a dictionary")
    for feature, enabled in features.items():
        if not isinstance(enabled, bool):
            raise ConfigurationError(f"'{path}.features.{feature}' must be true or false")

    limits = data.get('rate_limits')
    if not isinstance(limits, dict):
        raise ConfigurationError(f"Missing required 'rate_limits' in {path}")
    _reject_unknown_keys(limits, {'requests_per_minute', 'max_tokens_per_request'}, f"{path}.rate_limits")
    for key in ('requests_per_minute', 'max_tokens_per_request'):
        if key not in limits:
            raise ConfigurationError(f"Missing required '{key}' in {path}.rate_limits")

    rate_limits = RateLimitPolicy(
        requests_per_minute=_parse_limit(limits['requests_per_minute'], f"{path}.rate_limits.requests_per_minute"),
        max_tokens_per_request=_parse_limit(limits['max_tokens_per_request'], f"{path}.rate_limits.max_tokens_per_request"),
    )

    return TierConfig(
        name=name,
        models={str(k): v for k, v in models.items()},
        features={str(k): v for k, v in features.items()},
        rate_limits=rate_limits,
        max_daily_chats=_parse_limit(data.get('max_daily_chats', UNLIMITED_SENTINEL), f"{path}.max_daily_chats"),
    )


def _parse_limit(value: Any, path: str) -> Optional[int]:
    """Convert a configured limit into an int, or None for unlimited."""
    if value is None or value == UNLIMITED_SENTINEL:
        return None
    if isinstance(value, str) and value.strip().lower() == UNLIMITED_WORD:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{path}' must be an integer, -1 or 'unlimited'")
    if value < 0:
        raise ConfigurationError(f"'{path}' must be >= 0 (use -1 or 'unlimited' for no limit)")
    return value


def _reject_unknown_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {path}: {sorted(unknown_keys)}")


def capabilities_of(tiers: Dict[str, TierConfig]) -> List[str]:
    """All capability names used by any tier, sorted."""
    names = set()
    for tier in tiers.values():
        names.update(tier.models)
    return sorted(names)
