"""
Tier catalog lookups.

Maps a subscription tier to its models, feature flags and limits. The
table is validated once on construction and never re-parsed per request.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from ai_tier_router.config.loader import (
    MODEL_OVERRIDE_FEATURE,
    RateLimitPolicy,
    TierConfig,
    capabilities_of,
)
from .errors import ConfigurationError


class TierCatalog:
    """Read-only view over the per-tier configuration.

    Every lookup is total over the loaded table: an unknown tier or a
    capability without an entry raises ``ConfigurationError`` instead of
    falling back to some default, since a silent default could hand a
    paid model to the wrong tier.
    """

    def __init__(self, tiers: Dict[str, TierConfig]):
        """Build and validate the catalog.

        Args:
            tiers: Parsed tier configuration keyed by tier name

        Raises:
            ConfigurationError: If the table is empty or a tier lacks a
                capability another tier defines
        """
        if not tiers:
            raise ConfigurationError("Tier catalog cannot be empty")

        capabilities = capabilities_of(tiers)
        for name, tier in tiers.items():
            missing = [c for c in capabilities if c not in tier.models]
            if missing:
                raise ConfigurationError(
                    f"Tier '{name}' has no model for capabilities: {missing}"
                )

        self._tiers = MappingProxyType(dict(tiers))
        self._capabilities = tuple(capabilities)

    @property
    def tiers(self) -> List[str]:
        return sorted(self._tiers)

    @property
    def capabilities(self) -> List[str]:
        return list(self._capabilities)

    def _tier(self, tier: str) -> TierConfig:
        try:
            return self._tiers[tier]
        except KeyError:
            raise ConfigurationError(f"Unknown tier: {tier}")

    def model_for(self, tier: str, capability: str) -> str:
        """Model configured for a capability on a tier.

        Raises:
            ConfigurationError: If tier or capability is not configured
        """
        models = self._tier(tier).models
        if capability not in models:
            raise ConfigurationError(f"No model configured for capability '{capability}' on tier '{tier}'")
        return models[capability]

    def features_for(self, tier: str) -> Mapping[str, bool]:
        return MappingProxyType(self._tier(tier).features)

    def rate_limit_for(self, tier: str) -> RateLimitPolicy:
        return self._tier(tier).rate_limits

    def daily_chat_limit_for(self, tier: str) -> Optional[int]:
        """Daily chat ceiling for a tier, ``None`` when unlimited."""
        return self._tier(tier).max_daily_chats

    def allows_override(self, tier: str) -> bool:
        return bool(self.features_for(tier).get(MODEL_OVERRIDE_FEATURE, False))
