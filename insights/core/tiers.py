"""
Rate-Limit Tiers
================
Daily call allowances per contracted tier.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from insights.config import settings

logger = structlog.get_logger()

DEFAULT_TIERS: dict[str, int] = {
    "base": 1_000,
    "growth": 10_000,
    "enterprise": 100_000,
}


class TierCatalog:
    """
    Resolves a client's tier to its daily request allowance.

    Loads tiers from YAML configuration, falling back to built-in defaults.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or settings.tiers_config_path
        self._tiers: dict[str, int] = {}
        self._load_tiers()

    def _load_tiers(self) -> None:
        """Load tier configuration from YAML file."""
        config_file = Path(self.config_path)

        if not config_file.exists():
            logger.warning("Tier config not found, using defaults", path=self.config_path)
            self._tiers = dict(DEFAULT_TIERS)
            return

        try:
            with open(config_file) as f:
                data: dict[str, Any] = yaml.safe_load(f) or {}
            tiers = data.get("tiers", {})
            self._tiers = {
                name: int(cfg["daily_limit"])
                for name, cfg in tiers.items()
                if isinstance(cfg, dict) and "daily_limit" in cfg
            }
            if not self._tiers:
                raise ValueError("no tiers defined")
            logger.info("Loaded tier configuration", path=self.config_path, tiers=len(self._tiers))
        except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
            logger.error("Failed to load tier config", path=self.config_path, error=str(e))
            self._tiers = dict(DEFAULT_TIERS)

    def reload(self) -> None:
        """Reload tier configuration from file."""
        self._load_tiers()

    def daily_limit(self, tier: str, override: Optional[int] = None) -> int:
        """
        Get the daily call limit for a tier.

        A per-client override wins over the tier value. Unknown tiers get the
        smallest configured allowance.
        """
        if override is not None:
            return override

        limit = self._tiers.get(tier.lower())
        if limit is None:
            logger.warning("Unknown tier, using smallest allowance", tier=tier)
            return min(self._tiers.values())
        return limit

    def tiers(self) -> dict[str, int]:
        return dict(sorted(self._tiers.items(), key=lambda item: item[1]))


@lru_cache
def get_tier_catalog() -> TierCatalog:
    """Get cached tier catalog instance."""
    return TierCatalog()
