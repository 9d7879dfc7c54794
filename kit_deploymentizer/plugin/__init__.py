"""Capabilities the generation pipeline depends on.

Configuration plugins load environment variables and other values for a
container from an external service. Feature flag clients decide which image
resolution strategy is used. Null implementations are used when a capability
is not configured.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
import logging
import os

from kit_deploymentizer.exceptions import FeatureFlagUnavailable
from kit_deploymentizer.manifest import (
    ClusterDefinition,
    ContainerArtifact,
    FetchedConfig,
)

__all__ = [
    "ConfigFetcher",
    "NullConfigFetcher",
    "FeatureFlagClient",
    "NullFeatureFlags",
    "StaticFeatureFlags",
    "EnvFeatureFlags",
]

_LOGGER = logging.getLogger(__name__)

FEATURES_ENV = "FEATURES_ACTIVED"


class ConfigFetcher(ABC):
    """Loads configuration for a container from an external source."""

    @abstractmethod
    async def fetch(
        self, artifact: ContainerArtifact, cluster: ClusterDefinition
    ) -> FetchedConfig | None:
        """Return the configuration for the container, or None to skip merging."""


class NullConfigFetcher(ConfigFetcher):
    """Used when no configuration plugin is configured."""

    async def fetch(
        self, artifact: ContainerArtifact, cluster: ClusterDefinition
    ) -> FetchedConfig | None:
        return None


class FeatureFlagClient(ABC):
    """Evaluates named feature toggles."""

    @abstractmethod
    async def toggle(self, feature: str) -> bool:
        """Return True if the feature is enabled."""


class NullFeatureFlags(FeatureFlagClient):
    """Used when no feature flag client is configured."""

    async def toggle(self, feature: str) -> bool:
        raise FeatureFlagUnavailable(
            f"No feature flag client configured to evaluate {feature}"
        )


class StaticFeatureFlags(FeatureFlagClient):
    """Feature flags from a fixed set of enabled feature names."""

    def __init__(self, enabled: Iterable[str]) -> None:
        """Initialize StaticFeatureFlags."""
        self._enabled = frozenset(name for name in enabled if name)

    async def toggle(self, feature: str) -> bool:
        return feature in self._enabled


class EnvFeatureFlags(StaticFeatureFlags):
    """Feature flags read from the comma separated `FEATURES_ACTIVED` variable."""

    def __init__(self, value: str | None = None) -> None:
        """Initialize EnvFeatureFlags."""
        if value is None:
            value = os.environ.get(FEATURES_ENV, "")
        super().__init__(name.strip() for name in value.split(","))
        _LOGGER.debug("Active features: %s", sorted(self._enabled))
