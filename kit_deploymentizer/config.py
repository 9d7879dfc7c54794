"""Configuration objects for kit-deploymentizer."""

from dataclasses import dataclass
import logging
import os
from pathlib import Path

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

DEFAULT_REGISTRY = "quay.io"
DEFAULT_SERVICE_TEMPLATE = "base-svc.mustache"
IMAGE_SHA_FEATURE = "kit-deploymentizer-78-image-sha"

ENVAPI_ACCESS_TOKEN = "ENVAPI_ACCESS_TOKEN"
ENVAPI_URL = "ENVAPI_URL"


@dataclass
class GeneratorConfig:
    """Configuration for the Generator of a single cluster."""

    base_path: Path
    """Directory the resource templates and files are loaded from."""

    export_path: Path
    """Root directory, a sub directory per cluster is created under it."""

    save: bool = False
    """When false the full pipeline runs but nothing is written."""

    resource: str | None = None
    """Only process the resource with this name."""

    deploy_id: str | None = None
    """Deployment identifier added to the local configuration."""

    fast_rollback: bool = False
    """Enables fast rollback support in the generated manifests."""

    commit_id: str | None = None
    """SHA of the commit that originated this generation request."""

    registry: str = DEFAULT_REGISTRY
    """Registry prefix used when building images from a commit SHA."""

    service_template: str = DEFAULT_SERVICE_TEMPLATE
    """Template used for rendering service descriptors, relative to base_path."""

    image_sha_feature: str = IMAGE_SHA_FEATURE
    """Feature flag that enables the commit SHA image strategy."""

    def cluster_path(self, cluster_name: str) -> Path:
        """Return the output directory for the cluster."""
        return Path(self.export_path) / cluster_name


@dataclass
class EnvApiConfig:
    """Configuration for the env-api configuration plugin."""

    api_url: str
    api_token: str
    timeout: float = 15.0
    default_branch: str = "master"
    ref: str = "master"

    @classmethod
    def from_env(
        cls,
        api_url: str | None = None,
        commit_id: str | None = None,
        timeout: float | None = None,
    ) -> "EnvApiConfig":
        """Build the configuration, reading the access token from the environment."""
        if not (api_token := os.environ.get(ENVAPI_ACCESS_TOKEN)):
            raise InputException(
                f"The environment variable {ENVAPI_ACCESS_TOKEN} is required."
            )
        if override := os.environ.get(ENVAPI_URL):
            _LOGGER.warning("Overriding ENV-API Url with: %s", override)
            api_url = override
        if not api_url:
            raise InputException("The apiUrl is a required configuration value.")
        return cls(
            api_url=api_url.rstrip("/"),
            api_token=api_token,
            timeout=timeout or 15.0,
            ref=commit_id or "master",
        )
