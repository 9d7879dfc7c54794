"""Builds the local configuration of a single resource.

A resource may contain more than one container. The cluster default
configuration is cloned for the resource and a finished artifact for every
container is added to it, keyed by the container name. Values are merged with
the following precedence, highest first:

  - configuration returned by the configuration plugin
  - the container artifact from the cluster definition
  - the cluster default configuration
"""

import copy
import logging
from typing import Any

from .events import Events
from .exceptions import ConfigFetchException, DeploymentizerException
from .image import ImageResolver
from .manifest import (
    ClusterDefinition,
    ContainerArtifact,
    Deployment,
    LocalConfiguration,
    ResourceSpec,
)
from .plugin import ConfigFetcher, NullConfigFetcher
from .resource import env_values, expand_external_env, merge_artifact
from .verify import verify_images_for_commit

__all__ = ["ResourceMerger"]

_LOGGER = logging.getLogger(__name__)


class ResourceMerger:
    """Merges defaults, resource and plugin configuration for a resource."""

    def __init__(
        self,
        cluster_def: ClusterDefinition,
        image_resolver: ImageResolver,
        events: Events,
        config_fetcher: ConfigFetcher | None = None,
        deploy_id: str | None = None,
        fast_rollback: bool = False,
        commit_id: str | None = None,
    ) -> None:
        """Initialize ResourceMerger."""
        self._cluster_def = cluster_def
        self._image_resolver = image_resolver
        self._events = events
        self._config_fetcher = config_fetcher or NullConfigFetcher()
        self._deploy_id = deploy_id
        self._fast_rollback = fast_rollback
        self._commit_id = commit_id

    async def build_local_config(
        self,
        default_config: dict[str, Any],
        resource_name: str,
        resource: ResourceSpec,
    ) -> LocalConfiguration:
        """Return a fresh local configuration for the resource."""
        local_config = LocalConfiguration(
            name=resource_name,
            branch=resource.branch or self._cluster_def.branch,
            defaults=copy.deepcopy(default_config),
        )
        if self._deploy_id:
            local_config.deployment = Deployment(
                id=self._deploy_id, fast_rollback=self._fast_rollback
            )

        containers: list[tuple[str, ContainerArtifact]]
        if resource.containers is not None:
            containers = list(resource.containers.items())
        else:
            containers = [(resource_name, resource.artifact)]

        for container_name, container in containers:
            artifact = await self._build_artifact(resource_name, container)
            await self._image_resolver.resolve(local_config, artifact, len(containers))
            local_config.containers[container_name] = artifact

        verify_images_for_commit(
            local_config.to_context(), self._commit_id, self._events
        )

        if resource.svc is not None:
            local_config.svc = copy.deepcopy(resource.svc)
        return local_config

    async def _build_artifact(
        self, resource_name: str, container: ContainerArtifact
    ) -> ContainerArtifact:
        """Merge the plugin configuration into a copy of the container."""
        artifact = container.clone()
        artifact.name = artifact.name or resource_name

        try:
            fetched = await self._config_fetcher.fetch(artifact, self._cluster_def)
        except DeploymentizerException:
            raise
        except Exception as err:
            raise ConfigFetchException(
                f"Unable to fetch configuration for {artifact.name}: {err}"
            ) from err

        if artifact.env is not None:
            artifact.env = expand_external_env(
                artifact.env, env_values(fetched.env if fetched else None)
            )
        if fetched is not None:
            _LOGGER.debug("Merging fetched configuration for %s", artifact.name)
            artifact = merge_artifact(artifact, fetched)
        return artifact
