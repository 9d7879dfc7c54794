"""Generation of the deployment manifests for a cluster.

The generator walks the resources of a cluster definition in order. For each
resource a local configuration is built, the resource file is copied or
rendered and an optional service file is rendered from the shared service
template. Resources are processed one at a time.
"""

from collections.abc import Iterable
import logging
from pathlib import Path
from typing import Any

import aiofiles

from .config import GeneratorConfig
from .context import generation_span
from .events import Events
from .exceptions import InputException
from .image import ImageResolver
from .manifest import (
    ClusterDefinition,
    ImageResourceDefs,
    LocalConfiguration,
    ResourceSpec,
    ServiceSpec,
)
from .merger import ResourceMerger
from .plugin import ConfigFetcher, FeatureFlagClient
from .resource import render

__all__ = ["Generator", "generate_all"]

_LOGGER = logging.getLogger(__name__)

YAML_EXTENSION = ".yaml"
TEMPLATE_EXTENSION = ".mustache"


class Generator:
    """Manages generation of files for a given cluster definition."""

    def __init__(
        self,
        cluster_def: ClusterDefinition,
        image_resources: ImageResourceDefs,
        config: GeneratorConfig,
        events: Events | None = None,
        config_fetcher: ConfigFetcher | None = None,
        feature_flags: FeatureFlagClient | None = None,
    ) -> None:
        """Initialize Generator."""
        self._cluster_def = cluster_def
        self._config = config
        self._events = events or Events()
        self._export_path = config.cluster_path(cluster_def.name)
        self._merger = ResourceMerger(
            cluster_def,
            ImageResolver(
                image_resources,
                self._events,
                feature_flags=feature_flags,
                commit_id=config.commit_id,
                registry=config.registry,
                feature_name=config.image_sha_feature,
            ),
            self._events,
            config_fetcher=config_fetcher,
            deploy_id=config.deploy_id,
            fast_rollback=config.fast_rollback,
            commit_id=config.commit_id,
        )

    @property
    def export_path(self) -> Path:
        """Directory the files of the cluster are written to."""
        return self._export_path

    async def process(self) -> None:
        """Create all the files for the cluster definition."""
        cluster_name = self._cluster_def.name
        self._events.info(f"Calling process for {cluster_name}")
        with generation_span(cluster_name):
            self._export_path.mkdir(parents=True, exist_ok=True)
            resources = self._cluster_def.resources
            if resources is None:
                self._events.warn(f"No Resources defined in cluster {cluster_name}")
                return
            if self._config.resource:
                if (resource := resources.get(self._config.resource)) is None:
                    self._events.warn(
                        f"Resource requested {self._config.resource} was not found "
                        f"in cluster {cluster_name}"
                    )
                    return
                await self.process_resource(self._config.resource, resource)
                return
            for resource_name, resource in resources.items():
                await self.process_resource(resource_name, resource)

    async def process_resource(self, resource_name: str, resource: ResourceSpec) -> None:
        """Generate the files of a single resource.

        Failures are logged and skipped when the cluster allows failures,
        otherwise they abort processing of the cluster.
        """
        cluster_name = self._cluster_def.name
        if resource.disable:
            self._events.debug(
                f"Resource {resource_name} is disabled in cluster {cluster_name}, skipping..."
            )
            return
        with generation_span(self._cluster_def.name, resource_name):
            try:
                await self._process_resource(resource_name, resource)
            except Exception as err:
                if not self._cluster_def.allow_failure:
                    raise
                self._events.warn(
                    str(err)
                    or f"Error processing {resource_name} in cluster {cluster_name}"
                )

    async def _process_resource(self, resource_name: str, resource: ResourceSpec) -> None:
        cluster_name = self._cluster_def.name
        local_config = await self._merger.build_local_config(
            self._cluster_def.default_configuration(), resource_name, resource
        )
        if resource.file:
            self._events.debug(
                f"Processing Resource {resource_name} for cluster {cluster_name}"
            )
            file = Path(resource.file)
            if file.suffix == YAML_EXTENSION:
                await self.copy_resource(file)
            elif file.suffix == TEMPLATE_EXTENSION:
                await self.render_resource(file, local_config)
            else:
                raise InputException(f"Unknown file type: {file.suffix}")
        if resource.svc is not None:
            self._events.debug(
                f"Processing Service {resource.svc.name} for cluster {cluster_name}"
            )
            await self.render_service(local_config, resource.svc)

    async def copy_resource(self, file: Path) -> None:
        """Copy a resource file unchanged to the output directory."""
        source = Path(self._config.base_path) / file
        target = self._export_path / file.name
        self._events.debug(f"Copying file from {source} to {target}")
        if not self._config.save:
            self._events.debug(f"Saving is disabled, skipping {file.stem}")
            return
        async with aiofiles.open(str(source), mode="rb") as source_file:
            content = await source_file.read()
        async with aiofiles.open(str(target), mode="wb") as target_file:
            await target_file.write(content)

    async def render_resource(
        self, file: Path, local_config: LocalConfiguration
    ) -> None:
        """Render a resource template and write it to the output directory."""
        template = await _read_text(Path(self._config.base_path) / file)
        content = render(template, local_config.to_context())
        await self._save(file.stem, content)

    async def render_service(
        self, local_config: LocalConfiguration, svc: ServiceSpec
    ) -> None:
        """Render the service template for the resource service descriptor."""
        template = await _read_text(
            Path(self._config.base_path) / self._config.service_template
        )
        content = render(template, local_config.to_context())
        await self._save(svc.name, content)

    async def _save(self, name: str, content: str) -> None:
        if not self._config.save:
            self._events.debug(f"Saving is disabled, skipping {name}")
            return
        target = self._export_path / f"{name}{YAML_EXTENSION}"
        _LOGGER.debug("Writing %s", target)
        async with aiofiles.open(str(target), mode="w") as target_file:
            await target_file.write(content)


async def _read_text(path: Path) -> str:
    async with aiofiles.open(str(path)) as template_file:
        return await template_file.read()


async def generate_all(
    clusters: Iterable[ClusterDefinition],
    image_resources: ImageResourceDefs,
    config: GeneratorConfig,
    **kwargs: Any,
) -> None:
    """Generate the files for every cluster, one cluster at a time."""
    for cluster_def in clusters:
        await Generator(cluster_def, image_resources, config, **kwargs).process()
