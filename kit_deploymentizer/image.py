"""Resolution of the container image for each container of a resource.

Images are either looked up from the image resource definitions by image tag
and branch, or built from the commit SHA that originated the generation
request. The commit SHA strategy is gated by a feature flag and any problem
evaluating the flag falls back to the branch lookup.
"""

import logging

from .config import DEFAULT_REGISTRY, IMAGE_SHA_FEATURE
from .events import Events, Metric, resource_tags
from .exceptions import (
    FeatureFlagUnavailable,
    ImageException,
    ImageNotFoundException,
    PrimaryContainerException,
)
from .manifest import (
    ContainerArtifact,
    ImageResourceDefs,
    LocalConfiguration,
    lookup_image,
)
from .plugin import FeatureFlagClient, NullFeatureFlags

__all__ = ["ImageResolver", "is_primary_container"]

_LOGGER = logging.getLogger(__name__)


def is_primary_container(
    container_count: int, resource_name: str | None, primary: bool | None
) -> bool:
    """Return True if the container image follows the commit SHA."""
    if container_count == 1:
        return True
    if primary is None:
        raise PrimaryContainerException(resource_name or "")
    return primary


class ImageResolver:
    """Assigns the image of a container artifact."""

    def __init__(
        self,
        image_resources: ImageResourceDefs,
        events: Events,
        feature_flags: FeatureFlagClient | None = None,
        commit_id: str | None = None,
        registry: str = DEFAULT_REGISTRY,
        feature_name: str = IMAGE_SHA_FEATURE,
    ) -> None:
        """Initialize ImageResolver."""
        self._image_resources = image_resources
        self._events = events
        self._feature_flags = feature_flags or NullFeatureFlags()
        self._commit_id = commit_id
        self._registry = registry
        self._feature_name = feature_name

    async def resolve(
        self,
        local_config: LocalConfiguration,
        artifact: ContainerArtifact,
        container_count: int,
    ) -> None:
        """Set the image of the artifact in place.

        Artifacts with an image already defined are left unchanged. An artifact
        without an image tag is left without an image.
        """
        if artifact.image:
            self._events.warn(f"Image {artifact.image} already defined for {artifact.name}")
            return
        if not (image_tag := artifact.image_tag):
            self._events.warn(f"No image tag found for {artifact.name}")
            self._events.metric(
                Metric.event(
                    "No image tag found",
                    f"No image tag found for resource {artifact.name}",
                    resource_tags(artifact.name),
                )
            )
            return

        try:
            if await self._use_commit_sha(artifact):
                self._set_image_sha(
                    local_config, artifact, image_tag, container_count
                )
            else:
                self._set_image_default(local_config, artifact, image_tag)
        except ImageException as err:
            msg = f"Error setting image for resource {artifact.name}: {err}"
            self._events.warn(msg)
            self._events.metric(
                Metric.event(
                    "Kitserver - Error setting image",
                    msg,
                    resource_tags(artifact.name, feature_name=self._feature_name),
                )
            )
            raise

    async def _use_commit_sha(self, artifact: ContainerArtifact) -> bool:
        """Evaluate the feature flag, treating any failure as disabled."""
        tags = resource_tags(artifact.name, feature_name=self._feature_name)
        try:
            enabled = await self._feature_flags.toggle(self._feature_name)
        except FeatureFlagUnavailable:
            self._events.debug("Feature flag client is undefined")
            self._events.metric(
                Metric.event(
                    "Feature flag client unset",
                    f"Feature flag client is undefined, using default image for {artifact.name}",
                    tags,
                )
            )
            return False
        except Exception as err:  # pylint: disable=broad-except
            msg = f"Error evaluating feature {self._feature_name} for resource {artifact.name}: {err}"
            self._events.warn(msg)
            self._events.metric(Metric.event("Error evaluating feature flag", msg, tags))
            return False
        self._events.metric(
            Metric.increment(
                "feature.enabled" if enabled else "feature.disabled", tags
            )
        )
        return enabled

    def _set_image_sha(
        self,
        local_config: LocalConfiguration,
        artifact: ContainerArtifact,
        image_tag: str,
        container_count: int,
    ) -> None:
        if not self._commit_id:
            self._events.warn(f"No SHA passed in for {artifact.name}")
            self._events.metric(
                Metric.event(
                    "No SHA passed in",
                    f"No SHA passsed in for resource {artifact.name}",
                    resource_tags(artifact.name),
                )
            )
            self._set_image_default(local_config, artifact, image_tag)
            return
        if is_primary_container(container_count, artifact.name, artifact.primary):
            artifact.image = (
                f"{self._registry}/{image_tag}:release-{self._commit_id}"
            )
            _LOGGER.debug("Image for %s set from commit: %s", artifact.name, artifact.image)

    def _set_image_default(
        self,
        local_config: LocalConfiguration,
        artifact: ContainerArtifact,
        image_tag: str,
    ) -> None:
        branch = artifact.branch or local_config.branch or ""
        if not (image := lookup_image(self._image_resources, image_tag, branch)):
            self._events.metric(
                Metric.event(
                    "Image not found",
                    f"Image {image_tag} not found for branch ({branch})",
                    resource_tags(artifact.name, image_tag=image_tag),
                )
            )
            raise ImageNotFoundException(image_tag, branch)
        artifact.image = image
