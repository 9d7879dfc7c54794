"""Tests for building the local configuration of a resource."""

from typing import Any

import pytest

from kit_deploymentizer.events import Events
from kit_deploymentizer.exceptions import (
    CommitMismatchException,
    ConfigFetchException,
    PrimaryContainerException,
)
from kit_deploymentizer.image import ImageResolver
from kit_deploymentizer.manifest import (
    ClusterDefinition,
    ContainerArtifact,
    EnvVar,
    FetchedConfig,
    ImageResourceDefs,
    ResourceSpec,
)
from kit_deploymentizer.merger import ResourceMerger
from kit_deploymentizer.plugin import ConfigFetcher, StaticFeatureFlags

IMAGE_SHA_FEATURE = "kit-deploymentizer-78-image-sha"
DEVELOP_IMAGE = "SOME-DEVELOP-IMAGE:branch-abc2"


class StubConfigFetcher(ConfigFetcher):
    """Returns the same configuration for every container."""

    def __init__(self, doc: dict[str, Any]) -> None:
        self.doc = doc
        self.calls: list[tuple[str | None, str]] = []

    async def fetch(
        self, artifact: ContainerArtifact, cluster: ClusterDefinition
    ) -> FetchedConfig | None:
        self.calls.append((artifact.name, cluster.name))
        return FetchedConfig.parse_doc(self.doc)


class FailingConfigFetcher(ConfigFetcher):
    async def fetch(
        self, artifact: ContainerArtifact, cluster: ClusterDefinition
    ) -> FetchedConfig | None:
        raise RuntimeError("env-api unavailable")


CONFIG_STUB = {
    "env": [
        {"name": "ENV_ONE", "value": "value-one"},
        {"name": "ENV_TWO", "value": "value-two"},
        {"name": "ENV_THREE", "value": "value-three"},
        {"name": "ENV_FOUR", "value": "value-four"},
    ]
}


def make_merger(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
    config_fetcher: ConfigFetcher | None = None,
    commit_id: str | None = None,
    features: list[str] | None = None,
    **kwargs: Any,
) -> ResourceMerger:
    resolver = ImageResolver(
        image_resources,
        events,
        StaticFeatureFlags(features) if features is not None else None,
        commit_id,
    )
    return ResourceMerger(
        cluster_def,
        resolver,
        events,
        config_fetcher=config_fetcher,
        commit_id=commit_id,
        **kwargs,
    )


async def test_local_config_with_plugin(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    """Test merging values from the resource and the configuration plugin."""
    fetcher = StubConfigFetcher(CONFIG_STUB)
    merger = make_merger(cluster_def, image_resources, events, fetcher)
    assert cluster_def.resources
    resource = cluster_def.resources["auth"]
    local_config = await merger.build_local_config(
        cluster_def.default_configuration(), "auth", resource
    )
    assert local_config.name == "auth"
    assert local_config.branch == "develop"
    assert local_config.svc and local_config.svc.name == "auth-svc"
    container = local_config.containers["auth-con"]
    assert container.name == "auth"
    assert container.image == DEVELOP_IMAGE
    assert container.env == [
        EnvVar("test", "testvalue"),
        EnvVar("ENV_ONE", "value-one"),
        EnvVar("ENV_TWO", "value-two"),
        EnvVar("ENV_THREE", "value-three"),
        EnvVar("ENV_FOUR", "value-four"),
    ]
    assert fetcher.calls == [("auth", "test-cluster")]

    # The cluster definition is never modified
    assert resource.containers
    assert resource.containers["auth-con"].image is None
    assert resource.containers["auth-con"].env == [EnvVar("test", "testvalue")]

    context = local_config.to_context()
    assert context["replicas"] == 2
    assert context["auth-con"]["image"] == DEVELOP_IMAGE
    assert "deployment" not in context


async def test_local_config_without_plugin(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    merger = make_merger(cluster_def, image_resources, events)
    assert cluster_def.resources
    local_config = await merger.build_local_config(
        cluster_def.default_configuration(), "auth", cluster_def.resources["auth"]
    )
    container = local_config.containers["auth-con"]
    assert container.image == DEVELOP_IMAGE
    assert container.env == [EnvVar("test", "testvalue")]


async def test_fetched_values_win(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    """Test fetched values override the artifact and expand placeholders."""
    resource = ResourceSpec.parse_doc(
        "api",
        {
            "image_tag": "node-auth",
            "replicas": 1,
            "env": [
                {"name": "test", "value": "testvalue"},
                {"name": "URL", "value": "https://${HOST}/v1"},
            ],
        },
    )
    fetcher = StubConfigFetcher(
        {
            "replicas": 3,
            "env": [
                {"name": "HOST", "value": "api.example.com"},
                {"name": "test", "value": "fetched"},
            ],
        }
    )
    merger = make_merger(cluster_def, image_resources, events, fetcher)
    local_config = await merger.build_local_config({}, "api", resource)
    container = local_config.containers["api"]
    assert container.name == "api"
    assert container.extra["replicas"] == 3
    assert container.env == [
        EnvVar("test", "fetched"),
        EnvVar("URL", "https://api.example.com/v1"),
        EnvVar("HOST", "api.example.com"),
    ]


async def test_fetch_failure(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    merger = make_merger(cluster_def, image_resources, events, FailingConfigFetcher())
    assert cluster_def.resources
    with pytest.raises(ConfigFetchException, match="env-api unavailable"):
        await merger.build_local_config({}, "auth", cluster_def.resources["auth"])


async def test_deployment(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    """Test the deployment is merged onto the default deployment record."""
    merger = make_merger(
        cluster_def,
        image_resources,
        events,
        deploy_id="deploy-1234",
        fast_rollback=True,
    )
    assert cluster_def.resources
    local_config = await merger.build_local_config(
        {"deployment": {"strategy": "RollingUpdate"}},
        "auth",
        cluster_def.resources["auth"],
    )
    assert local_config.to_context()["deployment"] == {
        "strategy": "RollingUpdate",
        "id": "deploy-1234",
        "fastRollback": True,
    }


async def test_commit_sha_image(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    sha = "3154cf1fff0c547c9628c266f6c013b53228fdc8"
    resource = ResourceSpec.parse_doc(
        "auth", {"containers": {"auth-con": {"image_tag": "invision/auth"}}}
    )
    merger = make_merger(
        cluster_def, image_resources, events, commit_id=sha, features=[IMAGE_SHA_FEATURE]
    )
    local_config = await merger.build_local_config({}, "auth", resource)
    assert local_config.containers["auth-con"].image == f"quay.io/invision/auth:release-{sha}"


async def test_commit_mismatch(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    """Test branch images for another commit fail verification."""
    merger = make_merger(cluster_def, image_resources, events, commit_id="wrong")
    assert cluster_def.resources
    with pytest.raises(CommitMismatchException, match=r"\(abc2\)"):
        await merger.build_local_config({}, "auth", cluster_def.resources["auth"])


async def test_commit_match(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    merger = make_merger(cluster_def, image_resources, events, commit_id="abc2")
    assert cluster_def.resources
    local_config = await merger.build_local_config({}, "auth", cluster_def.resources["auth"])
    assert local_config.containers["auth-con"].image == DEVELOP_IMAGE


async def test_multiple_containers_without_primary(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    resource = ResourceSpec.parse_doc(
        "auth",
        {
            "containers": {
                "auth-con": {"image_tag": "node-auth"},
                "sidecar": {"image_tag": "node-auth"},
            }
        },
    )
    merger = make_merger(
        cluster_def, image_resources, events, commit_id="abc2", features=[IMAGE_SHA_FEATURE]
    )
    with pytest.raises(PrimaryContainerException, match="No primary set for the resource auth"):
        await merger.build_local_config({}, "auth", resource)


async def test_idempotent(
    cluster_def: ClusterDefinition,
    image_resources: ImageResourceDefs,
    events: Events,
) -> None:
    """Test building twice from the same inputs gives the same result."""
    merger = make_merger(
        cluster_def, image_resources, events, StubConfigFetcher(CONFIG_STUB)
    )
    assert cluster_def.resources
    resource = cluster_def.resources["auth"]
    first = await merger.build_local_config(
        cluster_def.default_configuration(), "auth", resource
    )
    second = await merger.build_local_config(
        cluster_def.default_configuration(), "auth", resource
    )
    assert first == second
    assert first.to_context() == second.to_context()
