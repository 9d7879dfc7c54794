"""Representation of cluster definitions and the resources deployed to them.

A cluster definition describes a deployment target along with the default
configuration shared by every resource and the resources themselves. The
objects here are parsed from the cluster definition files and then used as a
read-only source of truth while manifests are generated. Working copies for a
single resource are held in a `LocalConfiguration`.
"""

import copy
from dataclasses import dataclass, field
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "EnvVar",
    "ContainerArtifact",
    "ServiceSpec",
    "ResourceSpec",
    "ClusterDefinition",
    "Deployment",
    "LocalConfiguration",
    "FetchedConfig",
    "ImageResourceDefs",
    "lookup_image",
]

_LOGGER = logging.getLogger(__name__)


CLUSTER_KIND = "ClusterNamespace"
DEFAULT_BRANCH = "master"

# Mapping of image_tag to branch to an image record containing `image`.
ImageResourceDefs = dict[str, dict[str, dict[str, Any]]]


def lookup_image(defs: ImageResourceDefs, image_tag: str, branch: str) -> str | None:
    """Return the image for the image tag and branch, if defined."""
    if not (branches := defs.get(image_tag)):
        _LOGGER.debug("No image resources defined for %s", image_tag)
        return None
    if not (record := branches.get(branch)):
        return None
    return record.get("image")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    def compact_dict(self) -> dict[str, Any]:
        """Return the dictionary representation used as template data."""
        return self.to_dict()

    class Config(BaseConfig):
        omit_none = True


def _split_fields(
    doc: dict[str, Any], known: frozenset[str]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a document into known fields and passthrough fields."""
    fields = {k: v for k, v in doc.items() if k in known}
    extra = {k: copy.deepcopy(v) for k, v in doc.items() if k not in known}
    return fields, extra


@dataclass
class EnvVar(BaseManifest):
    """A single environment variable of a container."""

    name: str
    """The name of the environment variable."""

    value: Any = None
    """The value, which may be a placeholder reference like `${NAME}`."""

    extra: dict[str, Any] = field(
        default_factory=dict, metadata={"serialize": "omit"}
    )
    """Passthrough fields such as `valueFrom`."""

    FIELDS: ClassVar[frozenset[str]] = frozenset({"name", "value"})

    @classmethod
    def parse_doc(cls, doc: Any) -> "EnvVar":
        """Parse an env entry from a `{name, value}` record."""
        if not isinstance(doc, dict) or not (name := doc.get("name")):
            raise InputException(f"Invalid env entry missing name: {doc}")
        fields, extra = _split_fields(doc, cls.FIELDS)
        return cls(name=name, value=copy.deepcopy(fields.get("value")), extra=extra)

    def compact_dict(self) -> dict[str, Any]:
        result = copy.deepcopy(self.extra)
        result.update(self.to_dict())
        return result


def parse_env(docs: Any) -> list[EnvVar] | None:
    """Parse a list of env entries."""
    if docs is None:
        return None
    if not isinstance(docs, list):
        raise InputException(f"Invalid env, expected a list: {docs}")
    return [EnvVar.parse_doc(doc) for doc in docs]


@dataclass
class ContainerArtifact(BaseManifest):
    """The configuration of a single container of a resource."""

    name: str | None = None
    """The name of the container."""

    image: str | None = None
    """The final resolved image reference."""

    image_tag: str | None = None
    """Logical key used to resolve the image."""

    branch: str | None = None
    """Branch used to resolve the image, overriding the resource branch."""

    primary: bool | None = None
    """Container whose image follows the commit SHA when there are several."""

    env: list[EnvVar] | None = None
    """Ordered environment variables."""

    annotations: dict[str, Any] | None = None
    """Annotations, used by configuration plugins to locate values."""

    extra: dict[str, Any] = field(
        default_factory=dict, metadata={"serialize": "omit"}
    )
    """Passthrough fields rendered as-is into templates."""

    FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"name", "image", "image_tag", "branch", "primary", "env", "annotations"}
    )

    @classmethod
    def parse_doc(cls, doc: Any) -> "ContainerArtifact":
        """Parse a container artifact from a resource or container record."""
        if doc is None:
            doc = {}
        if not isinstance(doc, dict):
            raise InputException(f"Invalid container, expected a mapping: {doc}")
        fields, extra = _split_fields(doc, cls.FIELDS)
        return cls(
            name=fields.get("name"),
            image=fields.get("image"),
            image_tag=fields.get("image_tag"),
            branch=fields.get("branch"),
            primary=fields.get("primary"),
            env=parse_env(fields.get("env")),
            annotations=copy.deepcopy(fields.get("annotations")),
            extra=extra,
        )

    def clone(self) -> "ContainerArtifact":
        """Return a deep copy that can be mutated independently."""
        return copy.deepcopy(self)

    def compact_dict(self) -> dict[str, Any]:
        result = copy.deepcopy(self.extra)
        result.update(self.to_dict())
        if self.env is not None:
            result["env"] = [env.compact_dict() for env in self.env]
        return result


@dataclass
class ServiceSpec(BaseManifest):
    """Service descriptor of a resource, rendered with the service template."""

    name: str
    """Name of the service, also used as the output file name."""

    extra: dict[str, Any] = field(
        default_factory=dict, metadata={"serialize": "omit"}
    )

    @classmethod
    def parse_doc(cls, doc: Any) -> "ServiceSpec":
        if not isinstance(doc, dict) or not (name := doc.get("name")):
            raise InputException(f"Invalid svc missing name: {doc}")
        _, extra = _split_fields(doc, frozenset({"name"}))
        return cls(name=name, extra=extra)

    def compact_dict(self) -> dict[str, Any]:
        result = copy.deepcopy(self.extra)
        result["name"] = self.name
        return result


@dataclass
class ResourceSpec(BaseManifest):
    """A deployable unit within a cluster."""

    name: str
    """The name of the resource, unique within a cluster."""

    artifact: ContainerArtifact
    """The resource itself viewed as a container, used without `containers`."""

    file: str | None = None
    """Path to the resource file relative to the base path."""

    svc: ServiceSpec | None = None
    """Optional service descriptor."""

    containers: dict[str, ContainerArtifact] | None = None
    """Named containers of the resource, in declaration order."""

    disable: bool = False
    """Disabled resources are skipped entirely."""

    branch: str | None = None
    """Branch override for the resource."""

    @classmethod
    def parse_doc(cls, name: str, doc: Any) -> "ResourceSpec":
        """Parse a resource from the cluster definition resource map."""
        if doc is None:
            doc = {}
        if not isinstance(doc, dict):
            raise InputException(f"Invalid resource {name}, expected a mapping: {doc}")
        containers: dict[str, ContainerArtifact] | None = None
        if (raw_containers := doc.get("containers")) is not None:
            if not isinstance(raw_containers, dict):
                raise InputException(
                    f"Invalid resource {name}, containers must be a mapping"
                )
            containers = {
                container_name: ContainerArtifact.parse_doc(container)
                for container_name, container in raw_containers.items()
            }
        svc = ServiceSpec.parse_doc(doc["svc"]) if doc.get("svc") else None
        return cls(
            name=name,
            artifact=ContainerArtifact.parse_doc(
                {k: v for k, v in doc.items() if k != "containers"}
            ),
            file=doc.get("file"),
            svc=svc,
            containers=containers,
            disable=doc.get("disable") is True,
            branch=doc.get("branch"),
        )


@dataclass(frozen=True)
class ClusterDefinition:
    """Immutable view over a cluster, its defaults and its resources."""

    name: str
    """The name of the cluster, used as the output directory name."""

    cluster_type: str | None = None
    environment: str | None = None
    namespace: str | None = None
    server: str | None = None

    branch: str = DEFAULT_BRANCH
    """Default branch of every resource in the cluster."""

    allow_failure: bool = False
    """When true, failures of a single resource do not abort the cluster."""

    configuration: dict[str, Any] = field(default_factory=dict)
    """The default configuration shared by all resources."""

    resources: dict[str, ResourceSpec] | None = None
    """Resources by name in declaration order, None when none are declared."""

    extra_metadata: dict[str, Any] = field(default_factory=dict)
    """Additional metadata fields passed along to configuration plugins."""

    def metadata(self) -> dict[str, Any]:
        """Return the cluster metadata as a flat record."""
        result = copy.deepcopy(self.extra_metadata)
        result.update(
            {
                k: v
                for k, v in {
                    "name": self.name,
                    "type": self.cluster_type,
                    "environment": self.environment,
                    "namespace": self.namespace,
                    "server": self.server,
                    "branch": self.branch,
                }.items()
                if v is not None
            }
        )
        return result

    def default_configuration(self) -> dict[str, Any]:
        """Return a copy of the default configuration."""
        return copy.deepcopy(self.configuration)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ClusterDefinition":
        """Parse a cluster definition document."""
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid cluster missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid cluster missing metadata.name: {doc}")
        spec = doc.get("spec") or {}
        resources: dict[str, ResourceSpec] | None = None
        if (raw_resources := spec.get("resources")) is not None:
            if not isinstance(raw_resources, dict):
                raise InputException(
                    f"Invalid cluster {name}, resources must be a mapping"
                )
            resources = {
                resource_name: ResourceSpec.parse_doc(resource_name, resource)
                for resource_name, resource in raw_resources.items()
            }
        known = {
            "name",
            "type",
            "environment",
            "namespace",
            "branch",
            "allowFailure",
        }
        return cls(
            name=name,
            cluster_type=metadata.get("type"),
            environment=metadata.get("environment"),
            namespace=metadata.get("namespace", name),
            server=spec.get("server"),
            branch=metadata.get("branch") or DEFAULT_BRANCH,
            allow_failure=metadata.get("allowFailure") is True,
            configuration=copy.deepcopy(spec.get("configuration") or {}),
            resources=resources,
            extra_metadata={k: v for k, v in metadata.items() if k not in known},
        )


@dataclass
class Deployment(BaseManifest):
    """Deployment information added when a deploy id is supplied."""

    id: str
    fast_rollback: bool = field(
        default=False, metadata=field_options(alias="fastRollback")
    )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class LocalConfiguration:
    """Working copy of the configuration for a single resource.

    This is created fresh for every resource and discarded after rendering.
    """

    name: str
    """Name of the resource."""

    branch: str | None
    """Effective branch of the resource."""

    defaults: dict[str, Any] = field(default_factory=dict)
    """Clone of the cluster default configuration."""

    deployment: Deployment | None = None

    containers: dict[str, ContainerArtifact] = field(default_factory=dict)
    """Finished container artifacts by container name."""

    svc: ServiceSpec | None = None

    def to_context(self) -> dict[str, Any]:
        """Return the data used when rendering templates for the resource."""
        data = copy.deepcopy(self.defaults)
        data["name"] = self.name
        data["branch"] = self.branch
        if self.deployment is not None:
            existing = data.get("deployment")
            if isinstance(existing, dict):
                existing.update(self.deployment.to_dict())
            else:
                data["deployment"] = self.deployment.to_dict()
        for container_name, artifact in self.containers.items():
            data[container_name] = artifact.compact_dict()
        if self.svc is not None:
            data["svc"] = self.svc.compact_dict()
        return data


@dataclass
class FetchedConfig:
    """Configuration returned by a configuration plugin for one container."""

    env: list[EnvVar] | None = None
    """Fetched environment variables, taking precedence over the artifact."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Other fetched fields, taking precedence over the artifact."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any] | None) -> "FetchedConfig":
        if not doc:
            return cls()
        return cls(
            env=parse_env(doc.get("env")),
            extra={k: copy.deepcopy(v) for k, v in doc.items() if k != "env"},
        )
