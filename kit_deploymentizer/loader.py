"""Loading of cluster definitions and image resources from disk."""

import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from .exceptions import InputException
from .manifest import CLUSTER_KIND, ClusterDefinition, ImageResourceDefs

__all__ = [
    "read_cluster_definitions",
    "read_image_resources",
]

_LOGGER = logging.getLogger(__name__)

YAML_GLOB = "*.yaml"


async def _read_docs(path: Path) -> list[dict[str, Any]]:
    async with aiofiles.open(str(path)) as yaml_file:
        content = await yaml_file.read()
    try:
        docs = list(yaml.load_all(content, Loader=yaml.SafeLoader))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path}: {err}") from err
    return [doc for doc in docs if doc]


async def read_cluster_definitions(path: Path) -> list[ClusterDefinition]:
    """Return the cluster definitions in the directory, sorted by file name.

    Every yaml document of kind `ClusterNamespace` is a cluster definition,
    other documents are ignored.
    """
    if not path.is_dir():
        raise InputException(f"Cluster definition path is not a directory: {path}")
    clusters: list[ClusterDefinition] = []
    names: set[str] = set()
    for cluster_file in sorted(path.glob(YAML_GLOB)):
        for doc in await _read_docs(cluster_file):
            if not isinstance(doc, dict) or doc.get("kind") != CLUSTER_KIND:
                _LOGGER.debug("Skipping document in %s", cluster_file)
                continue
            cluster = ClusterDefinition.parse_doc(doc)
            if cluster.name in names:
                raise InputException(
                    f"Duplicate cluster {cluster.name} defined in {cluster_file}"
                )
            names.add(cluster.name)
            clusters.append(cluster)
    _LOGGER.debug("Loaded %d cluster definitions from %s", len(clusters), path)
    return clusters


async def read_image_resources(path: Path) -> ImageResourceDefs:
    """Return the image resources laid out as `<image_tag>/<branch>.yaml`.

    The image tag may itself contain slashes e.g. `invision/auth/develop.yaml`.
    Each file holds a mapping with at least an `image` key.
    """
    defs: ImageResourceDefs = {}
    for image_file in sorted(path.rglob(YAML_GLOB)):
        image_tag = image_file.parent.relative_to(path).as_posix()
        if image_tag == ".":
            _LOGGER.debug("Skipping image file without image tag %s", image_file)
            continue
        docs = await _read_docs(image_file)
        if not docs or not isinstance(docs[0], dict) or "image" not in docs[0]:
            raise InputException(f"Invalid image resource missing image: {image_file}")
        defs.setdefault(image_tag, {})[image_file.stem] = docs[0]
    return defs
