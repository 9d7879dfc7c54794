"""Helpers for merging and rendering resource configuration."""

from collections.abc import Mapping
import logging
import os
import re
from typing import Any

import pystache
from pystache.common import MissingTags

from .manifest import ContainerArtifact, EnvVar, FetchedConfig

__all__ = [
    "deep_merge",
    "merge_envs",
    "env_values",
    "expand_external_env",
    "merge_artifact",
    "render",
]

_LOGGER = logging.getLogger(__name__)

# Env values may reference externally loaded values e.g. `${DATABASE_URL}`
PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, values in override win. Lists are replaced entirely."""
    result = base.copy()
    for key, override_value in override.items():
        base_value = result.get(key)
        if (
            base_value is not None
            and isinstance(base_value, dict)
            and isinstance(override_value, dict)
        ):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def merge_envs(
    base: list[EnvVar] | None, override: list[EnvVar] | None
) -> list[EnvVar] | None:
    """Merge two env lists by name.

    Entries of base keep their position but take the override value when the
    override has an entry with the same name. Override only entries are
    appended in their original order.
    """
    if base is None and override is None:
        return None
    overrides = {env.name: env for env in override or []}
    result: list[EnvVar] = []
    seen: set[str] = set()
    for env in base or []:
        result.append(overrides.get(env.name, env))
        seen.add(env.name)
    for env in override or []:
        if env.name not in seen:
            result.append(env)
            seen.add(env.name)
    return result


def env_values(env: list[EnvVar] | None) -> dict[str, Any]:
    """Return the env list as a name to value mapping."""
    return {item.name: item.value for item in env or []}


def _expand_value(value: str, external: Mapping[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in external and external[key] is not None:
            return str(external[key])
        if (found := os.environ.get(key)) is not None:
            return found
        _LOGGER.warning("Unable to resolve external env reference %s", key)
        return match.group(0)

    return PLACEHOLDER_RE.sub(replace, value)


def expand_external_env(
    env: list[EnvVar], external: Mapping[str, Any]
) -> list[EnvVar]:
    """Expand `${NAME}` references in env values.

    References are resolved against the externally loaded values first and the
    process environment second. Unresolved references are left as-is.
    """
    result = []
    for item in env:
        if isinstance(item.value, str) and PLACEHOLDER_RE.search(item.value):
            item = EnvVar(
                name=item.name,
                value=_expand_value(item.value, external),
                extra=item.extra,
            )
        result.append(item)
    return result


def merge_artifact(
    artifact: ContainerArtifact, fetched: FetchedConfig
) -> ContainerArtifact:
    """Merge fetched configuration onto a container artifact.

    Fetched fields take precedence over artifact fields. The env lists are
    merged by name with the fetched values winning.
    """
    data = artifact.compact_dict()
    data.pop("env", None)
    merged = ContainerArtifact.parse_doc(deep_merge(data, fetched.extra))
    merged.env = merge_envs(artifact.env, fetched.env)
    return merged


def render(template: str, data: Mapping[str, Any]) -> str:
    """Render a mustache template with the data, missing fields render empty."""
    renderer = pystache.Renderer(
        escape=lambda value: value, missing_tags=MissingTags.ignore
    )
    return renderer.render(template, data)
