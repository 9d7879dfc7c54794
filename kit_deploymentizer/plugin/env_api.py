"""Configuration plugin that loads environment variables from the env-api service.

A container opts in with the `kit-deploymentizer/env-api-service` annotation
naming the service to load values for. Containers without the annotation are
skipped. Two versions of the service are supported and the version is chosen
with a feature flag:

  - v3: `POST /v3/vars` with the cluster metadata in the body. Values are
    returned as a mapping of name to value.
  - v4: `GET /v4/resources/<resource>/deployment-environments/<cluster>`.
    Values are returned as an env list.

Example response:
```
{
  "status": "success",
  "message": "fetched 'env.yaml' values for 'testing-cluster' env on 'env-test' branch",
  "values": {"GET_HOSTS_FROM": "dns", "PORT": "80"}
}
```
A partial content response (HTTP 206) is accepted unless the
`kit-deploymentizer-90-fail-deploy-envs` feature is enabled.
"""

import asyncio
import logging
from typing import Any

import aiohttp

from kit_deploymentizer.config import EnvApiConfig
from kit_deploymentizer.events import Events, Metric, resource_tags
from kit_deploymentizer.exceptions import (
    ConfigFetchException,
    FeatureFlagUnavailable,
)
from kit_deploymentizer.manifest import (
    ClusterDefinition,
    ContainerArtifact,
    EnvVar,
    FetchedConfig,
)

from . import ConfigFetcher, FeatureFlagClient, NullFeatureFlags

__all__ = ["EnvApiClient"]

_LOGGER = logging.getLogger(__name__)

ANNOTATION_SERVICE_NAME = "kit-deploymentizer/env-api-service"
ANNOTATION_RESOURCE_NAME = "kit-deploymentizer/env-api-resource"

API_V3 = "v3"
API_V4 = "v4"

API_V4_FEATURE = "kit-deploymentizer-94-api-v4-call"
FAIL_PARTIAL_FEATURE = "kit-deploymentizer-90-fail-deploy-envs"

HTTP_OK = 200
HTTP_PARTIAL_CONTENT = 206


def _metadata_str(value: Any) -> Any:
    """Return metadata values as strings, booleans are rejected by the service."""
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def convert_env_result(values: Any) -> list[EnvVar]:
    """Convert returned values into an env list."""
    if not values:
        return []
    if isinstance(values, dict):
        return [EnvVar(name=name, value=value) for name, value in values.items()]
    return [EnvVar.parse_doc(value) for value in values]


def convert_error_response(body: dict[str, Any]) -> str:
    """Convert the error message and errors of a response body into a string."""
    message = body.get("message") or "Received error"
    if errors := body.get("errors"):
        if isinstance(errors, list):
            errors = "\n".join(str(error) for error in errors)
        message += f"\n {errors}"
    return message


class EnvApiClient(ConfigFetcher):
    """Fetches container environment variables from the env-api service."""

    def __init__(
        self,
        config: EnvApiConfig,
        session: aiohttp.ClientSession,
        events: Events | None = None,
        feature_flags: FeatureFlagClient | None = None,
    ) -> None:
        """Initialize EnvApiClient."""
        self._config = config
        self._session = session
        self._events = events or Events()
        self._feature_flags = feature_flags or NullFeatureFlags()

    async def fetch(
        self, artifact: ContainerArtifact, cluster: ClusterDefinition
    ) -> FetchedConfig | None:
        annotations = artifact.annotations or {}
        if not (service_name := annotations.get(ANNOTATION_SERVICE_NAME)):
            _LOGGER.warning("No env-api-service annotation found for %s", artifact.name)
            return None

        metadata = {k: _metadata_str(v) for k, v in cluster.metadata().items()}
        params: dict[str, Any] = {
            "environment": cluster.environment,
            "cluster": cluster.name,
            "metadata": metadata,
            "ref": self._config.ref,
        }
        tags = resource_tags(
            service_name,
            envapi_environment=str(cluster.environment),
            envapi_cluster=cluster.name,
            envapi_resource=service_name,
            envapi_version=API_V3,
            envapi_resource_ref=self._config.ref,
        )
        try:
            version = await self._api_version(tags)
            if version == API_V4:
                params["service"] = annotations.get(
                    ANNOTATION_RESOURCE_NAME, artifact.name
                )
                tags["envapi_version"] = API_V4
                status, body = await self._call_v4(params)
            else:
                params["service"] = service_name
                status, body = await self._call_v3(params)
            return await self._parse_response(status, body, tags)
        except (aiohttp.ClientError, asyncio.TimeoutError, ConfigFetchException) as err:
            self._events.metric(
                Metric.event(
                    "Failure getting envs through envapi",
                    f"Error getting envs with envapi: {err}",
                    resource_tags(
                        envapi_resource=service_name,
                        envapi_environment=str(cluster.environment),
                        envapi_cluster=cluster.name,
                        status="error",
                    ),
                )
            )
            if isinstance(err, ConfigFetchException):
                raise
            raise ConfigFetchException(str(err) or type(err).__name__) from err

    async def _api_version(self, tags: dict[str, str]) -> str:
        """Determine the api version to call based on a feature flag."""
        try:
            enabled = await self._feature_flags.toggle(API_V4_FEATURE)
        except FeatureFlagUnavailable:
            _LOGGER.debug("Feature flag client is undefined, using %s", API_V3)
            return API_V3
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.warning("Unable to evaluate %s, using %s: %s", API_V4_FEATURE, API_V3, err)
            return API_V3
        tags["feature_name"] = API_V4_FEATURE
        self._events.metric(
            Metric.increment(
                "feature.enabled" if enabled else "feature.disabled", dict(tags)
            )
        )
        return API_V4 if enabled else API_V3

    async def _call_v4(self, params: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        url = (
            f"{self._config.api_url}/v4/resources/{params['service']}"
            f"/deployment-environments/{params['cluster']}"
        )
        return await self._request("GET", url, params={"ref": params["ref"]})

    async def _call_v3(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        return await self._request("POST", f"{self._config.api_url}/v3/vars", json=payload)

    async def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> tuple[int, dict[str, Any]]:
        _LOGGER.debug("Calling env-api %s %s", method, url)
        async with self._session.request(
            method,
            url,
            headers={"X-Auth-Token": self._config.api_token},
            timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            **kwargs,
        ) as resp:
            try:
                body = await resp.json(content_type=None)
            except ValueError as err:
                raise ConfigFetchException(
                    f"Unable to parse env-api response: {err}", resp.status
                ) from err
            if body is not None and not isinstance(body, dict):
                raise ConfigFetchException(
                    f"Unexpected env-api response body: {body!r}", resp.status
                )
            return resp.status, body or {}

    async def _parse_response(
        self, status: int, body: dict[str, Any], tags: dict[str, str]
    ) -> FetchedConfig:
        self._events.metric(Metric.increment("envapi.call", dict(tags)))
        if status not in (HTTP_OK, HTTP_PARTIAL_CONTENT):
            if body.get("status") == "error":
                _LOGGER.error("Error in returned response %s", body.get("message"))
                raise ConfigFetchException(convert_error_response(body), status)
            raise ConfigFetchException(
                body.get("message") or "No error message supplied", status
            )

        result = FetchedConfig(env=convert_env_result(body.get("values")))
        if status == HTTP_OK:
            return result

        err = f"Success with partial content: {body.get('errors')}"
        self._events.metric(Metric.event("Partial Content", err, dict(tags)))
        try:
            fail_partial = await self._feature_flags.toggle(FAIL_PARTIAL_FEATURE)
        except FeatureFlagUnavailable:
            self._events.metric(
                Metric.event(
                    "Feature flag client undefined",
                    "Feature flag client is undefined",
                    dict(tags),
                )
            )
            return result
        self._events.metric(
            Metric.increment(
                "feature.enabled" if fail_partial else "feature.disabled",
                {**tags, "feature_name": FAIL_PARTIAL_FEATURE},
            )
        )
        if fail_partial:
            _LOGGER.debug("%s enabled, rejecting deployment", FAIL_PARTIAL_FEATURE)
            raise ConfigFetchException(err, status)
        _LOGGER.debug("%s disabled, continuing deployment", FAIL_PARTIAL_FEATURE)
        return result
