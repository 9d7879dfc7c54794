"""Test fixtures for kit-deploymentizer."""

import pytest

from kit_deploymentizer.events import Events, Metric, Severity
from kit_deploymentizer.manifest import ClusterDefinition, ImageResourceDefs


@pytest.fixture
def messages() -> dict[Severity, list[str]]:
    """Messages emitted to the events fixture, by severity."""
    return {severity: [] for severity in Severity}


@pytest.fixture
def metrics() -> list[Metric]:
    """Metrics emitted to the events fixture."""
    return []


@pytest.fixture
def events(messages: dict[Severity, list[str]], metrics: list[Metric]) -> Events:
    """Create an Events sink that records everything emitted."""
    events = Events()
    for severity in Severity:
        events.add_listener(severity, messages[severity].append)
    events.add_metric_listener(metrics.append)
    return events


@pytest.fixture
def image_resources() -> ImageResourceDefs:
    return {
        "node-auth": {
            "testing": {"image": "SOME-TESTING-IMAGE:branch-abc1"},
            "develop": {"image": "SOME-DEVELOP-IMAGE:branch-abc2"},
        }
    }


@pytest.fixture
def cluster_def() -> ClusterDefinition:
    """A cluster with a single resource containing one container."""
    return ClusterDefinition.parse_doc(
        {
            "kind": "ClusterNamespace",
            "metadata": {
                "name": "test-cluster",
                "type": "test",
                "environment": "testing",
                "branch": "develop",
            },
            "spec": {
                "server": "https://test.example.com",
                "configuration": {"replicas": 2, "labels": {"app": "invisionapp"}},
                "resources": {
                    "auth": {
                        "containers": {
                            "auth-con": {
                                "image_tag": "node-auth",
                                "env": [{"name": "test", "value": "testvalue"}],
                            }
                        },
                        "svc": {"name": "auth-svc"},
                    }
                },
            },
        }
    )
