"""Event and metric sink used by the generation pipeline.

Components are handed an `Events` instance and report progress, warnings and
failures through it. Every message is logged, and any registered listeners
are invoked so that callers can forward messages or metrics elsewhere (for
example to a metrics agent).
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import enum
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .context import current_span

__all__ = [
    "APP_TAG",
    "Severity",
    "Metric",
    "Events",
    "resource_tags",
]

_LOGGER = logging.getLogger(__name__)

APP_TAG = "kit_deploymentizer"

KIND_EVENT = "event"
KIND_INCREMENT = "increment"


class Severity(str, enum.Enum):
    """Severity channels of the event sink."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    FATAL = "fatal"


_LOG_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.FATAL: logging.CRITICAL,
}


def resource_tags(resource: str | None = None, **extra: str) -> dict[str, str]:
    """Return metric tags for the application and an optional resource."""
    tags = {"app": APP_TAG}
    if resource is not None:
        tags["kit_resource"] = resource
    tags.update(extra)
    return tags


@dataclass
class Metric(DataClassDictMixin):
    """A structured metric or event for external observability."""

    kind: str
    """Either an `event` or a counter `increment`."""

    name: str | None = None
    """Name of the counter, for increments."""

    title: str | None = None
    """Title of the event, for events."""

    text: str | None = None
    """Optional longer description."""

    tags: dict[str, str] = field(default_factory=lambda: resource_tags())

    @classmethod
    def event(cls, title: str, text: str, tags: dict[str, str]) -> "Metric":
        """Create an event metric."""
        return cls(kind=KIND_EVENT, title=title, text=text, tags=tags)

    @classmethod
    def increment(cls, name: str, tags: dict[str, str]) -> "Metric":
        """Create a counter increment metric."""
        return cls(kind=KIND_INCREMENT, name=name, tags=tags)

    @property
    def label(self) -> str:
        """Return the event title or the counter name."""
        return self.title or self.name or ""

    class Config(BaseConfig):
        omit_none = True


MessageListener = Callable[[str], Any]
MetricListener = Callable[[Metric], Any]


class Events:
    """Write-only sink for the four log severities and metrics."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialize Events."""
        self._logger = logger or _LOGGER
        self._listeners: dict[Severity, list[MessageListener]] = {
            severity: [] for severity in Severity
        }
        self._metric_listeners: list[MetricListener] = []

    def add_listener(self, severity: Severity, listener: MessageListener) -> None:
        """Register a listener invoked for every message of the severity."""
        self._listeners[severity].append(listener)

    def add_metric_listener(self, listener: MetricListener) -> None:
        """Register a listener invoked for every metric."""
        self._metric_listeners.append(listener)

    def _emit(self, severity: Severity, msg: str) -> None:
        span = current_span()
        self._logger.log(
            _LOG_LEVELS[severity], "%s", msg, extra=span.log_extra() if span else None
        )
        for listener in self._listeners[severity]:
            listener(msg)

    def debug(self, msg: str) -> None:
        self._emit(Severity.DEBUG, msg)

    def info(self, msg: str) -> None:
        self._emit(Severity.INFO, msg)

    def warn(self, msg: str) -> None:
        self._emit(Severity.WARN, msg)

    def fatal(self, msg: str) -> None:
        self._emit(Severity.FATAL, msg)

    def metric(self, metric: Metric) -> None:
        """Emit a structured metric."""
        self._logger.debug("Metric %s: %s", metric.label, metric.to_dict())
        for listener in self._metric_listeners:
            listener(metric)
