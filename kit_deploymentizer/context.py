"""Tracks the cluster and resource currently being generated.

The active span is attached to log records emitted through `Events` so that
messages from concurrent or nested work can be attributed.
"""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from time import perf_counter
from typing import Any, Generator


_LOGGER = logging.getLogger(__name__)

__all__ = ["Span", "current_span", "generation_span"]


@dataclass(frozen=True)
class Span:
    """The cluster, and optionally the resource, being generated."""

    cluster: str
    resource: str | None = None

    def log_extra(self) -> dict[str, Any]:
        """Return attributes added to log records."""
        return {"cluster": self.cluster, "resource": self.resource}

    def __str__(self) -> str:
        if self.resource is None:
            return f"cluster '{self.cluster}'"
        return f"resource '{self.resource}' of cluster '{self.cluster}'"


_span: contextvars.ContextVar[Span | None] = contextvars.ContextVar(
    "span", default=None
)


def current_span() -> Span | None:
    """Return the active span, if any."""
    return _span.get()


@contextmanager
def generation_span(
    cluster: str, resource: str | None = None
) -> Generator[Span, None, None]:
    """Mark the cluster or resource being generated and time it."""
    span = Span(cluster, resource)
    token = _span.set(span)
    start = perf_counter()
    _LOGGER.debug("Generating %s", span)
    try:
        yield span
    finally:
        _span.reset(token)
        _LOGGER.debug("Finished %s (%0.2fs)", span, perf_counter() - start)
