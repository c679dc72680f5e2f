"""Tracing context used by the dispatch pipeline.

The pipeline only depends on the TracingContext protocol. LoggingContext is
the default implementation: it writes span events through stdlib logging.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

logger = logging.getLogger(__name__)


class TracingContext(Protocol):
    def create(self, name: str, tags: dict[str, str] | None = None) -> TracingContext: ...

    def log(self, message: str, data: dict[str, Any] | None = None) -> None: ...

    def log_error(
        self, message: str, error: BaseException | None, data: dict[str, Any] | None = None
    ) -> None: ...

    def stats(self, record: Any) -> None: ...

    def end(self) -> None: ...

    def get_metadata(self) -> dict[str, str]: ...


class LoggingContext:
    """Span backed by a logger.

    Child spans share the trace id of their parent; the trace id is also
    what get_metadata() forwards to upstream services.
    """

    def __init__(
        self,
        name: str = "root",
        tags: dict[str, str] | None = None,
        trace_id: str | None = None,
    ) -> None:
        self.name = name
        self.tags = tags or {}
        self.trace_id = trace_id or uuid.uuid4().hex
        self.ended = False
        self._started = time.monotonic()

    def create(self, name: str, tags: dict[str, str] | None = None) -> LoggingContext:
        return LoggingContext(name, tags, trace_id=self.trace_id)

    def log(self, message: str, data: dict[str, Any] | None = None) -> None:
        logger.info("[%s] %s %s", self.name, message, data or "")

    def log_error(
        self, message: str, error: BaseException | None, data: dict[str, Any] | None = None
    ) -> None:
        logger.error("[%s] %s %s", self.name, message, data or "", exc_info=error)

    def stats(self, record: Any) -> None:
        if hasattr(record, "model_dump"):
            record = record.model_dump(exclude_none=True)
        logger.info("[%s] stats %s", self.name, record)

    def end(self) -> None:
        if self.ended:
            logger.warning("[%s] span ended twice", self.name)
            return
        self.ended = True
        elapsed_ms = (time.monotonic() - self._started) * 1000
        logger.debug("[%s] span ended after %.1f ms", self.name, elapsed_ms)

    def get_metadata(self) -> dict[str, str]:
        return {"x-trace-id": self.trace_id}


@contextmanager
def open_span(
    parent: TracingContext, name: str, tags: dict[str, str] | None = None
) -> Iterator[TracingContext]:
    """Open a child span and end it exactly once, whichever way the block exits."""
    ctx = parent.create(name, tags=tags)
    try:
        yield ctx
    finally:
        ctx.end()
