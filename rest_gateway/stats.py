"""Telemetry Emitter - one stats record per dispatch."""

from __future__ import annotations

import json
from typing import Any, Callable

from rest_gateway.constants import STRING_CHAR_SIZE
from rest_gateway.context import TracingContext
from rest_gateway.errors import attempt, attempt_async
from rest_gateway.headers import redact_sensitive_headers, sanitize_debug_headers
from rest_gateway.models import Headers, StatsRecord


def estimate_size(data: Any) -> int:
    """Approximate payload size in bytes from its JSON form."""
    if data is None:
        return 0
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    return STRING_CHAR_SIZE * len(json.dumps(data, separators=(",", ":"), ensure_ascii=False))


def response_size(data: Any, ctx: TracingContext) -> int:
    return attempt(ctx, "Calculate response size failed", estimate_size, data).unwrap_or(0)


async def emit_stats(
    record: StatsRecord,
    *,
    response_data: Any,
    send_stats: Callable[..., Any] | None,
    headers: Headers,
    debug_headers: Headers,
    parent_ctx: TracingContext,
    ctx: TracingContext,
) -> None:
    """Report a finished dispatch.

    With a custom sink the record gains a response size and the sink also
    receives redacted request headers, the parent context and sanitized
    debug headers. Without one the record goes to ctx.stats().
    """
    if send_stats is None:
        ctx.stats(record)
        return

    record = record.model_copy(update={"response_size": response_size(response_data, ctx)})
    await attempt_async(
        ctx,
        "Send stats failed",
        send_stats,
        record,
        redact_sensitive_headers(headers),
        parent_ctx,
        {"debug_headers": sanitize_debug_headers(debug_headers)},
    )
