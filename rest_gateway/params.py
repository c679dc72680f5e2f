"""Request Body/Query Builder.

Runs the action's parameter producer, serializes the query string and
renders a short, URL-encoded preview of the body for debug headers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote, urlencode

from rest_gateway.constants import (
    BINARY_BODY_PLACEHOLDER,
    DEBUG_BODY_LIMIT,
    GATEWAY_VERSION_HEADER,
    REQUEST_ID_HEADER,
    VERSION,
)
from rest_gateway.context import TracingContext
from rest_gateway.errors import attempt, attempt_async
from rest_gateway.headers import prune
from rest_gateway.models import Headers

_PREVIEW_SAFE = "-_.!~*'()"


@dataclass
class RequestParams:
    """Body, query and final headers of one request."""

    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    query: dict[str, Any] | None = None


async def produce_params(
    producer: Callable[..., Any] | None,
    args: dict[str, Any],
    headers: dict[str, str],
    ctx: TracingContext,
) -> RequestParams:
    """Invoke the parameter producer, if any.

    A failing producer is logged and the request goes out without body or
    query, using the composed headers.
    """
    if producer is None:
        return RequestParams(headers=headers)

    result = await attempt_async(
        ctx, "Getting config params failed", producer, args, dict(headers), {"ctx": ctx}
    )
    output = result.unwrap_or(None) or {}

    produced_headers = output.get("headers")
    return RequestParams(
        headers=prune(produced_headers) if produced_headers is not None else headers,
        body=output.get("body"),
        query=output.get("query"),
    )


def get_serializer(params_serializer: Any) -> Callable[[dict[str, Any]], str] | None:
    """Accept a serializer function or an object exposing serialize()."""
    if params_serializer is None:
        return None
    if callable(params_serializer):
        return params_serializer
    return params_serializer.serialize


def serialize_query(
    query: dict[str, Any] | None, serializer: Callable[[dict[str, Any]], str] | None
) -> str:
    if not query:
        return ""
    if serializer is not None:
        return serializer(query)
    return urlencode(query, doseq=True)


def build_request_url(action_url: str, query_string: str) -> str:
    if not query_string:
        return action_url
    return f"{action_url}?{query_string}"


def encode_body(body: Any) -> str:
    """Render a body the way it appears in debug headers."""
    if isinstance(body, (bytes, bytearray, memoryview)):
        return BINARY_BODY_PLACEHOLDER
    if isinstance(body, (dict, list)):
        text = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    else:
        text = str(body)
    return quote(text, safe=_PREVIEW_SAFE)


def body_preview(body: Any, ctx: TracingContext) -> str | None:
    """Encoded body for debug headers, or None when absent, empty or too long."""
    if body is None:
        return None

    preview = attempt(ctx, "Stringify request body failed", encode_body, body).unwrap_or(None)
    if not preview or len(preview) >= DEBUG_BODY_LIMIT:
        return None
    return preview


def build_debug_headers(
    *,
    method: str,
    request_url: str,
    preview: str | None,
    lang: str,
    request_id: str | None,
    content_type: str | None,
) -> Headers:
    debug_headers: Headers = {
        "x-api-request-method": method,
        "x-api-request-url": request_url,
        "x-api-request-body": preview,
        "x-api-request-lang": lang,
        REQUEST_ID_HEADER: request_id,
        GATEWAY_VERSION_HEADER: VERSION,
    }
    if content_type:
        debug_headers["x-api-content-type"] = content_type
    return debug_headers
