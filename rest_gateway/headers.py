"""Header Composer - builds the outbound header set of a REST action.

Sources are applied in a fixed order, later ones overriding earlier ones:

1. seed headers (host, accept, language, gateway version)
2. service-level proxy-header callable
3. action-level proxy-header callable
4. passthrough of whitelisted inbound headers, only where still unset
5. request id
6. idempotency key
7. auth headers, always last so identity material is never overridden
8. pruning of None values
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Union
from urllib.parse import urlsplit

from rest_gateway.constants import (
    DEFAULT_PROXY_HEADERS,
    GATEWAY_VERSION_HEADER,
    IDEMPOTENCY_HEADER,
    REDACTED,
    REQUEST_ID_HEADER,
    SENSITIVE_HEADERS,
    VERSION,
)
from rest_gateway.errors import maybe_await
from rest_gateway.models import Headers

ACTION_TYPE = "rest"

ProxyHeaders = Union[list[str], Callable[..., Any], None]


def seed_headers(action_url: str, lang: str) -> Headers:
    """Headers every request starts with."""
    # Host keeps the port; virtual-hosted upstreams need it
    netloc = urlsplit(action_url).netloc.rpartition("@")[2]
    return {
        "host": netloc or None,
        "accept": "application/json, */*",
        "accept-encoding": "gzip, deflate",
        "accept-language": lang,
        GATEWAY_VERSION_HEADER: VERSION,
    }


def apply_proxy_headers(
    headers: Headers,
    proxy_headers: ProxyHeaders,
    request_headers: dict[str, str],
    passthrough: list[str],
) -> None:
    """Merge a proxy-header callable's result, or queue listed names for passthrough."""
    if callable(proxy_headers):
        produced = proxy_headers(dict(request_headers), ACTION_TYPE) or {}
        headers.update({k.lower(): v for k, v in produced.items()})
    elif isinstance(proxy_headers, list):
        passthrough.extend(name.lower() for name in proxy_headers)


def copy_passthrough(
    headers: Headers, passthrough: list[str], request_headers: dict[str, str]
) -> None:
    """Copy whitelisted inbound headers without clobbering explicit values."""
    for name in passthrough:
        if headers.get(name) is None:
            headers[name] = request_headers.get(name)


def prune(headers: Headers) -> dict[str, str]:
    return {k: v for k, v in headers.items() if v is not None}


async def compose_headers(
    *,
    action_url: str,
    lang: str,
    request_headers: dict[str, str],
    service_proxy_headers: ProxyHeaders,
    action_proxy_headers: ProxyHeaders,
    request_id: str | None,
    idempotency: bool,
    get_auth_headers: Callable[..., Any],
    service_name: str,
    auth_args: dict[str, Any] | None,
) -> dict[str, str]:
    """Build the outbound headers of one dispatch.

    Args:
        action_url: Full URL of the action (endpoint + path), used for host.
        lang: Resolved request language.
        request_headers: Inbound headers with lowercase names.
        service_proxy_headers: Service-level callable or list of names.
        action_proxy_headers: Action-level callable or list of names.
        request_id: Request id of the call, if any.
        idempotency: Whether the action sends an idempotency key.
        get_auth_headers: Auth header provider, sync or async.
        service_name: Service name handed to the auth provider.
        auth_args: Per-call auth arguments.

    Returns:
        Headers with no None values.
    """
    headers = seed_headers(action_url, lang)
    passthrough = list(DEFAULT_PROXY_HEADERS)

    apply_proxy_headers(headers, service_proxy_headers, request_headers, passthrough)
    apply_proxy_headers(headers, action_proxy_headers, request_headers, passthrough)
    copy_passthrough(headers, passthrough, request_headers)

    if request_id:
        headers[REQUEST_ID_HEADER] = request_id

    if idempotency:
        headers[IDEMPOTENCY_HEADER] = request_headers.get(IDEMPOTENCY_HEADER) or str(uuid.uuid4())

    auth_headers = await maybe_await(
        get_auth_headers(
            {
                "action_type": ACTION_TYPE,
                "service_name": service_name,
                "request_headers": request_headers,
                "auth_args": auth_args,
            }
        )
    )
    headers.update({k.lower(): v for k, v in (auth_headers or {}).items()})

    return prune(headers)


def redact_sensitive_headers(headers: Headers) -> Headers:
    """Copy of headers with credential-bearing values replaced."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_HEADERS and value is not None else value
        for name, value in headers.items()
    }


def sanitize_debug_headers(debug_headers: Headers) -> dict[str, str]:
    """Debug headers fit for logs: no empty entries, no credentials."""
    return prune(redact_sensitive_headers(debug_headers))
