"""Error Normalizer - maps failed requests onto the canonical error shape.

An action's transform_response_error hook gets the first chance when the
failure carries an upstream response. Otherwise, or when the hook fails,
parse_rest_error maps the raw failure.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Callable

from rest_gateway.constants import DEFAULT_LANG, Lang
from rest_gateway.context import TracingContext
from rest_gateway.errors import attempt, attempt_async, maybe_await
from rest_gateway.models import ParsedError
from rest_gateway.transport import (
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
)

FALLBACK_STATUS = 500

_MESSAGES: dict[str, dict[Lang, str]] = {
    "REQUEST_TIMEOUT": {
        Lang.EN: "Upstream service did not respond in time",
        Lang.RU: "Превышено время ожидания ответа сервиса",
    },
    "CONNECTION_ERROR": {
        Lang.EN: "Upstream service is unavailable",
        Lang.RU: "Сервис недоступен",
    },
    "REQUEST_FAILED": {
        Lang.EN: "Upstream request failed",
        Lang.RU: "Ошибка запроса к сервису",
    },
    "UNKNOWN_ERROR": {
        Lang.EN: "Unknown error",
        Lang.RU: "Неизвестная ошибка",
    },
}


def resolve_lang(lang: str | None) -> Lang:
    """Primary language of an accept-language value, e.g. "en-US,en;q=0.9" -> en."""
    if lang:
        primary = lang.split(",")[0].split(";")[0].split("-")[0].strip().lower()
        for supported in Lang:
            if supported.value == primary:
                return supported
    return DEFAULT_LANG


def _message(key: str, lang: str | None) -> str:
    return _MESSAGES[key][resolve_lang(lang)]


def _status_code(status: int) -> str:
    """HTTP status as a machine code, e.g. 503 -> SERVICE_UNAVAILABLE."""
    try:
        return HTTPStatus(status).name
    except ValueError:
        return "REQUEST_FAILED"


def parse_rest_error(error: Any, lang: str | None) -> ParsedError:
    """Map a raw failure to {status, code, message, details}.

    Upstream responses keep their status; code, message and details are read
    from a JSON object body when it provides them. Timeouts map to 504,
    connection failures to 503, anything without a status to 500.
    """
    response = getattr(error, "response", None)
    if response is not None:
        data = response.data
        body = data if isinstance(data, dict) else {}
        details = body.get("details")
        if details is None and isinstance(data, str) and data:
            details = data
        return ParsedError(
            status=response.status,
            code=str(body.get("code") or _status_code(response.status)),
            message=str(body.get("message") or _message("REQUEST_FAILED", lang)),
            details=details,
        )

    if isinstance(error, TransportTimeoutError):
        return ParsedError(
            status=int(HTTPStatus.GATEWAY_TIMEOUT),
            code="REQUEST_TIMEOUT",
            message=_message("REQUEST_TIMEOUT", lang),
            details=error.message,
        )
    if isinstance(error, TransportConnectionError):
        return ParsedError(
            status=int(HTTPStatus.SERVICE_UNAVAILABLE),
            code="CONNECTION_ERROR",
            message=_message("CONNECTION_ERROR", lang),
            details=error.message,
        )
    if isinstance(error, TransportError):
        return ParsedError(
            status=FALLBACK_STATUS,
            code="REQUEST_FAILED",
            message=_message("REQUEST_FAILED", lang),
            details=error.message,
        )
    return ParsedError(
        status=FALLBACK_STATUS,
        code="UNKNOWN_ERROR",
        message=_message("UNKNOWN_ERROR", lang),
        details=str(error) or None,
    )


async def _transform_error(
    transform: Callable[..., Any], response: Any, args: dict[str, Any], ctx: TracingContext
) -> ParsedError | None:
    result = await maybe_await(transform(response, {"args": args, "ctx": ctx}))
    if result is None or isinstance(result, ParsedError):
        return result
    return ParsedError.model_validate(result)


async def normalize_error(
    error: Exception,
    *,
    lang: str,
    transform_response_error: Callable[..., Any] | None,
    args: dict[str, Any],
    ctx: TracingContext,
) -> ParsedError | None:
    """Normalize a failed request.

    Returns None only when the fallback parser itself failed; that failure
    is logged on ctx.
    """
    parsed: ParsedError | None = None

    response = getattr(error, "response", None)
    if response is not None and transform_response_error is not None:
        result = await attempt_async(
            ctx,
            "Transform response error failed",
            _transform_error,
            transform_response_error,
            response,
            args,
            ctx,
        )
        parsed = result.unwrap_or(None)
        if parsed is not None:
            ctx.log("Transformed response error")

    if parsed is None:
        parsed = attempt(ctx, "Error parse rest error", parse_rest_error, error, lang).unwrap_or(None)

    return parsed


def resolve_status(parsed: ParsedError | None, error: Any) -> int:
    """Status of a failed dispatch: normalized, else raw, else 500."""
    if parsed is not None and parsed.status:
        return parsed.status
    return getattr(error, "status", None) or FALLBACK_STATUS
