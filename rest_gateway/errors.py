"""Error taxonomy for the dispatch pipeline.

Required steps (validation, endpoint resolution, header composition, the
transport call) abort the dispatch with a DispatchError. Optional enrichment
steps run through attempt(): a failure there is logged on the tracing context
and the step yields a StepResult carrying the error instead of a value.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from rest_gateway.models import GatewayError, Headers

T = TypeVar("T")


class RestGatewayError(Exception):
    """Base class for rest-gateway errors."""


class GatewayConfigError(RestGatewayError):
    """Gateway misconfiguration. Terminal and never retried."""

    status = 400
    code = "GATEWAY_CONFIG_ERROR"


class EndpointNotFound(GatewayConfigError):
    """No endpoint entry resolved for an action."""

    code = "ENDPOINT_NOT_FOUND"

    def __init__(self, service_key: str) -> None:
        self.service_key = service_key
        super().__init__(
            f'Gateway config error. Endpoint has been not found in service "{service_key}"'
        )


class ValidationFailed(RestGatewayError):
    """Call arguments did not pass validation. Fixable by the caller."""

    status = 400
    code = "INVALID_PARAMS"

    def __init__(self, invalid_params: list[str]) -> None:
        self.invalid_params = invalid_params
        super().__init__("Validation failed")


class RecoverableInternalError(RestGatewayError):
    """Failure inside an optional step. Logged, never propagated."""

    def __init__(self, message: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class DispatchError(RestGatewayError):
    """Raised to the caller when a dispatch fails.

    Attributes:
        error: Normalized error with the request id of the call.
        debug_headers: Diagnostic headers collected before the failure.
    """

    def __init__(self, error: GatewayError, debug_headers: Headers | None = None) -> None:
        self.error = error
        self.debug_headers = debug_headers if debug_headers is not None else {}
        super().__init__(error.message or error.code or "Dispatch failed")

    @classmethod
    def from_exception(
        cls,
        exc: GatewayConfigError | ValidationFailed,
        request_id: str | None,
        debug_headers: Headers | None = None,
    ) -> DispatchError:
        details = exc.invalid_params if isinstance(exc, ValidationFailed) else None
        error = GatewayError(
            status=exc.status,
            code=exc.code,
            message=str(exc),
            details=details,
            request_id=request_id,
        )
        return cls(error, debug_headers)


# =============================================================================
# Best-effort steps
# =============================================================================


@dataclass
class StepResult(Generic[T]):
    """Outcome of an optional step: a value, or the error that replaced it."""

    value: T | None = None
    error: RecoverableInternalError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]


def _recover(ctx: Any, message: str, exc: Exception) -> StepResult[Any]:
    error = RecoverableInternalError(message, exc)
    ctx.log_error(message, error)
    return StepResult(error=error)


def attempt(ctx: Any, message: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> StepResult[T]:
    """Run fn; on failure log message on ctx and return a failed StepResult."""
    try:
        return StepResult(value=fn(*args, **kwargs))
    except Exception as e:
        return _recover(ctx, message, e)


async def attempt_async(
    ctx: Any, message: str, fn: Callable[..., Any], *args: Any, **kwargs: Any
) -> StepResult[Any]:
    """Like attempt(), awaiting fn's result when it returns an awaitable."""
    try:
        return StepResult(value=await maybe_await(fn(*args, **kwargs)))
    except Exception as e:
        return _recover(ctx, message, e)


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable; hooks may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value
