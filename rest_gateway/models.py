"""Internal data models for rest-gateway.

All models use Pydantic v2. Configuration models are frozen: they are built
once when the gateway is assembled and only read while dispatching.
"""

from __future__ import annotations

from typing import Any, Callable, Self, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Header values may be None while headers are being composed; None entries
# are pruned before anything is sent upstream.
Headers = dict[str, Union[str, None]]


# =============================================================================
# Endpoint and Transport Configuration
# =============================================================================


class TransportConfig(BaseModel):
    """Settings mapped onto an httpx.AsyncClient.

    Used at service level as the base config and at endpoint level as an
    override. Fields left as None keep the value from the layer below.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout: float | None = Field(default=None, description="Timeout in seconds")
    verify: bool | str | None = Field(
        default=None, description="TLS verification flag or CA bundle path"
    )
    cert: str | None = Field(default=None, description="Client certificate path")
    follow_redirects: bool | None = Field(default=None, description="Follow 3xx responses")
    max_redirects: int | None = Field(default=None, description="Redirect limit")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )

    def merged(self, override: TransportConfig | None) -> TransportConfig:
        """Return a copy with every field set on override taking precedence."""
        if override is None:
            return self
        data = self.model_dump()
        for key, value in override.model_dump(exclude_none=True).items():
            if key == "headers":
                data["headers"] = {**data["headers"], **value}
            else:
                data[key] = value
        return TransportConfig.model_validate(data)


class EndpointDescriptor(BaseModel):
    """Extended endpoint entry: a base URL plus per-endpoint transport overrides."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = Field(description="Base URL, e.g. https://api.example.com/v1")
    transport_config: TransportConfig | None = Field(
        default=None, description="Overrides applied to requests sent to this endpoint"
    )


# Logical endpoint name -> base URL or extended descriptor. The "endpoint"
# key holds the default entry.
EndpointTable = dict[str, Union[str, EndpointDescriptor]]
DEFAULT_ENDPOINT_KEY = "endpoint"


# =============================================================================
# Action and Service Configuration
# =============================================================================


class ActionConfig(BaseModel):
    """Declarative configuration of one REST action.

    path and endpoint accept either a static value or a callable; the
    pipeline turns them into Static/Computed selectors once at setup.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    method: str = Field(description="HTTP method")
    path: Union[str, Callable[..., str]] = Field(
        description="Path appended to the endpoint, or callable of path args"
    )
    endpoint: Union[str, Callable[..., Any], None] = Field(
        default=None, description="Endpoint name, or callable(endpoints, args)"
    )
    validation_schema: dict[str, Any] | None = Field(
        default=None, description="JSON Schema for call arguments"
    )
    timeout: float | None = Field(default=None, description="Timeout in seconds")
    retries: int | None = Field(default=None, description="Connect retries for the transport")
    max_redirects: int | None = Field(default=None, description="0 disables redirects")
    idempotency: bool = Field(default=False, description="Send an idempotency-key header")
    proxy_headers: Union[list[str], Callable[..., Any], None] = Field(
        default=None, description="Header names to forward, or callable(headers, type)"
    )
    get_auth_headers: Callable[..., Any] | None = Field(
        default=None, description="Overrides the service-level auth header provider"
    )
    params: Callable[..., Any] | None = Field(
        default=None, description="Producer of {body, query, headers}"
    )
    transform_response_data: Callable[..., Any] | None = Field(default=None)
    transform_response_error: Callable[..., Any] | None = Field(default=None)
    params_serializer: Any = Field(
        default=None, description="Query serializer: callable or object with serialize()"
    )

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("params_serializer")
    @classmethod
    def check_serializer(cls, v: Any) -> Any:
        if v is None or callable(v) or callable(getattr(v, "serialize", None)):
            return v
        raise ValueError("params_serializer must be callable or expose serialize()")


class ServiceOptions(BaseModel):
    """Service-level settings shared by every action of one service."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    get_auth_headers: Callable[..., Any] = Field(description="Auth header provider")
    service_name: str | None = Field(default=None, description="Defaults to the service key")
    timeout: float | None = Field(default=None, description="Default timeout in seconds")
    retries: int | None = Field(default=None, description="Default connect retries")
    transport_config: TransportConfig = Field(default_factory=TransportConfig)
    validation_schema: dict[str, Any] | None = Field(default=None)
    proxy_headers: Union[list[str], Callable[..., Any], None] = Field(default=None)
    send_stats: Callable[..., Any] | None = Field(
        default=None, description="Custom stats sink; ctx.stats is used when absent"
    )
    encode_path_args: bool = Field(
        default=False, description="URL-encode path args for actions without a schema"
    )
    validator: Callable[..., Any] | None = Field(
        default=None, description="Replaces the jsonschema argument validator"
    )


# =============================================================================
# Per-call Models
# =============================================================================


class CallInvocation(BaseModel):
    """One incoming call. Built by the caller; the pipeline only reads it."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    args: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = Field(default=None)
    headers: dict[str, str] = Field(default_factory=dict, description="Inbound headers")
    ctx: Any = Field(description="Parent tracing context")
    auth_args: dict[str, Any] | None = Field(default=None)
    timeout: float | None = Field(default=None, description="Per-call timeout in seconds")

    @field_validator("headers")
    @classmethod
    def lowercase_headers(cls, v: dict[str, str]) -> dict[str, str]:
        return {k.lower(): value for k, value in v.items()}


class RequestConfig(BaseModel):
    """Everything the transport needs to send one request."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    url: str
    method: str
    data: Any = None
    params: dict[str, Any] | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    max_redirects: int | None = None
    params_serializer: Callable[..., str] | None = None


class TransportResponse(BaseModel):
    """A response received from the transport. Header keys are lowercase."""

    model_config = ConfigDict(extra="forbid")

    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None


# =============================================================================
# Results
# =============================================================================


class ParsedError(BaseModel):
    """Canonical error shape produced by a transform hook or the fallback parser.

    Extra keys returned by a transform hook are kept and reach the caller.
    """

    model_config = ConfigDict(extra="allow")

    status: int | None = None
    code: str | None = None
    message: str | None = None
    details: Any = None


class GatewayError(ParsedError):
    """Error returned to the caller, correlated to logs by request_id."""

    request_id: str | None = None


class DispatchResult(BaseModel):
    """Successful dispatch outcome."""

    model_config = ConfigDict(extra="forbid")

    response_data: Any = None
    debug_headers: Headers = Field(default_factory=dict)


class StatsRecord(BaseModel):
    """Per-call timing, size and status record."""

    model_config = ConfigDict(extra="forbid")

    timestamp: int = Field(description="Request start, epoch milliseconds")
    service: str
    action: str
    request_id: str | None = None
    request_method: str
    request_url: str
    request_time: int | None = Field(default=None, description="Elapsed milliseconds")
    response_size: int | None = None
    status: int

    @model_validator(mode="after")
    def check_request_time(self) -> Self:
        if self.request_time is not None and self.request_time < 0:
            raise ValueError("request_time must not be negative")
        return self


# =============================================================================
# Gateway Configuration File Models
# =============================================================================


class ServiceSettings(BaseModel):
    """Per-service settings loaded from the gateway config file.

    Hooks (auth, stats, validators) cannot live in a config file; they come
    from the ServiceOptions these settings are applied to.
    """

    model_config = ConfigDict(extra="forbid")

    service_name: str | None = Field(default=None)
    endpoints: dict[str, Union[str, EndpointDescriptor]] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, description="Timeout in seconds")
    retries: int | None = Field(default=None)
    transport: TransportConfig | None = Field(default=None)
    proxy_headers: list[str] | None = Field(default=None)
    encode_path_args: bool | None = Field(default=None)

    def apply_to(self, options: ServiceOptions) -> ServiceOptions:
        """Return options with every setting given here taking precedence."""
        update = self.model_dump(
            include={"service_name", "timeout", "retries", "proxy_headers", "encode_path_args"},
            exclude_none=True,
        )
        if self.transport is not None:
            update["transport_config"] = options.transport_config.merged(self.transport)
        return options.model_copy(update=update)


class GatewayConfig(BaseModel):
    """Top-level gateway config file structure."""

    model_config = ConfigDict(extra="forbid")

    services: dict[str, ServiceSettings] = Field(description="Service key -> settings")
