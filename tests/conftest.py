"""Pytest configuration and fixtures for rest-gateway tests.

This file provides:
- RecordingContext: Tracing context that records logs, errors, stats and span ends
- FakeTransport / FakeTransportFactory: Transports that record requests instead of sending them
- make_* helpers: Actions, options and invocations with sensible defaults
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from rest_gateway.action import RestAction
from rest_gateway.models import (
    ActionConfig,
    CallInvocation,
    EndpointTable,
    RequestConfig,
    ServiceOptions,
    TransportConfig,
    TransportResponse,
)
from rest_gateway.transport import TransportCache

BASE_URL = "https://api.example.com:8443/v1"
ENDPOINTS: EndpointTable = {"endpoint": BASE_URL}


class RecordingContext:
    """Tracing context that keeps everything it is told.

    Child spans created through create() are kept in children, so tests can
    look at the span a dispatch opened via parent.span.
    """

    def __init__(self, name: str = "root", tags: dict[str, str] | None = None) -> None:
        self.name = name
        self.tags = tags or {}
        self.children: list[RecordingContext] = []
        self.logs: list[tuple[str, Any]] = []
        self.errors: list[tuple[str, BaseException | None, Any]] = []
        self.stats_records: list[Any] = []
        self.end_calls = 0

    def create(self, name: str, tags: dict[str, str] | None = None) -> RecordingContext:
        child = RecordingContext(name, tags)
        self.children.append(child)
        return child

    def log(self, message: str, data: dict[str, Any] | None = None) -> None:
        self.logs.append((message, data))

    def log_error(
        self, message: str, error: BaseException | None, data: dict[str, Any] | None = None
    ) -> None:
        self.errors.append((message, error, data))

    def stats(self, record: Any) -> None:
        self.stats_records.append(record)

    def end(self) -> None:
        self.end_calls += 1

    def get_metadata(self) -> dict[str, str]:
        return {"x-trace-id": "trace-1"}

    @property
    def span(self) -> RecordingContext:
        """The single span opened under this context."""
        assert len(self.children) == 1, f"expected one span, got {len(self.children)}"
        return self.children[0]

    @property
    def error_messages(self) -> list[str]:
        return [message for message, _, _ in self.errors]


class FakeTransport:
    """Transport returning a canned response (or raising a canned error)."""

    def __init__(
        self,
        timeout: float | None = None,
        retries: int | None = None,
        config: TransportConfig | None = None,
        response: TransportResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        self.timeout = timeout
        self.retries = retries
        self.config = config or TransportConfig()
        self.response = response or TransportResponse(
            status=200, headers={"content-type": "application/json"}, data={"ok": True}
        )
        self.error = error
        self.requests: list[RequestConfig] = []
        self.closed = False

    async def request(self, config: RequestConfig) -> TransportResponse:
        self.requests.append(config)
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self) -> None:
        self.closed = True


class FakeTransportFactory:
    """TransportCache factory that keeps every transport it builds.

    built[0] is the default transport of the first action created with it.
    """

    def __init__(
        self, response: TransportResponse | None = None, error: Exception | None = None
    ) -> None:
        self.response = response
        self.error = error
        self.built: list[FakeTransport] = []

    def __call__(
        self, timeout: float | None, retries: int | None, config: TransportConfig
    ) -> FakeTransport:
        transport = FakeTransport(timeout, retries, config, self.response, self.error)
        self.built.append(transport)
        return transport

    @property
    def requests(self) -> list[RequestConfig]:
        return [request for transport in self.built for request in transport.requests]


def default_auth_headers(params: dict[str, Any]) -> dict[str, str]:
    return {"authorization": "Bearer secret-token"}


def make_options(**overrides: Any) -> ServiceOptions:
    """Create ServiceOptions with a static auth header provider."""
    overrides.setdefault("get_auth_headers", default_auth_headers)
    return ServiceOptions(**overrides)


def make_action(
    config: ActionConfig | None = None,
    *,
    endpoints: EndpointTable | None = ENDPOINTS,
    options: ServiceOptions | None = None,
    factory: FakeTransportFactory | None = None,
    service_key: str = "users",
    action_name: str = "getUser",
) -> RestAction:
    """Create a RestAction wired to a FakeTransportFactory.

    Prefer this over constructing RestAction directly - it keeps tests free of
    real httpx clients.
    """
    return RestAction(
        endpoints,
        config or ActionConfig(method="GET", path="/users"),
        service_key,
        action_name,
        options or make_options(),
        transport_cache=TransportCache(factory or FakeTransportFactory()),
    )


def make_invocation(ctx: RecordingContext, **overrides: Any) -> CallInvocation:
    overrides.setdefault("request_id", "req-1")
    return CallInvocation(ctx=ctx, **overrides)


@pytest.fixture
def parent_ctx() -> RecordingContext:
    return RecordingContext()


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
