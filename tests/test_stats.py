"""Tests for response size estimation and stats emission."""

from __future__ import annotations

from typing import Any

import pytest

from rest_gateway.models import StatsRecord
from rest_gateway.stats import emit_stats, estimate_size, response_size
from tests.conftest import RecordingContext


def _record(**overrides: Any) -> StatsRecord:
    data: dict[str, Any] = {
        "timestamp": 1_700_000_000_000,
        "service": "users",
        "action": "getUser",
        "request_id": "req-1",
        "request_method": "GET",
        "request_url": "https://api.example.com/users",
        "request_time": 12,
        "status": 200,
    }
    data.update(overrides)
    return StatsRecord(**data)


class TestEstimateSize:
    def test_none(self) -> None:
        assert estimate_size(None) == 0

    def test_json_is_two_bytes_per_char(self) -> None:
        assert estimate_size({"a": 1}) == 2 * len('{"a":1}')

    def test_string(self) -> None:
        assert estimate_size("abc") == 2 * len('"abc"')

    def test_bytes_use_length(self) -> None:
        assert estimate_size(b"12345") == 5

    def test_unserializable_reported_as_zero(self) -> None:
        ctx = RecordingContext()

        assert response_size({"x": object()}, ctx) == 0
        assert ctx.error_messages == ["Calculate response size failed"]


class TestEmitStats:
    @pytest.mark.asyncio
    async def test_default_goes_to_ctx(self) -> None:
        ctx = RecordingContext()
        parent = RecordingContext()
        record = _record()

        await emit_stats(
            record,
            response_data={"a": 1},
            send_stats=None,
            headers={},
            debug_headers={},
            parent_ctx=parent,
            ctx=ctx,
        )

        assert ctx.stats_records == [record]
        assert parent.stats_records == []

    @pytest.mark.asyncio
    async def test_custom_async_sink(self) -> None:
        ctx = RecordingContext()
        parent = RecordingContext()
        calls: list[tuple[Any, ...]] = []

        async def sink(*args: Any) -> None:
            calls.append(args)

        await emit_stats(
            _record(),
            response_data={"a": 1},
            send_stats=sink,
            headers={"authorization": "Bearer t", "x-tenant": "acme"},
            debug_headers={"x-api-request-body": None, "x-request-id": "req-1"},
            parent_ctx=parent,
            ctx=ctx,
        )

        record, headers, sink_ctx, extra = calls[0]
        assert record.response_size == 2 * len('{"a":1}')
        assert headers == {"authorization": "[REDACTED]", "x-tenant": "acme"}
        assert sink_ctx is parent
        assert extra == {"debug_headers": {"x-request-id": "req-1"}}
        assert ctx.stats_records == []

    @pytest.mark.asyncio
    async def test_failing_sink_is_logged(self) -> None:
        ctx = RecordingContext()

        def sink(*args: Any) -> None:
            raise ConnectionError("stats backend down")

        await emit_stats(
            _record(),
            response_data=None,
            send_stats=sink,
            headers={},
            debug_headers={},
            parent_ctx=RecordingContext(),
            ctx=ctx,
        )

        assert ctx.error_messages == ["Send stats failed"]


def test_negative_request_time_rejected() -> None:
    with pytest.raises(ValueError):
        _record(request_time=-1)
