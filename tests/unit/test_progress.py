"""Tests for progress sinks."""

from __future__ import annotations

import json

import httpx
import pytest

from bibleforge.models.phase import PhaseUpdateEvent
from bibleforge.pipeline.progress import (
    CallbackProgressSink,
    FanOutProgressSink,
    HttpProgressSink,
    LoggingProgressSink,
    NullProgressSink,
)


def _event(**overrides: object) -> PhaseUpdateEvent:
    data: dict[str, object] = {
        "type": "phase_progress",
        "phase_id": "characters",
        "phase_name": "Character Development",
        "phase_index": 2,
        "status": "active",
        "progress": 45.0,
        "message": "Expanded Ada (protagonist) - 3/8",
        "overall_progress": 16.3,
    }
    data.update(overrides)
    return PhaseUpdateEvent.model_validate(data)


@pytest.mark.asyncio
async def test_null_and_logging_sinks_accept_events() -> None:
    await NullProgressSink().post(_event())
    await LoggingProgressSink().post(_event())


@pytest.mark.asyncio
async def test_callback_sink_sync_callable() -> None:
    received: list[PhaseUpdateEvent] = []

    await CallbackProgressSink(received.append).post(_event())

    assert len(received) == 1
    assert received[0].phase_id == "characters"


@pytest.mark.asyncio
async def test_callback_sink_async_callable() -> None:
    received: list[str] = []

    async def handler(event: PhaseUpdateEvent) -> None:
        received.append(event.type)

    await CallbackProgressSink(handler).post(_event(type="phase_started"))

    assert received == ["phase_started"]


@pytest.mark.asyncio
async def test_http_sink_posts_json() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    sink = HttpProgressSink(
        "https://engine.test/status",
        headers={"Authorization": "Bearer t"},
        transport=httpx.MockTransport(handler),
    )
    try:
        await sink.post(_event())
    finally:
        await sink.aclose()

    assert len(requests) == 1
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://engine.test/status"
    assert request.headers["Authorization"] == "Bearer t"
    body = json.loads(request.content)
    assert body["phase_id"] == "characters"
    assert body["overall_progress"] == 16.3


@pytest.mark.asyncio
async def test_http_sink_raises_on_error_status() -> None:
    sink = HttpProgressSink(
        "https://engine.test/status",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await sink.post(_event())
    finally:
        await sink.aclose()


@pytest.mark.asyncio
async def test_fan_out_isolates_failures() -> None:
    received: list[PhaseUpdateEvent] = []

    class Broken:
        async def post(self, event: PhaseUpdateEvent) -> None:
            raise ConnectionError("down")

    sink = FanOutProgressSink([Broken(), CallbackProgressSink(received.append)])
    await sink.post(_event())

    assert len(received) == 1
