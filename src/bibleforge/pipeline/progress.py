"""Progress sinks that receive phase update events.

Delivery is best effort: the scheduler treats every sink as fire-and-forget
and logs, rather than propagates, any failure a sink raises.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from bibleforge.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from bibleforge.models.phase import PhaseUpdateEvent

log = get_logger(__name__)


class ProgressSink(Protocol):
    """Receiver of phase update events."""

    async def post(self, event: PhaseUpdateEvent) -> None:
        """Deliver one event. May raise; callers log and continue."""
        ...


class NullProgressSink:
    """Sink that drops every event."""

    async def post(self, event: PhaseUpdateEvent) -> None:  # noqa: ARG002
        return None


class LoggingProgressSink:
    """Sink that writes every event to the structured log at DEBUG."""

    async def post(self, event: PhaseUpdateEvent) -> None:
        log.debug(
            "phase_update",
            type=event.type,
            phase=event.phase_id,
            progress=event.progress,
            overall=event.overall_progress,
            message=event.message,
        )


class CallbackProgressSink:
    """Sink that forwards events to a plain or async callable.

    Used by the CLI to drive its Rich progress display.
    """

    def __init__(self, callback: Callable[[PhaseUpdateEvent], Awaitable[None] | None]) -> None:
        self._callback = callback

    async def post(self, event: PhaseUpdateEvent) -> None:
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result


class HttpProgressSink:
    """Sink that POSTs each event as JSON to an engine-status endpoint.

    Attributes:
        url: Endpoint receiving the events.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the sink.

        Args:
            url: Endpoint receiving the events.
            timeout: Per-request timeout in seconds.
            headers: Extra request headers (e.g., authorization).
            transport: Optional httpx transport, mainly for tests.
        """
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def post(self, event: PhaseUpdateEvent) -> None:
        """POST the event; raises httpx errors on failure or non-2xx status."""
        payload: dict[str, Any] = event.model_dump()
        response = await self._client.post(self.url, json=payload)
        response.raise_for_status()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


class FanOutProgressSink:
    """Sink that delivers each event to several sinks concurrently.

    A failing member is logged and does not stop delivery to the others.
    """

    def __init__(self, sinks: Sequence[ProgressSink]) -> None:
        self._sinks = list(sinks)

    async def post(self, event: PhaseUpdateEvent) -> None:
        results = await asyncio.gather(
            *(sink.post(event) for sink in self._sinks), return_exceptions=True
        )
        for sink, result in zip(self._sinks, results, strict=True):
            if isinstance(result, Exception):
                log.warning(
                    "progress_sink_failed",
                    sink=type(sink).__name__,
                    phase=event.phase_id,
                    error=str(result),
                )
