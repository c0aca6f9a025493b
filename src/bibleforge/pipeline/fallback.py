"""Ordered fallback over alternative producers.

``with_fallback`` is the small combinator shared by roster allocation,
per-entity expansion and the pipeline itself: try each named tier in
turn and return the first value produced. ``FallbackChain`` applies it at
the top level, where exhausting both tiers is the one fatal outcome.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from bibleforge.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from bibleforge.models.bible import Brief, PipelineResult

    TierFn = Callable[[Brief], Awaitable[PipelineResult]]

log = get_logger(__name__)

T = TypeVar("T")


class FallbackExhaustedError(Exception):
    """Raised when every tier of a fallback sequence failed.

    Attributes:
        failures: ``(tier_name, exception)`` pairs in the order tried.
    """

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        self.failures = failures
        detail = " | ".join(f"{name}: {error}" for name, error in failures) or "no tiers"
        super().__init__(f"All fallback tiers failed: {detail}")


class FatalPipelineError(Exception):
    """Raised when both the full pipeline and the simplified tier failed.

    Attributes:
        tier1_error: Message of the full-pipeline failure.
        tier2_error: Message of the simplified-tier failure.
    """

    def __init__(self, tier1_error: str, tier2_error: str) -> None:
        self.tier1_error = tier1_error
        self.tier2_error = tier2_error
        super().__init__(f"All generation methods failed: {tier1_error} | {tier2_error}")


async def with_fallback(
    tiers: Sequence[tuple[str, Callable[[], Awaitable[T]]]],
    *,
    label: str = "fallback",
    on_tier_failed: Callable[[str, Exception], None] | None = None,
) -> tuple[str, T]:
    """Return the first successful tier's value.

    Args:
        tiers: ``(name, thunk)`` pairs tried in order. Each thunk is a
            zero-argument coroutine function.
        label: Name used in log events for this sequence.
        on_tier_failed: Called with ``(tier_name, exception)`` for each tier
            that raised, before the next tier is tried.

    Returns:
        ``(tier_name, value)`` from the first tier that did not raise.

    Raises:
        FallbackExhaustedError: If every tier raised.
    """
    failures: list[tuple[str, Exception]] = []
    for name, thunk in tiers:
        try:
            value = await thunk()
        except Exception as e:
            log.warning("fallback_tier_failed", sequence=label, tier=name, error=str(e))
            failures.append((name, e))
            if on_tier_failed is not None:
                on_tier_failed(name, e)
            continue
        if failures:
            log.info("fallback_tier_used", sequence=label, tier=name, failed=len(failures))
        return name, value
    raise FallbackExhaustedError(failures)


class FallbackChain:
    """Two-tier pipeline runner that always yields a usable result.

    Tier 1 is the full scheduler-driven pipeline. Tier 2 is a single
    simplified request and runs only after Tier 1 raised. The Tier-1
    error is recorded on a Tier-2 result's stats.
    """

    def __init__(self, tier1: TierFn, tier2: TierFn) -> None:
        """Initialize the chain.

        Args:
            tier1: Full pipeline; must stamp provenance ``tier1``.
            tier2: Simplified pipeline; must stamp provenance ``tier2``.
        """
        self._tier1 = tier1
        self._tier2 = tier2

    async def run(self, brief: Brief) -> PipelineResult:
        """Produce a story bible for ``brief``.

        Raises:
            FatalPipelineError: If both tiers raised.
        """
        errors: dict[str, str] = {}

        def _record(tier: str, error: Exception) -> None:
            errors[tier] = str(error)
            log.error(f"{tier}_failed", error=str(error), exc_info=error)

        try:
            tier, result = await with_fallback(
                [("tier1", lambda: self._tier1(brief)), ("tier2", lambda: self._tier2(brief))],
                label="pipeline",
                on_tier_failed=_record,
            )
        except FallbackExhaustedError as e:
            raise FatalPipelineError(errors["tier1"], errors["tier2"]) from e.failures[-1][1]

        if tier == "tier1":
            return result
        log.info("tier2_succeeded")
        stats = result.stats.model_copy(update={"tier1_error": errors["tier1"]})
        return result.model_copy(update={"stats": stats})
