"""Resilient extraction of structured data from free-form model output.

Models asked for "JSON only" still wrap answers in prose or markdown
fences, truncate them, or add commentary. ``parse`` tries progressively
looser strategies and returns ``None`` rather than raising, so callers can
degrade instead of failing:

1. strict JSON parse of the whole text;
2. the interior of the first fenced block (```` ```json ... ``` ````);
3. the first balanced ``[...]`` / ``{...}`` span anywhere in the text.

``parse_if_valid`` layers a caller-supplied shape predicate on top and
returns either the data or the original text as a raw fallback.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from bibleforge.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    Predicate = Callable[[Any], bool]

log = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n?(.*?)```", re.DOTALL)
_COUNT_PATTERN = re.compile(r"\b(\d{1,4})\b")
_CLOSERS = {"[": "]", "{": "}"}

# Upper bound on bracket spans tried in strategy 3
_MAX_SPAN_CANDIDATES = 64


def _loads_container(text: str) -> dict[str, Any] | list[Any] | None:
    """Parse ``text`` as JSON, accepting only objects and arrays."""
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    if isinstance(value, (dict, list)):
        return value
    return None


def _match_close(text: str, start: int) -> int | None:
    """Return the index closing the bracket at ``start``, or None.

    Tracks nesting with a stack and skips over JSON string literals
    (including escaped quotes) so brackets inside strings do not count.
    """
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for index in range(start + 1, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "]}":
            if ch != stack.pop():
                return None
            if not stack:
                return index
    return None


def _balanced_spans(text: str) -> Iterator[str]:
    """Yield balanced bracket spans in order of their opening position."""
    tried = 0
    index = 0
    while tried < _MAX_SPAN_CANDIDATES:
        starts = [pos for pos in (text.find("[", index), text.find("{", index)) if pos != -1]
        if not starts:
            return
        start = min(starts)
        end = _match_close(text, start)
        tried += 1
        if end is not None:
            yield text[start : end + 1]
        index = start + 1


def parse(text: object) -> dict[str, Any] | list[Any] | None:
    """Extract the first structured value (object or array) from ``text``.

    Never raises. Scalars such as a bare number or string do not count as
    structured values.

    Args:
        text: Raw model output. Non-string input yields None.

    Returns:
        The parsed dict or list, or None if every strategy failed.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    stripped = text.strip()
    value = _loads_container(stripped)
    if value is not None:
        return value

    fence = _FENCE_PATTERN.search(stripped)
    if fence:
        value = _loads_container(fence.group(1).strip())
        if value is not None:
            log.debug("parse_recovered", strategy="fence")
            return value

    for span in _balanced_spans(stripped):
        value = _loads_container(span)
        if value is not None:
            log.debug("parse_recovered", strategy="span", length=len(span))
            return value

    return None


@dataclass(frozen=True)
class ParseOutcome:
    """Either validated structured data or the raw text it came from.

    Attributes:
        data: Parsed value that passed the predicate, or None.
        raw: Original text when parsing or validation failed, else None.
    """

    data: Any = None
    raw: str | None = None

    @property
    def ok(self) -> bool:
        """True when ``data`` holds a validated value."""
        return self.raw is None

    def or_raw_wrapper(self) -> Any:
        """Return the data, or ``{"raw_content": raw}`` for a failed parse."""
        if self.ok:
            return self.data
        return {"raw_content": self.raw}


def parse_if_valid(text: str, predicate: Predicate) -> ParseOutcome:
    """Parse ``text`` and check it against ``predicate``.

    Parse failures, a False predicate, and exceptions raised by the
    predicate all produce a raw outcome instead of propagating.

    Args:
        text: Raw model output.
        predicate: Shape check applied to the parsed value.

    Returns:
        ParseOutcome with ``data`` on success or ``raw`` on any failure.
    """
    value = parse(text)
    if value is None:
        return ParseOutcome(raw=text)
    try:
        valid = bool(predicate(value))
    except Exception as e:
        log.debug("predicate_raised", error=str(e))
        valid = False
    if not valid:
        return ParseOutcome(raw=text)
    return ParseOutcome(data=value)


def has_any_key(*keys: str) -> Predicate:
    """Build a predicate accepting dicts that carry at least one of ``keys``."""

    def _check(value: Any) -> bool:
        return isinstance(value, dict) and any(value.get(key) is not None for key in keys)

    return _check


def matches_schema(model: type[BaseModel]) -> Predicate:
    """Build a predicate accepting values that validate against ``model``."""

    def _check(value: Any) -> bool:
        try:
            model.model_validate(value)
        except ValidationError:
            return False
        return True

    return _check


def parse_count(text: str, default: int) -> int:
    """Read the first positive integer from model text.

    Args:
        text: Model answer such as ``"8"`` or ``"About 12 characters."``.
        default: Value returned when no positive integer is present.
    """
    match = _COUNT_PATTERN.search(text or "")
    if match:
        count = int(match.group(1))
        if count > 0:
            return count
    return default
