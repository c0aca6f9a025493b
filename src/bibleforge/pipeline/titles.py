"""Story-type detection and series title helpers.

Detection is a keyword heuristic used only to flavour prompts and
templated stand-ins. Titles come from the model when possible and from
the synopsis words otherwise.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bibleforge.observability.logging import get_logger
from bibleforge.parsing import parse
from bibleforge.providers.base import GenerationError, GenerationOptions

if TYPE_CHECKING:
    from bibleforge.prompts import PromptCompiler
    from bibleforge.providers.base import TextGenerator

log = get_logger(__name__)

DEFAULT_STORY_TYPE = "contemporary drama"

# Checked in order; the first type with a matching keyword wins
STORY_TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "high school drama": ("high school", "teenage", "teen", "student", "graduation", "prom"),
    "college drama": ("college", "university", "campus", "semester", "dormitory"),
    "workplace drama": ("office", "company", "corporate", "business", "workplace", "career"),
    "family drama": ("family", "mother", "father", "sibling", "parent", "home", "household"),
    "crime drama": ("detective", "police", "murder", "investigation", "criminal", "crime", "law"),
    "medical drama": ("hospital", "doctor", "medical", "patient", "surgery", "nurse"),
    "fantasy drama": ("magic", "fantasy", "wizard", "dragon", "kingdom", "quest", "mythical"),
    "sci-fi drama": (
        "space",
        "future",
        "robot",
        "alien",
        "technology",
        "sci-fi",
        "quantum",
        "cyber",
        "ai",
        "colony",
    ),
}

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "with", "from", "into", "over", "under", "about",
        "between", "across", "of", "to", "in", "on", "at", "by", "a", "an",
        "is", "are", "was", "were", "as", "that", "this",
    }
)  # fmt: skip

MAX_TITLE_LENGTH = 32

_QUOTES = "\"'“”‘’"
_SUBTITLE = re.compile(r"[:\-–—].*$")
_SERIES_SUFFIX = re.compile(r"\s+Series$", re.IGNORECASE)
_FILLER_WORDS = re.compile(r"\b(Chronicles|Saga|Legend|Tales|Story)\b", re.IGNORECASE)
_NON_WORD = re.compile(r"[^a-z0-9\s]")


def detect_story_type(synopsis: str, theme: str = "") -> str:
    """Classify a story by keyword, defaulting to contemporary drama."""
    text = f"{synopsis} {theme}".lower()
    for story_type, keywords in STORY_TYPE_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return story_type
    return DEFAULT_STORY_TYPE


def title_case(text: str) -> str:
    """Capitalise each word and lowercase the rest, dropping outer quotes."""
    words = text.strip().strip(_QUOTES).split()
    return " ".join(word[0].upper() + word[1:].lower() for word in words)


def sanitize_title(title: str) -> str:
    """Normalise a candidate title into a short poster-friendly form.

    Drops quotes, a trailing "Series", any subtitle, and filler words such
    as "Saga", then title-cases and truncates to 32 characters.
    """
    text = title.strip().strip(_QUOTES)
    text = _SERIES_SUFFIX.sub("", text)
    text = _SUBTITLE.sub("", text)
    text = _FILLER_WORDS.sub("", text).strip()
    text = title_case(re.sub(r"\s{2,}", " ", text))
    return text if len(text) <= MAX_TITLE_LENGTH else text[:MAX_TITLE_LENGTH].strip()


def heuristic_title(synopsis: str, theme: str = "") -> str:
    """Build a title from the first distinctive words of the synopsis."""
    words = _NON_WORD.sub(" ", f"{synopsis} {theme}".lower()).split()
    unique = list(dict.fromkeys(w for w in words if len(w) > 3 and w not in STOP_WORDS))

    def pick(index: int) -> str:
        return title_case(unique[index]) if index < len(unique) else ""

    candidate = f"{pick(0)} {pick(1)}".strip() or f"{pick(0)} {pick(2)}".strip()
    return sanitize_title(candidate or theme or "Untitled") or "Untitled"


async def generate_series_title(
    generator: TextGenerator,
    compiler: PromptCompiler,
    synopsis: str,
    theme: str,
    story_type: str,
    options: GenerationOptions | None = None,
) -> str:
    """Ask the model for titles and keep the first, sanitised.

    Falls back to ``heuristic_title`` when the call fails or the answer
    sanitises to nothing.
    """
    prompt = compiler.render(
        "series_title", {"synopsis": synopsis, "theme": theme, "story_type": story_type}
    )
    try:
        raw = await generator.generate(prompt, options or GenerationOptions())
    except GenerationError as e:
        log.warning("series_title_failed", error=str(e))
        return heuristic_title(synopsis, theme)

    parsed = parse(raw)
    if isinstance(parsed, list) and parsed:
        candidate = str(parsed[0])
    else:
        lines = raw.strip().splitlines()
        candidate = lines[0] if lines else ""
    return sanitize_title(candidate) or heuristic_title(synopsis, theme)
