"""Roster allocation: a list of uniquely named stubs of an exact size.

The generator is asked for names first. When every attempt fails the
allocator builds an emergency roster from keyword heuristics, so a roster
of the requested size is always produced. Names are unique
case-insensitively across the roster and any reserved names.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

from bibleforge.models.bible import ROLES, RosterEntry
from bibleforge.observability.logging import get_logger
from bibleforge.parsing import parse
from bibleforge.pipeline.fallback import with_fallback
from bibleforge.prompts import PromptCompiler
from bibleforge.providers.base import GenerationOptions

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from bibleforge.models.bible import Brief, Role
    from bibleforge.pipeline.config import RosterConfig
    from bibleforge.providers.base import TextGenerator

log = get_logger(__name__)

LEAD_ROLES: tuple[Role, ...] = tuple(role for role in ROLES if role != "supporting")

DEFAULT_ARCHETYPES: dict[str, str] = {
    "protagonist": "Protagonist",
    "antagonist": "Antagonist",
    "supporting": "Supporting Character",
}

# (keywords, (protagonist stand-in, antagonist stand-in)); first match wins
EMERGENCY_LEADS: tuple[tuple[tuple[str, ...], tuple[str, str]], ...] = (
    (("detective", "investigat"), ("Detective Sarah Chen", "Commissioner Marcus Webb")),
    (("doctor", "medical"), ("Dr. Maria Rodriguez", "Dr. Victor Kane")),
    (("school", "teacher"), ("Teacher Alex Johnson", "Principal David Stone")),
)
DEFAULT_LEADS = ("Sarah Martinez", "Marcus Thompson")

SUPPORTING_NAME_POOL = (
    "Elena Rodriguez",
    "Jake Sullivan",
    "Lisa Park",
    "Tom Rivera",
    "Amanda Foster",
    "Ryan Chen",
    "Sophie Williams",
    "Michael Torres",
    "Rachel Green",
    "James Mitchell",
    "Helen Chang",
    "Mark Davis",
    "Diana Lopez",
    "Carlos Smith",
    "Nina Patel",
)

PROTAGONIST_PLACEHOLDER = "The Protagonist"

_SEED_NAME = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)")


class RosterResponseError(Exception):
    """Raised when a roster response holds no usable list of names."""

    def __init__(self, attempt: int, reason: str) -> None:
        self.attempt = attempt
        super().__init__(f"Roster attempt {attempt}: {reason}")


def extract_seed_name(text: str, default: str) -> str:
    """Recover a name from a free-form description.

    Takes the leading run of capitalised words on the first line. This is
    lossy: "Dr. Ana Ruiz" yields "Dr", and lowercase or non-ASCII names
    fall back to ``default``.
    """
    lines = text.strip().splitlines()
    first_line = lines[0].strip() if lines else ""
    match = _SEED_NAME.match(first_line)
    return match.group(1) if match else default


def unique_name(name: str, used: set[str]) -> str:
    """Return ``name``, or ``name`` plus the lowest free numeric suffix.

    Comparison is case-insensitive. The chosen name is added to ``used``
    (lowercased).
    """
    candidate = name
    suffix = 2
    while candidate.lower() in used:
        candidate = f"{name} {suffix}"
        suffix += 1
    used.add(candidate.lower())
    return candidate


def emergency_roster(
    count: int,
    domain_context: str,
    lead_roles: tuple[Role, ...] = LEAD_ROLES,
) -> list[dict[str, str]]:
    """Build ``count`` stand-in entries without the generator.

    The first entries take stand-in names for ``lead_roles`` chosen by
    keywords in ``domain_context``; the rest come from a fixed pool of
    supporting names, then ``Character N``.
    """
    text = domain_context.lower()
    leads = next(
        (names for keywords, names in EMERGENCY_LEADS if any(k in text for k in keywords)),
        DEFAULT_LEADS,
    )
    lead_names = dict(zip(LEAD_ROLES, leads, strict=True))

    entries = []
    for index in range(count):
        if index < len(lead_roles):
            role = lead_roles[index]
            entries.append({"name": lead_names[role], "archetype": DEFAULT_ARCHETYPES[role]})
        else:
            name = (
                SUPPORTING_NAME_POOL[index]
                if index < len(SUPPORTING_NAME_POOL)
                else f"Character {index + 1}"
            )
            entries.append({"name": name, "archetype": DEFAULT_ARCHETYPES["supporting"]})
    return entries


def _normalize_candidate(item: Any) -> dict[str, str]:
    if isinstance(item, dict):
        name = item.get("name")
        archetype = item.get("archetype")
        return {
            "name": name.strip() if isinstance(name, str) else "",
            "archetype": archetype.strip() if isinstance(archetype, str) else "",
        }
    if isinstance(item, str):
        return {"name": item.strip(), "archetype": ""}
    return {"name": "", "archetype": ""}


class RosterAllocator:
    """Produce exactly N uniquely named roster entries.

    Attributes:
        max_attempts: Generator attempts before the emergency roster.
        retry_delay: Seconds to wait between attempts.
    """

    def __init__(
        self,
        generator: TextGenerator,
        compiler: PromptCompiler | None = None,
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        options: GenerationOptions | None = None,
    ) -> None:
        self._generator = generator
        self._compiler = compiler or PromptCompiler()
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._options = options or GenerationOptions()

    @classmethod
    def from_config(
        cls,
        generator: TextGenerator,
        config: RosterConfig,
        compiler: PromptCompiler | None = None,
        options: GenerationOptions | None = None,
    ) -> RosterAllocator:
        return cls(
            generator,
            compiler,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay,
            options=options,
        )

    async def allocate(
        self,
        target_count: int,
        reserved_names: Iterable[str],
        domain_context: str,
        *,
        claimed_roles: Iterable[Role] = (),
        theme: str = "",
    ) -> list[RosterEntry]:
        """Allocate ``target_count`` uniquely named entries.

        Args:
            target_count: Exact number of entries to return.
            reserved_names: Names already taken (e.g., seeded characters).
            domain_context: Story text used in the prompt and for the
                emergency keyword heuristics.
            claimed_roles: Lead roles already held by seeded entries.
            theme: Optional theme included in the prompt.

        Returns:
            List of exactly ``target_count`` RosterEntry objects.

        Raises:
            ValueError: If ``target_count`` is negative.
        """
        if target_count < 0:
            raise ValueError(f"target_count must be non-negative, got {target_count}")
        if target_count == 0:
            return []

        reserved = [name for name in reserved_names if name and name.strip()]
        claimed = set(claimed_roles)
        lead_roles = tuple(role for role in LEAD_ROLES if role not in claimed)
        prompt = self._build_prompt(target_count, reserved, domain_context, theme, lead_roles)

        tiers = [
            (f"attempt_{attempt}", self._attempt_thunk(prompt, attempt))
            for attempt in range(1, self.max_attempts + 1)
        ]
        tiers.append(("emergency", self._emergency_thunk(target_count, domain_context, lead_roles)))
        source, candidates = await with_fallback(tiers, label="roster")

        if source == "emergency":
            log.error("roster_emergency_used", count=target_count, attempts=self.max_attempts)
        elif len(candidates) < target_count:
            padding = emergency_roster(target_count, domain_context, lead_roles)
            log.warning("roster_padded", generated=len(candidates), target=target_count)
            candidates = candidates + padding[len(candidates) :]

        entries = self._finalize(candidates[:target_count], reserved, lead_roles)
        log.info("roster_allocated", count=len(entries), source=source)
        return entries

    def _attempt_thunk(
        self, prompt: str, attempt: int
    ) -> Callable[[], Awaitable[list[dict[str, str]]]]:
        async def _run() -> list[dict[str, str]]:
            if attempt > 1 and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)
            raw = await self._generator.generate(prompt, self._options)
            parsed = parse(raw)
            if not isinstance(parsed, list) or not parsed:
                raise RosterResponseError(attempt, "no non-empty list in response")
            return [_normalize_candidate(item) for item in parsed]

        return _run

    def _emergency_thunk(
        self, count: int, domain_context: str, lead_roles: tuple[Role, ...]
    ) -> Callable[[], Awaitable[list[dict[str, str]]]]:
        async def _run() -> list[dict[str, str]]:
            return emergency_roster(count, domain_context, lead_roles)

        return _run

    def _finalize(
        self,
        candidates: list[dict[str, str]],
        reserved: list[str],
        lead_roles: tuple[Role, ...],
    ) -> list[RosterEntry]:
        used = {name.lower() for name in reserved}
        entries = []
        for index, candidate in enumerate(candidates):
            role: Role = lead_roles[index] if index < len(lead_roles) else "supporting"
            base = candidate["name"] or f"Character {index + 1}"
            entries.append(
                RosterEntry(
                    name=unique_name(base, used),
                    role=role,
                    archetype=candidate["archetype"] or DEFAULT_ARCHETYPES[role],
                )
            )
        return entries

    def _build_prompt(
        self,
        count: int,
        reserved: list[str],
        domain_context: str,
        theme: str,
        lead_roles: tuple[Role, ...],
    ) -> str:
        existing = ""
        if reserved:
            names = "\n".join(f"- {name}" for name in reserved)
            existing = f"EXISTING CHARACTERS (do not reuse these names):\n{names}\n"
        if lead_roles:
            leads = " and the next the ".join(lead_roles)
            guidance = f"Make the first character the {leads}; the rest are supporting."
        else:
            guidance = "The leads are already cast; every new character is supporting."
        return self._compiler.render(
            "roster",
            {
                "synopsis": domain_context,
                "theme": theme,
                "count": count,
                "existing_names_block": existing,
                "role_guidance": guidance,
            },
        )


async def build_roster(
    brief: Brief, target_count: int, allocator: RosterAllocator
) -> list[RosterEntry]:
    """Combine seeded entries from the brief with allocated ones.

    The protagonist description (if any) seeds the first entry; each
    character description seeds a supporting entry. The allocator fills
    the remaining slots, so the result has ``max(target_count, seeds)``
    entries.

    Raises:
        ValueError: If ``target_count`` is negative.
    """
    if target_count < 0:
        raise ValueError(f"target_count must be non-negative, got {target_count}")

    used: set[str] = set()
    seeded: list[RosterEntry] = []
    if brief.protagonist and brief.protagonist.strip():
        name = extract_seed_name(brief.protagonist, PROTAGONIST_PLACEHOLDER)
        seeded.append(
            RosterEntry(
                name=unique_name(name, used),
                role="protagonist",
                archetype=DEFAULT_ARCHETYPES["protagonist"],
                info=brief.protagonist.strip(),
            )
        )
    for index, info in enumerate(brief.characters):
        name = extract_seed_name(info, f"Character {index + 1}")
        seeded.append(
            RosterEntry(
                name=unique_name(name, used),
                role="supporting",
                archetype=DEFAULT_ARCHETYPES["supporting"],
                info=info,
            )
        )

    remaining = max(0, target_count - len(seeded))
    claimed = [entry.role for entry in seeded if entry.role != "supporting"]
    generated = await allocator.allocate(
        remaining,
        [entry.name for entry in seeded],
        brief.domain_context,
        claimed_roles=claimed,
        theme=brief.theme,
    )
    log.debug("roster_built", seeded=len(seeded), generated=len(generated))
    return seeded + generated
