"""Tier-1 phase catalogue and section definitions.

Each section phase sends one templated request and accepts the parsed
answer only when it carries at least one of the section's expected keys.
Rejected answers are kept verbatim under ``raw_content``; some sections
also have a templated skeleton so the assembled bible keeps its shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# (id, display name) in execution order
TIER1_PHASES: tuple[tuple[str, str], ...] = (
    ("premise", "Premise Analysis"),
    ("roster", "Character Roster"),
    ("characters", "Character Profiles"),
    ("narrative", "Narrative Structure"),
    ("world", "World Building"),
    ("dialogue", "Dialogue Strategy"),
    ("tension", "Tension System"),
    ("genre", "Genre Enhancement"),
    ("choice", "Choice Architecture"),
    ("theme", "Theme Integration"),
    ("living_world", "Living World"),
    ("tropes", "Trope Analysis"),
    ("cohesion", "Story Cohesion"),
    ("marketing", "Marketing Strategy"),
    ("assembly", "Assembly"),
)

DEFAULT_ARC_COUNT = 4
EPISODES_PER_ARC = 8
MAX_ADDITIONAL_CHARACTERS = 8


@dataclass(frozen=True)
class SectionSpec:
    """One generated section of the story bible.

    Attributes:
        phase_id: Scheduler phase that produces the section.
        output_key: Key of the section in the assembled bible.
        template: Prompt template name.
        keys: The answer is accepted if any of these keys is present.
    """

    phase_id: str
    output_key: str
    template: str
    keys: tuple[str, ...]


SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec("world", "world_building", "world", ("setting", "locations", "rules")),
    SectionSpec(
        "dialogue",
        "dialogue_strategy",
        "dialogue",
        ("character_voice", "conflict_dialogue", "subtext", "speech_patterns"),
    ),
    SectionSpec(
        "tension",
        "tension_strategy",
        "tension",
        ("tension_curve", "climax_points", "release_moments", "escalation_techniques"),
    ),
    SectionSpec(
        "genre",
        "genre_enhancement",
        "genre",
        ("visual_style", "pacing", "tropes", "audience_expectations"),
    ),
    SectionSpec(
        "choice",
        "choice_architecture",
        "choice",
        ("key_decisions", "moral_choices", "consequence_mapping"),
    ),
    SectionSpec(
        "theme",
        "theme_integration",
        "theme",
        ("character_integration", "plot_integration", "symbolic_elements"),
    ),
    SectionSpec(
        "living_world",
        "living_world_dynamics",
        "living_world",
        ("background_events", "social_dynamics", "economic_factors"),
    ),
    SectionSpec(
        "tropes",
        "trope_analysis",
        "tropes",
        ("genre_tropes", "subverted_tropes", "original_elements"),
    ),
    SectionSpec(
        "cohesion",
        "cohesion_analysis",
        "cohesion",
        ("narrative_cohesion", "thematic_continuity", "character_arcs"),
    ),
    SectionSpec(
        "marketing",
        "marketing",
        "marketing",
        ("marketing_strategy", "platform_strategies", "ugc_strategy"),
    ),
)


def world_skeleton(story_type: str, theme: str) -> dict[str, Any]:
    """Minimal world building that generated data is merged over."""
    return {
        "setting": (
            f"A {story_type} setting that supports the exploration of {theme or 'the theme'}"
        ),
        "rules": "The world operates according to realistic social and emotional dynamics",
        "locations": [
            {
                "name": "Primary Setting",
                "description": f"The main location where the {story_type} unfolds",
                "significance": "Central to character interactions and plot development",
            }
        ],
    }


def marketing_skeleton() -> dict[str, Any]:
    """Empty marketing structure used when no usable strategy came back."""
    return {
        "marketing_strategy": {
            "primary_approach": "Marketing strategy will be developed during pre-production",
            "target_audience": {"primary": [], "secondary": [], "persona": ""},
            "key_selling_points": [],
            "unique_value_proposition": "",
        },
        "platform_strategies": {},
        "marketing_hooks": {"episode_hooks": [], "series_hooks": [], "character_hooks": []},
        "distribution": {"pre_launch": [], "launch": [], "post_launch": []},
        "ugc_strategy": {"actor_marketing": [], "community_building": []},
    }


def section_skeleton(spec: SectionSpec, story_type: str, theme: str) -> dict[str, Any]:
    """Templated stand-in for a section, empty for most sections."""
    if spec.phase_id == "world":
        return world_skeleton(story_type, theme)
    if spec.phase_id == "marketing":
        return marketing_skeleton()
    return {}


def premise_fallback(synopsis: str, theme: str, story_type: str, raw: str) -> dict[str, Any]:
    """Premise structure used when the analysis could not be parsed."""
    return {
        "premise_statement": f"{theme or 'The theme'} is explored through the lens of {synopsis}",
        "character": "The protagonist",
        "conflict": "faces challenges that test their beliefs",
        "resolution": "and must choose what they truly value",
        "theme": theme,
        "premise_type": story_type,
        "raw_content": raw,
    }


def narrative_skeleton(arc_count: int, theme: str) -> list[dict[str, Any]]:
    """Numbered arcs with placeholder episodes, numbered across arcs."""
    return [
        {
            "title": f"Arc {arc + 1}",
            "summary": (
                f"Narrative arc {arc + 1} exploring {theme or 'the theme'} "
                "through character development."
            ),
            "episodes": [
                {
                    "number": arc * EPISODES_PER_ARC + episode + 1,
                    "title": f"Episode {arc * EPISODES_PER_ARC + episode + 1}",
                    "summary": "Episode summary will be generated during episode creation.",
                }
                for episode in range(EPISODES_PER_ARC)
            ],
        }
        for arc in range(arc_count)
    ]


def overview_fallback(story_type: str, theme: str) -> str:
    return (
        f"This {story_type} series explores themes of {theme or 'identity and change'} through "
        "a compelling narrative that challenges characters to confront their deepest beliefs "
        "and desires. The story weaves together complex character arcs, meaningful choices, "
        "and emotional depth to create an immersive viewing experience."
    )


def living_world_provisions(character_count: int) -> dict[str, Any]:
    """Hooks for introducing characters later in the series."""
    return {
        "character_expansion_enabled": True,
        "initial_character_pool": character_count,
        "max_additional_characters": MAX_ADDITIONAL_CHARACTERS,
        "character_introduction_triggers": [
            "narrative_needs",
            "premise_exploration",
            "conflict_escalation",
            "world_expansion",
            "user_choice_consequences",
        ],
        "planned_introduction_arcs": [],
        "character_archetype_pool": [
            "mentor",
            "rival",
            "love-interest",
            "ally",
            "wildcard",
            "authority-figure",
            "comic-relief",
            "catalyst",
            "shadow",
            "threshold-guardian",
        ],
    }
