"""Deterministic stand-ins for the AI collaborator.

``TaggedCompiler`` prefixes every rendered prompt with its template name so
``ScriptedGenerator`` can route replies per template without matching on
prompt wording.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from bibleforge.prompts import PromptCompiler
from bibleforge.providers.base import GenerationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from bibleforge.providers.base import GenerationOptions

    Reply = str | Exception | Callable[[str], str]

_TAG = re.compile(r"^#template:(\w+)\n")
_CHARACTER_NAME = re.compile(r"CHARACTER NAME: (.+)")


class TaggedCompiler(PromptCompiler):
    """PromptCompiler whose output starts with ``#template:<name>``."""

    def render(self, template_name: str, context: dict[str, Any] | None = None) -> str:
        return f"#template:{template_name}\n" + super().render(template_name, context)


def template_of(prompt: str) -> str | None:
    match = _TAG.match(prompt)
    return match.group(1) if match else None


class ScriptedGenerator:
    """TextGenerator that replays scripted replies.

    A reply is a string, an exception to raise, or a callable that maps
    the prompt to a string. Routes keyed by template name take priority;
    a route holding a list is consumed in order and its last reply
    repeats. Unrouted prompts take the next queued reply, then ``default``.
    """

    def __init__(
        self,
        replies: list[Reply] | None = None,
        *,
        routes: dict[str, Reply | list[Reply]] | None = None,
        default: Reply = "",
        model_name: str = "fake/scripted",
    ) -> None:
        self._queue: list[Reply] = list(replies or [])
        self._routes: dict[str, Reply | list[Reply]] = {
            name: list(route) if isinstance(route, list) else route
            for name, route in (routes or {}).items()
        }
        self._default = default
        self._model_name = model_name
        self.calls: list[tuple[str, GenerationOptions]] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    def calls_for(self, template: str) -> int:
        return sum(1 for prompt, _ in self.calls if template_of(prompt) == template)

    def prompts_for(self, template: str) -> list[str]:
        return [prompt for prompt, _ in self.calls if template_of(prompt) == template]

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.calls.append((prompt, options))
        reply = self._next(prompt)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    def _next(self, prompt: str) -> Reply:
        name = template_of(prompt)
        if name is not None and name in self._routes:
            route = self._routes[name]
            if isinstance(route, list):
                return route.pop(0) if len(route) > 1 else route[0]
            return route
        if self._queue:
            return self._queue.pop(0)
        return self._default


def unavailable(message: str = "service unavailable") -> GenerationError:
    return GenerationError("fake", message)


def character_reply(prompt: str) -> str:
    """Reply with a minimal valid profile for the requested character."""
    match = _CHARACTER_NAME.search(prompt)
    name = match.group(1).strip() if match else "Someone"
    return json.dumps(
        {
            "name": name,
            "archetype": "Generated",
            "description": f"A generated profile for {name}.",
            "psychology": {"want": "answers", "need": "peace"},
        }
    )


def roster_reply(names: list[str]) -> str:
    return json.dumps([{"name": name, "archetype": "Cast"} for name in names])


def section_reply(**fields: Any) -> str:
    return "Here is the analysis:\n```json\n" + json.dumps(fields) + "\n```"
