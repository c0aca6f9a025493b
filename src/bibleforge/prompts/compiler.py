"""Prompt compiler: template lookup plus ``{{ variable }}`` substitution."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bibleforge.prompts.loader import PromptLoader, TemplateNotFoundError, TemplateParseError

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class CompiledPrompt:
    """A compiled prompt ready for the generator."""

    system: str
    user: str
    template_name: str

    @property
    def text(self) -> str:
        """System and user sections joined into one prompt string."""
        if not self.system:
            return self.user
        return f"{self.system.rstrip()}\n\n{self.user.lstrip()}"


class PromptCompileError(Exception):
    """Raised when prompt compilation fails."""

    def __init__(self, template_name: str, message: str) -> None:
        self.template_name = template_name
        super().__init__(f"Failed to compile template '{template_name}': {message}")


class PromptCompiler:
    """Compile prompts from templates with variable substitution.

    Unresolved placeholders are left in place so a missing optional
    variable never breaks a run.
    """

    _VAR_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")

    def __init__(self, prompts_path: Path | None = None) -> None:
        self._loader = PromptLoader(prompts_path)

    def _resolve_variable(self, path: str, context: dict[str, Any]) -> str:
        """Resolve a dotted variable path such as ``brief.theme``.

        Raises:
            KeyError: If the path cannot be resolved.
        """
        value: Any = context
        for part in path.split("."):
            if isinstance(value, dict):
                if part not in value:
                    raise KeyError(f"Key '{part}' not found in context path '{path}'")
                value = value[part]
            elif hasattr(value, part):
                value = getattr(value, part)
            else:
                raise KeyError(f"Cannot resolve '{part}' in context path '{path}'")

        if value is None:
            return ""
        if isinstance(value, (list, dict)):
            return json.dumps(value, indent=2)
        return str(value)

    def _substitute_variables(self, text: str, context: dict[str, Any]) -> str:
        def replace_match(match: re.Match[str]) -> str:
            try:
                return self._resolve_variable(match.group(1), context)
            except KeyError:
                return match.group(0)

        return self._VAR_PATTERN.sub(replace_match, text)

    def compile(self, template_name: str, context: dict[str, Any] | None = None) -> CompiledPrompt:
        """Compile a prompt from a template.

        Args:
            template_name: Name of the template (e.g., 'premise').
            context: Values for placeholder substitution.

        Raises:
            PromptCompileError: If the template cannot be loaded.
        """
        context = context or {}
        try:
            template = self._loader.load(template_name)
        except (TemplateNotFoundError, TemplateParseError) as e:
            raise PromptCompileError(template_name, str(e)) from e

        return CompiledPrompt(
            system=self._substitute_variables(template.system, context),
            user=self._substitute_variables(template.user, context),
            template_name=template_name,
        )

    def render(self, template_name: str, context: dict[str, Any] | None = None) -> str:
        """Compile and return the single prompt string."""
        return self.compile(template_name, context).text

    def list_templates(self) -> list[str]:
        return self._loader.list_templates()
