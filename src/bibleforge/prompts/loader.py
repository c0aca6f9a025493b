"""Template loading for prompt compilation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

DEFAULT_PROMPTS_PATH = Path(__file__).parent


@dataclass
class PromptTemplate:
    """A loaded prompt template.

    Attributes:
        name: Template name, usually the file stem.
        description: What the template asks for.
        system: Role and output-format instructions.
        user: Per-request body with ``{{ variable }}`` placeholders.
    """

    name: str
    description: str
    system: str
    user: str

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str) -> PromptTemplate:
        return cls(
            name=data.get("name", name),
            description=data.get("description", ""),
            system=data.get("system", ""),
            user=data.get("user", ""),
        )


class TemplateNotFoundError(Exception):
    """Raised when a template file cannot be found."""

    def __init__(self, template_name: str, path: Path) -> None:
        self.template_name = template_name
        self.path = path
        super().__init__(f"Template not found: {template_name} at {path}")


class TemplateParseError(Exception):
    """Raised when a template file cannot be parsed."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Load prompt templates from the ``templates/`` directory.

    Attributes:
        prompts_path: Directory containing ``templates/``.
    """

    def __init__(self, prompts_path: Path | None = None) -> None:
        self.prompts_path = prompts_path or DEFAULT_PROMPTS_PATH
        self.templates_path = self.prompts_path / "templates"
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def _get_template_path(self, template_name: str) -> Path:
        return self.templates_path / f"{template_name}.yaml"

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name, caching the result.

        Args:
            template_name: Template name without the .yaml extension.

        Raises:
            TemplateNotFoundError: If the template file doesn't exist.
            TemplateParseError: If the template cannot be parsed.
        """
        if template_name in self._cache:
            return self._cache[template_name]

        path = self._get_template_path(template_name)
        if not path.exists():
            raise TemplateNotFoundError(template_name, path)

        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except Exception as e:
            raise TemplateParseError(template_name, str(e)) from e

        if not isinstance(data, dict):
            raise TemplateParseError(template_name, "Expected a mapping")

        template = PromptTemplate.from_dict(data, template_name)
        self._cache[template_name] = template
        return template

    def list_templates(self) -> list[str]:
        """List available template names."""
        if not self.templates_path.exists():
            return []
        return sorted(p.stem for p in self.templates_path.glob("*.yaml") if p.is_file())
