"""File-backed persistence for finished story bibles.

Each artifact is one YAML file at ``<root>/<owner_id>/<artifact_id>.yaml``.
"""

from __future__ import annotations

import re
import uuid
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from pydantic import BaseModel
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from bibleforge.observability.logging import get_logger

log = get_logger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class ArtifactStoreError(Exception):
    """Raised when an artifact cannot be saved or loaded."""

    def __init__(self, artifact_id: str | None, reason: str) -> None:
        self.artifact_id = artifact_id
        self.reason = reason
        label = artifact_id or "<new>"
        super().__init__(f"Artifact store error for {label}: {reason}")


def _check_id(value: str, label: str, artifact_id: str | None) -> None:
    if not _SAFE_ID.match(value) or ".." in value:
        raise ArtifactStoreError(artifact_id, f"Invalid {label}: {value!r}")


class ArtifactStore:
    """Save and load story bible artifacts as YAML files.

    Attributes:
        root: Directory holding one subdirectory per owner.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._yaml = YAML()
        self._yaml.default_flow_style = False
        self._yaml.indent(mapping=2, sequence=4, offset=2)

    def _path(self, artifact_id: str, owner_id: str) -> Path:
        _check_id(owner_id, "owner_id", artifact_id)
        _check_id(artifact_id, "artifact_id", artifact_id)
        return self.root / owner_id / f"{artifact_id}.yaml"

    def save(self, artifact: BaseModel | dict[str, Any], owner_id: str) -> str:
        """Persist an artifact and return its new id.

        Args:
            artifact: Pydantic model or mapping to write.
            owner_id: Owner the artifact is filed under.

        Returns:
            The generated artifact id.

        Raises:
            ArtifactStoreError: If the artifact can't be written.
        """
        artifact_id = uuid.uuid4().hex
        path = self._path(artifact_id, owner_id)
        if isinstance(artifact, BaseModel):
            data = artifact.model_dump(mode="json", exclude_none=True)
        else:
            data = artifact

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                self._yaml.dump(data, f)
        except (OSError, YAMLError) as e:
            raise ArtifactStoreError(artifact_id, str(e)) from e

        log.info("artifact_saved", artifact_id=artifact_id, owner=owner_id, path=str(path))
        return artifact_id

    def load(self, artifact_id: str, owner_id: str) -> dict[str, Any]:
        """Read an artifact back as a plain dictionary.

        Raises:
            ArtifactStoreError: If the artifact is missing or unreadable.
        """
        path = self._path(artifact_id, owner_id)
        if not path.exists():
            raise ArtifactStoreError(artifact_id, f"Not found at {path}")

        reader = YAML(typ="safe")
        try:
            with path.open("r", encoding="utf-8") as f:
                data = reader.load(f)
        except (OSError, YAMLError) as e:
            raise ArtifactStoreError(artifact_id, str(e)) from e

        if not isinstance(data, dict):
            raise ArtifactStoreError(artifact_id, "Expected a mapping")
        return data

    def list_ids(self, owner_id: str) -> list[str]:
        """Return the ids stored for ``owner_id``, sorted.

        Raises:
            ArtifactStoreError: If ``owner_id`` is not a safe path segment.
        """
        _check_id(owner_id, "owner_id", None)
        owner_dir = self.root / owner_id
        if not owner_dir.is_dir():
            return []
        return sorted(p.stem for p in owner_dir.glob("*.yaml"))
