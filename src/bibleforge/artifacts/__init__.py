"""Story bible persistence."""

from bibleforge.artifacts.store import ArtifactStore, ArtifactStoreError

__all__ = ["ArtifactStore", "ArtifactStoreError"]
