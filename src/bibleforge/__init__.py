"""BibleForge: phase-scheduled story bible generation."""

__version__ = "0.1.0"
