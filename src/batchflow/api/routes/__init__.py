"""Route group exports."""

from . import health, workflows

__all__ = ["health", "workflows"]
