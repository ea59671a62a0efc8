"""Java runtime lookup."""

from .java_manager import JavaManager

__all__ = ["JavaManager"]
