"""Route group exports."""

from . import hawkers, health, routes

__all__ = ["hawkers", "health", "routes"]
