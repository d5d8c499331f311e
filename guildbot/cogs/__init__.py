"""Bot Cogs Package."""

from .admin import Admin
from .events import Events

__all__ = ["Admin", "Events"]
