"""Per-guild configuration and command permissions for the Discord bot."""

__version__ = "1.0.0"
