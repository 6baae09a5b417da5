"""Route modules for the public API."""

from . import chats, settings

__all__ = ["chats", "settings"]
