from __future__ import annotations


class ToolforgeError(Exception):
    """Base error for toolforge."""


class DatabaseError(ToolforgeError):
    """Database operation failure."""


class SlugExhaustedError(ToolforgeError):
    """No free slug candidate could be found."""


class NewsFeedError(ToolforgeError):
    """RSS/Atom feed could not be fetched or parsed."""


class InvalidRoleError(ToolforgeError, ValueError):
    """Role is outside the supported vocabulary."""
