"""Error taxonomy surfaced by the story-tree core."""

from __future__ import annotations


class TaleGraphError(Exception):
    """Base class for expected, caller-visible failures."""


class NotFoundError(TaleGraphError):
    """Raised when a referenced tale, user, or root does not exist."""


class UnauthorizedError(TaleGraphError):
    """Raised when the caller is not the author of the resource."""


class StructuralConflictError(TaleGraphError):
    """Raised when a strict delete targets a tale that still has branches."""


class TopologyConflictError(TaleGraphError):
    """Raised when a write would break the single-parent forest shape."""
