"""Domain models, errors, and ports for the story tree."""

from tale_graph.domain.errors import (
    NotFoundError,
    StructuralConflictError,
    TaleGraphError,
    TopologyConflictError,
    UnauthorizedError,
)
from tale_graph.domain.models import (
    NodeType,
    NotificationType,
    Page,
    StoryMap,
    TaleChoice,
    TaleView,
)
from tale_graph.domain.ports import ContentStore, NotificationSink, TopologyStore

__all__ = [
    "ContentStore",
    "NodeType",
    "NotFoundError",
    "NotificationSink",
    "NotificationType",
    "Page",
    "StoryMap",
    "StructuralConflictError",
    "TaleChoice",
    "TaleGraphError",
    "TaleView",
    "TopologyConflictError",
    "TopologyStore",
    "UnauthorizedError",
]
