"""Core story-tree domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Literal, TypeVar

T = TypeVar("T")

SortBy = Literal["popular", "trending", "recent", "newest"]
SORT_OPTIONS: tuple[str, ...] = ("popular", "trending", "recent", "newest")

NIL_USER_ID = "00000000-0000-0000-0000-000000000000"


class NodeType(str, Enum):
    """Tag carried by every topology node."""

    ROOT = "ROOT"
    BRANCH = "BRANCH"


class NotificationType(str, Enum):
    """Kinds of events a user can be notified about."""

    VOTE = "VOTE"
    BRANCH = "BRANCH"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class TopologyNode:
    """One node of the story forest."""

    node_id: str
    node_type: NodeType


@dataclass(frozen=True)
class TopologyEdge:
    """Parent to child continuation with its vote tally."""

    parent_id: str
    child_id: str
    votes: int = 0


@dataclass(frozen=True)
class StoredTale:
    """Tale content row with its root-only aggregates."""

    tale_id: str
    title: str | None
    author_id: str
    author_name: str
    content: str
    created_at_utc: str
    status: str = "Draft"
    is_deleted: bool = False
    series_votes: int = 0
    last_activity_at_utc: str | None = None
    trending_score: float = 0.0


@dataclass(frozen=True)
class StoredVote:
    """One ledger row: a user voted for a tale."""

    vote_id: str
    user_id: str
    tale_id: str
    voted_at_utc: str


@dataclass(frozen=True)
class StoredNotification:
    """Persisted notification addressed to one user."""

    notification_id: str
    user_id: str
    triggered_by_id: str
    triggered_by_name: str
    type: NotificationType
    message: str
    related_tale_id: str | None
    is_read: bool
    created_at_utc: str


@dataclass(frozen=True)
class StoredUser:
    """User profile row keyed by the identity provider subject."""

    user_id: str
    display_name: str
    bio: str | None
    avatar_style: str
    created_at_utc: str


@dataclass(frozen=True)
class TalePreview:
    """Title and body text used to label choices and map nodes."""

    tale_id: str
    title: str | None
    content: str


@dataclass(frozen=True)
class TrendingInput:
    """Aggregate inputs of one root tale for the trending formula."""

    tale_id: str
    series_votes: int
    created_at_utc: str


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results plus the total across all pages."""

    items: list[T]
    total_count: int
    page: int
    page_size: int


@dataclass(frozen=True)
class TaleChoice:
    """A branch offered as the continuation of a tale."""

    tale_id: str
    title: str
    votes: int
    preview_text: str


@dataclass(frozen=True)
class TaleView:
    """Reader-facing view of one tale."""

    tale_id: str
    title: str | None
    author_name: str
    content: str
    author_id: str
    created_at_utc: str
    vote_count: int = 0
    viewer_has_voted: bool = False
    series_votes: int = 0
    last_activity_at_utc: str | None = None
    choices: list[TaleChoice] = field(default_factory=list)


@dataclass(frozen=True)
class MapNode:
    """Story-map node with a display label."""

    node_id: str
    label: str
    node_type: NodeType


@dataclass(frozen=True)
class StoryMap:
    """Every node and edge of one story tree."""

    nodes: list[MapNode] = field(default_factory=list)
    edges: list[TopologyEdge] = field(default_factory=list)


@dataclass(frozen=True)
class TaleSummary:
    """Compact tale listing used on author profiles."""

    tale_id: str
    title: str | None
    content_preview: str
    created_at_utc: str
    votes_received: int


@dataclass(frozen=True)
class AuthorGroupings:
    """An author's tales split by their position in the forest."""

    roots: list[TaleSummary]
    branches: list[TaleSummary]

    @property
    def total_tales(self) -> int:
        return len(self.roots) + len(self.branches)

    @property
    def total_votes(self) -> int:
        return sum(item.votes_received for item in (*self.roots, *self.branches))


@dataclass(frozen=True)
class UserProfile:
    """Private profile view with the author's tale groupings."""

    user_id: str
    username: str
    bio: str | None
    avatar_style: str
    joined_at_utc: str
    total_tales_written: int
    total_votes_received: int
    my_roots: list[TaleSummary]
    my_branches: list[TaleSummary]


@dataclass(frozen=True)
class PublicUserProfile:
    """Public profile with headline counters."""

    user_id: str
    display_name: str
    bio: str | None
    avatar_style: str
    tale_count: int
    vote_count: int
    joined_at_utc: str
