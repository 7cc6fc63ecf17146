"""Ports for the two stores and the side-effect sinks."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from tale_graph.domain.models import (
    NodeType,
    NotificationType,
    SortBy,
    StoredNotification,
    StoredTale,
    StoredUser,
    TalePreview,
    TopologyEdge,
    TopologyNode,
    TrendingInput,
)


class TopologyStore(Protocol):
    """Graph-shaped persistence of nodes and parent-to-child edges."""

    def create_root(self, *, node_id: str) -> None: ...

    def create_branch(self, *, parent_id: str, child_id: str) -> bool: ...

    def get_node(self, *, node_id: str) -> TopologyNode | None: ...

    def node_types(self, *, node_ids: Sequence[str]) -> dict[str, NodeType]: ...

    def find_root(self, *, node_id: str) -> str | None: ...

    def increment_edge_votes(self, *, child_id: str) -> bool: ...

    def get_incoming_edge(self, *, child_id: str) -> TopologyEdge | None: ...

    def count_children(self, *, parent_id: str) -> int: ...

    def has_children(self, *, node_id: str) -> bool: ...

    def list_children(
        self, *, parent_id: str, offset: int, limit: int
    ) -> list[TopologyEdge]: ...

    def list_root_ids(self) -> list[str]: ...

    def count_roots(self) -> int: ...

    def list_descendants(self, *, root_id: str) -> list[TopologyNode]: ...

    def list_edges_within(self, *, node_ids: Sequence[str]) -> list[TopologyEdge]: ...

    def detach_delete(self, *, node_id: str) -> bool: ...


class ContentStore(Protocol):
    """Tabular persistence of tales, the vote ledger, notifications, and profiles."""

    def insert_tale(
        self,
        *,
        tale_id: str,
        author_id: str,
        author_name: str,
        title: str | None,
        content: str,
        created_at_utc: str,
    ) -> StoredTale: ...

    def get_tale(self, *, tale_id: str) -> StoredTale | None: ...

    def get_previews(self, *, tale_ids: Sequence[str]) -> dict[str, TalePreview]: ...

    def update_tale_content(
        self, *, tale_id: str, title: str | None, content: str | None
    ) -> StoredTale | None: ...

    def set_last_activity(self, *, tale_id: str, at_utc: str) -> bool: ...

    def bump_series_votes(self, *, tale_id: str, at_utc: str) -> bool: ...

    def tombstone_tale(
        self, *, tale_id: str, placeholder: str, anonymous_name: str
    ) -> bool: ...

    def delete_tale_and_votes(self, *, tale_id: str) -> bool: ...

    def page_roots(
        self,
        *,
        candidate_ids: Sequence[str],
        sort_by: SortBy,
        offset: int,
        limit: int,
    ) -> tuple[list[StoredTale], int]: ...

    def search_tales(self, *, text: str, limit: int) -> list[StoredTale]: ...

    def list_tales_by_author(self, *, author_id: str) -> list[StoredTale]: ...

    def rename_author(self, *, author_id: str, author_name: str) -> int: ...

    def anonymize_author(
        self, *, author_id: str, ghost_name: str, nil_author_id: str
    ) -> int: ...

    def list_trending_inputs(self, *, tale_ids: Sequence[str]) -> list[TrendingInput]: ...

    def set_trending_score(self, *, tale_id: str, score: float) -> bool: ...

    def insert_vote(self, *, user_id: str, tale_id: str, voted_at_utc: str) -> bool: ...

    def has_voted(self, *, user_id: str, tale_id: str) -> bool: ...

    def count_votes(self, *, tale_id: str) -> int: ...

    def vote_counts(self, *, tale_ids: Sequence[str]) -> dict[str, int]: ...

    def count_votes_received(self, *, author_id: str) -> int: ...

    def delete_votes_by_user(self, *, user_id: str) -> int: ...

    def insert_notification(
        self,
        *,
        user_id: str,
        notification_type: NotificationType,
        message: str,
        related_tale_id: str | None,
        triggered_by_id: str,
        triggered_by_name: str,
        created_at_utc: str,
    ) -> StoredNotification: ...

    def list_unread_notifications(self, *, user_id: str) -> list[StoredNotification]: ...

    def mark_notification_read(self, *, notification_id: str, user_id: str) -> bool: ...

    def mark_all_notifications_read(self, *, user_id: str) -> int: ...

    def delete_notifications_for_user(self, *, user_id: str) -> int: ...

    def ensure_user(self, *, user_id: str, display_name: str) -> StoredUser: ...

    def get_user(self, *, user_id: str) -> StoredUser | None: ...

    def update_user(
        self,
        *,
        user_id: str,
        display_name: str | None,
        bio: str | None,
        avatar_style: str | None,
    ) -> StoredUser | None: ...

    def delete_user(self, *, user_id: str) -> bool: ...

    def search_users(self, *, text: str, limit: int) -> list[StoredUser]: ...


class NotificationSink(Protocol):
    """Fire-and-store delivery of user notifications."""

    def notify(
        self,
        *,
        recipient_id: str,
        notification_type: NotificationType,
        message: str,
        related_tale_id: str | None,
        triggered_by_id: str,
        triggered_by_name: str,
    ) -> bool: ...


class AnomalyRecorder(Protocol):
    """Durable breadcrumbs for accepted data-quality debt."""

    def __call__(
        self,
        *,
        scope: str,
        code: str,
        severity: str,
        message: str,
        metadata: dict[str, object] | None = None,
    ) -> None: ...
