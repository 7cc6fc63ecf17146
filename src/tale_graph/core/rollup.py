"""Bubble vote and branch events up to the root of their story tree.

Each event is an ordered sequence of steps against two independent stores.
The first write decides whether the event happened at all; every later step
is an increment or a timestamp set that can be replayed safely. When a later
step fails the earlier writes stay in place, the failure is logged and kept
as an anomaly record, and the caller still sees the event as successful.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from tale_graph.core.clock import to_utc_iso
from tale_graph.core.root_resolver import RootResolver
from tale_graph.domain.errors import NotFoundError
from tale_graph.domain.models import NotificationType
from tale_graph.domain.ports import AnomalyRecorder, ContentStore, NotificationSink, TopologyStore

logger = logging.getLogger(__name__)

ANOMALY_SCOPE = "rollup"
VOTE_MESSAGE = "Someone voted on your tale"
VOTE_ACTOR_NAME = "A reader"


def branch_message(author_name: str) -> str:
    return f"{author_name} continued your story"


class RollupAggregator:
    """Maintains per-edge tallies and root aggregates for vote and branch events."""

    def __init__(
        self,
        *,
        topology: TopologyStore,
        content: ContentStore,
        notifications: NotificationSink,
        resolver: RootResolver | None = None,
        record_anomaly: AnomalyRecorder | None = None,
    ) -> None:
        self._topology = topology
        self._content = content
        self._notifications = notifications
        self._resolver = resolver or RootResolver(topology)
        self._record_anomaly = record_anomaly

    def on_branch_created(
        self,
        *,
        tale_id: str,
        parent_id: str | None,
        author_id: str,
        author_name: str,
        at: datetime,
    ) -> None:
        """Place a freshly written tale in the forest and stamp its root's activity.

        The topology write is the step that makes the tale reachable, so its
        failure propagates. Root stamping and the parent-author notification
        are follow-up steps whose failures are only recorded.
        """
        at_utc = to_utc_iso(at)
        if parent_id is None:
            self._topology.create_root(node_id=tale_id)
            logger.info("rollup.root_created tale_id=%s", tale_id)
            self._follow_up(
                code="root_activity_failed",
                message="Root activity timestamp was not written for a new story.",
                metadata={"tale_id": tale_id},
                step=lambda: self._stamp_activity(root_id=tale_id, at_utc=at_utc),
            )
            return

        if not self._topology.create_branch(parent_id=parent_id, child_id=tale_id):
            raise NotFoundError(f"Parent tale {parent_id} is not in the story graph.")
        logger.info("rollup.branch_created tale_id=%s parent_id=%s", tale_id, parent_id)

        self._follow_up(
            code="root_activity_failed",
            message="Root activity timestamp was not written for a new branch.",
            metadata={"tale_id": tale_id, "parent_id": parent_id},
            step=lambda: self._stamp_root_activity(node_id=parent_id, at_utc=at_utc),
        )
        self._follow_up(
            code="notification_failed",
            message="Branch notification was not stored.",
            metadata={"tale_id": tale_id, "parent_id": parent_id},
            step=lambda: self._notify_parent_author(
                parent_id=parent_id,
                tale_id=tale_id,
                author_id=author_id,
                author_name=author_name,
            ),
        )

    def on_vote(self, *, tale_id: str, author_id: str, voter_id: str, at: datetime) -> bool:
        """Record one vote; False means this voter already voted for this tale."""
        at_utc = to_utc_iso(at)
        if self._content.has_voted(user_id=voter_id, tale_id=tale_id):
            return False
        if not self._content.insert_vote(user_id=voter_id, tale_id=tale_id, voted_at_utc=at_utc):
            logger.info("rollup.vote_race_lost tale_id=%s voter_id=%s", tale_id, voter_id)
            return False

        self._follow_up(
            code="edge_counter_failed",
            message="Vote was recorded but the edge counter was not incremented.",
            metadata={"tale_id": tale_id, "voter_id": voter_id},
            step=lambda: self._increment_edge(tale_id=tale_id),
        )
        self._follow_up(
            code="root_aggregate_failed",
            message="Vote was recorded but the root series votes were not updated.",
            metadata={"tale_id": tale_id, "voter_id": voter_id},
            step=lambda: self._bump_root(tale_id=tale_id, at_utc=at_utc),
        )
        self._follow_up(
            code="notification_failed",
            message="Vote notification was not stored.",
            metadata={"tale_id": tale_id, "voter_id": voter_id},
            step=lambda: self._notifications.notify(
                recipient_id=author_id,
                notification_type=NotificationType.VOTE,
                message=VOTE_MESSAGE,
                related_tale_id=tale_id,
                triggered_by_id=voter_id,
                triggered_by_name=VOTE_ACTOR_NAME,
            ),
        )
        logger.info("rollup.vote tale_id=%s voter_id=%s", tale_id, voter_id)
        return True

    def _increment_edge(self, *, tale_id: str) -> None:
        # Root tales have no incoming edge, so nothing to count there.
        if not self._topology.increment_edge_votes(child_id=tale_id):
            logger.debug("rollup.no_incoming_edge tale_id=%s", tale_id)

    def _bump_root(self, *, tale_id: str, at_utc: str) -> None:
        root_id = self._resolver.resolve(tale_id)
        if not self._content.bump_series_votes(tale_id=root_id, at_utc=at_utc):
            raise NotFoundError(f"Root tale {root_id} has no content row.")

    def _stamp_root_activity(self, *, node_id: str, at_utc: str) -> None:
        root_id = self._resolver.resolve(node_id)
        self._stamp_activity(root_id=root_id, at_utc=at_utc)

    def _stamp_activity(self, *, root_id: str, at_utc: str) -> None:
        if not self._content.set_last_activity(tale_id=root_id, at_utc=at_utc):
            raise NotFoundError(f"Root tale {root_id} has no content row.")

    def _notify_parent_author(
        self, *, parent_id: str, tale_id: str, author_id: str, author_name: str
    ) -> None:
        parent = self._content.get_tale(tale_id=parent_id)
        if parent is None:
            return
        self._notifications.notify(
            recipient_id=parent.author_id,
            notification_type=NotificationType.BRANCH,
            message=branch_message(author_name),
            related_tale_id=tale_id,
            triggered_by_id=author_id,
            triggered_by_name=author_name,
        )

    def _follow_up(
        self,
        *,
        code: str,
        message: str,
        metadata: dict[str, object],
        step: Callable[[], object],
    ) -> None:
        try:
            step()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "rollup.partial_write code=%s error=%s metadata=%s", code, exc, metadata
            )
            self._record(
                code=code,
                message=message,
                metadata={**metadata, "error": str(exc), "error_type": type(exc).__name__},
            )

    def _record(self, *, code: str, message: str, metadata: dict[str, object]) -> None:
        if self._record_anomaly is None:
            return
        try:
            self._record_anomaly(
                scope=ANOMALY_SCOPE,
                code=code,
                severity="warning",
                message=message,
                metadata=metadata,
            )
        except Exception:  # noqa: BLE001
            logger.exception("rollup.anomaly_record_failed code=%s", code)
