"""Store-agnostic tale operations exposed to the HTTP layer and scripts."""

from __future__ import annotations

import logging
from uuid import uuid4

from tale_graph.core.clock import Clock, to_utc_iso, utc_now
from tale_graph.core.deletion_policy import DeletionPolicy
from tale_graph.core.rollup import RollupAggregator
from tale_graph.core.root_resolver import RootResolver
from tale_graph.core.tree_assembler import TreeAssembler
from tale_graph.domain.errors import NotFoundError, UnauthorizedError
from tale_graph.domain.models import Page, StoredTale, StoryMap, TaleChoice, TaleView
from tale_graph.domain.ports import (
    AnomalyRecorder,
    ContentStore,
    NotificationSink,
    TopologyStore,
)

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


class TaleService:
    """Create, read, vote on, search, edit, and delete tales."""

    def __init__(
        self,
        *,
        topology: TopologyStore,
        content: ContentStore,
        notifications: NotificationSink,
        record_anomaly: AnomalyRecorder | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._topology = topology
        self._content = content
        self._record_anomaly = record_anomaly
        self._clock = clock
        resolver = RootResolver(topology)
        self.rollup = RollupAggregator(
            topology=topology,
            content=content,
            notifications=notifications,
            resolver=resolver,
            record_anomaly=record_anomaly,
        )
        self.assembler = TreeAssembler(topology=topology, content=content, resolver=resolver)
        self.deletion = DeletionPolicy(topology=topology, content=content)

    def create_tale(
        self,
        *,
        author_id: str,
        author_name: str,
        content: str,
        title: str | None = None,
        parent_tale_id: str | None = None,
    ) -> str:
        """Write the content row, then place the tale in the forest.

        When the topology write fails the new content row is removed again so
        that no unreachable tale is left behind, and the error propagates.
        """
        if parent_tale_id is not None:
            parent = self._content.get_tale(tale_id=parent_tale_id)
            if parent is None or self._topology.get_node(node_id=parent_tale_id) is None:
                raise NotFoundError(f"Parent tale {parent_tale_id} was not found.")

        now = self._clock()
        tale = self._content.insert_tale(
            tale_id=str(uuid4()),
            author_id=author_id,
            author_name=author_name,
            title=title,
            content=content,
            created_at_utc=to_utc_iso(now),
        )
        try:
            self.rollup.on_branch_created(
                tale_id=tale.tale_id,
                parent_id=parent_tale_id,
                author_id=author_id,
                author_name=author_name,
                at=now,
            )
        except Exception as exc:
            self._compensate_create(tale.tale_id, parent_tale_id, exc)
            raise
        logger.info(
            "tale.created tale_id=%s parent_id=%s author_id=%s",
            tale.tale_id,
            parent_tale_id,
            author_id,
        )
        return tale.tale_id

    def get_tale(self, tale_id: str, *, viewer_id: str | None = None) -> TaleView:
        tale = self._content.get_tale(tale_id=tale_id)
        if tale is None:
            raise NotFoundError(f"Tale {tale_id} was not found.")
        viewer_has_voted = viewer_id is not None and self._content.has_voted(
            user_id=viewer_id, tale_id=tale_id
        )
        return tale_view(
            tale,
            vote_count=self._content.count_votes(tale_id=tale_id),
            viewer_has_voted=viewer_has_voted,
            choices=self.assembler.top_choices(tale_id),
        )

    def list_root_tales(
        self, *, page: int = 1, page_size: int = 10, sort_by: str | None = "popular"
    ) -> Page[TaleView]:
        return self.assembler.list_root_tales(page=page, page_size=page_size, sort_by=sort_by)

    def list_choices(
        self, tale_id: str, *, page: int = 1, page_size: int = 10
    ) -> Page[TaleChoice]:
        return self.assembler.list_choices(tale_id, page=page, page_size=page_size)

    def vote(self, tale_id: str, *, voter_id: str) -> bool:
        """Cast one vote; False when the voter already voted for this tale."""
        tale = self._content.get_tale(tale_id=tale_id)
        if tale is None:
            raise NotFoundError(f"Tale {tale_id} was not found.")
        return self.rollup.on_vote(
            tale_id=tale_id,
            author_id=tale.author_id,
            voter_id=voter_id,
            at=self._clock(),
        )

    def get_story_map(self, node_id: str) -> StoryMap:
        return self.assembler.story_map(node_id)

    def search_tales(self, text: str) -> list[TaleView]:
        query = text.strip()
        if not query:
            return []
        matches = self._content.search_tales(text=query, limit=SEARCH_LIMIT)
        return [tale_view(tale) for tale in matches]

    def delete_tale(self, tale_id: str, *, caller_id: str) -> bool:
        return self.deletion.delete_permissive(tale_id=tale_id, caller_id=caller_id)

    def delete_own_tale(self, tale_id: str, *, caller_id: str) -> None:
        self.deletion.delete_strict(tale_id=tale_id, caller_id=caller_id)

    def update_tale(
        self,
        tale_id: str,
        *,
        caller_id: str,
        title: str | None = None,
        content: str | None = None,
    ) -> TaleView:
        """Edit title and/or body; only the author may do so."""
        tale = self._content.get_tale(tale_id=tale_id)
        if tale is None:
            raise NotFoundError(f"Tale {tale_id} was not found.")
        if tale.author_id != caller_id:
            raise UnauthorizedError("You are not authorized to update this tale.")
        updated = self._content.update_tale_content(tale_id=tale_id, title=title, content=content)
        if updated is None:
            raise NotFoundError(f"Tale {tale_id} was not found.")
        logger.info("tale.updated tale_id=%s", tale_id)
        return tale_view(updated)

    def _compensate_create(
        self, tale_id: str, parent_id: str | None, error: Exception
    ) -> None:
        logger.warning(
            "tale.topology_write_failed tale_id=%s parent_id=%s error=%s",
            tale_id,
            parent_id,
            error,
        )
        try:
            self._content.delete_tale_and_votes(tale_id=tale_id)
        except Exception:  # noqa: BLE001
            logger.exception("tale.compensation_failed tale_id=%s", tale_id)
        if self._record_anomaly is None:
            return
        try:
            self._record_anomaly(
                scope="rollup",
                code="topology_write_failed",
                severity="warning",
                message="Tale content was written but the topology write failed.",
                metadata={
                    "tale_id": tale_id,
                    "parent_id": parent_id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )
        except Exception:  # noqa: BLE001
            logger.exception("tale.anomaly_record_failed tale_id=%s", tale_id)


def tale_view(
    tale: StoredTale,
    *,
    vote_count: int = 0,
    viewer_has_voted: bool = False,
    choices: list[TaleChoice] | None = None,
) -> TaleView:
    return TaleView(
        tale_id=tale.tale_id,
        title=tale.title,
        author_name=tale.author_name,
        content=tale.content,
        author_id=tale.author_id,
        created_at_utc=tale.created_at_utc,
        vote_count=vote_count,
        viewer_has_voted=viewer_has_voted,
        series_votes=tale.series_votes,
        last_activity_at_utc=tale.last_activity_at_utc,
        choices=choices or [],
    )
