"""Profile reads and edits, plus account removal."""

from __future__ import annotations

import logging

from tale_graph.core.clock import Clock, to_utc_iso, utc_now
from tale_graph.core.deletion_policy import DeletionPolicy
from tale_graph.core.tree_assembler import TreeAssembler, summarize
from tale_graph.domain.errors import NotFoundError
from tale_graph.domain.models import (
    PublicUserProfile,
    StoredUser,
    TaleSummary,
    UserProfile,
)
from tale_graph.domain.ports import ContentStore, TopologyStore

logger = logging.getLogger(__name__)

DEFAULT_AVATAR_STYLE = "initials"
USER_SEARCH_LIMIT = 5


class UserService:
    def __init__(
        self,
        *,
        topology: TopologyStore,
        content: ContentStore,
        clock: Clock = utc_now,
    ) -> None:
        self._content = content
        self._clock = clock
        self._assembler = TreeAssembler(topology=topology, content=content)
        self._deletion = DeletionPolicy(topology=topology, content=content)

    def ensure_profile(self, *, user_id: str, display_name: str) -> StoredUser:
        return self._content.ensure_user(user_id=user_id, display_name=display_name)

    def get_profile(self, user_id: str, *, fallback_name: str) -> UserProfile:
        """Private profile with totals and the author's roots and branches.

        Users without a stored profile row still get a view built from the
        fallback name and the current time.
        """
        user = self._content.get_user(user_id=user_id)
        groupings = self._assembler.author_groupings(user_id)
        return UserProfile(
            user_id=user_id,
            username=user.display_name if user else fallback_name,
            bio=user.bio if user else None,
            avatar_style=user.avatar_style if user else DEFAULT_AVATAR_STYLE,
            joined_at_utc=user.created_at_utc if user else to_utc_iso(self._clock()),
            total_tales_written=groupings.total_tales,
            total_votes_received=groupings.total_votes,
            my_roots=groupings.roots,
            my_branches=groupings.branches,
        )

    def update_profile(
        self,
        user_id: str,
        *,
        display_name: str | None = None,
        bio: str | None = None,
        avatar_style: str | None = None,
    ) -> StoredUser:
        """Apply the provided fields; a new display name is copied onto live tales."""
        user = self._content.update_user(
            user_id=user_id,
            display_name=display_name,
            bio=bio,
            avatar_style=avatar_style,
        )
        if user is None:
            raise NotFoundError("User profile not found. Please try logging out and back in.")
        if display_name is not None:
            renamed = self._content.rename_author(author_id=user_id, author_name=display_name)
            logger.info("user.renamed user_id=%s tales=%s", user_id, renamed)
        return user

    def delete_account(self, user_id: str) -> None:
        self._deletion.delete_account(user_id=user_id)

    def get_public_profile(self, user_id: str) -> PublicUserProfile:
        user = self._content.get_user(user_id=user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} was not found.")
        tales = self._content.list_tales_by_author(author_id=user_id)
        return PublicUserProfile(
            user_id=user.user_id,
            display_name=user.display_name,
            bio=user.bio,
            avatar_style=user.avatar_style,
            tale_count=len(tales),
            vote_count=self._content.count_votes_received(author_id=user_id),
            joined_at_utc=user.created_at_utc,
        )

    def list_user_tales(self, user_id: str) -> list[TaleSummary]:
        tales = self._content.list_tales_by_author(author_id=user_id)
        if not tales:
            return []
        counts = self._content.vote_counts(tale_ids=[tale.tale_id for tale in tales])
        return [summarize(tale, votes=counts.get(tale.tale_id, 0)) for tale in tales]

    def search_users(self, text: str) -> list[StoredUser]:
        query = text.strip()
        if not query:
            return []
        return self._content.search_users(text=query, limit=USER_SEARCH_LIMIT)
