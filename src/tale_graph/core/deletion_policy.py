"""Tale and account deletion across the two stores."""

from __future__ import annotations

import logging

from tale_graph.domain.errors import NotFoundError, StructuralConflictError, UnauthorizedError
from tale_graph.domain.models import NIL_USER_ID
from tale_graph.domain.ports import ContentStore, TopologyStore

logger = logging.getLogger(__name__)

TOMBSTONE_CONTENT = "[This chapter has been deleted by the author]"
ANONYMOUS_NAME = "Anonymous"
GHOST_NAME = "Ghost"
HAS_BRANCHES_MESSAGE = "Cannot delete a chapter that has branches. Edit it instead."


class DeletionPolicy:
    """Decides between tombstoning and removing a tale, and anonymizes accounts.

    A tale with children is never removed from the forest, so every other
    node keeps a path to its root. Removal deletes the topology node first and
    the content rows after, so a partial failure leaves an unreachable content
    row rather than a dangling graph node.
    """

    def __init__(self, *, topology: TopologyStore, content: ContentStore) -> None:
        self._topology = topology
        self._content = content

    def delete_permissive(self, *, tale_id: str, caller_id: str) -> bool:
        """Tombstone when the tale has branches, remove it otherwise.

        Returns False when the tale is missing or owned by someone else.
        """
        tale = self._content.get_tale(tale_id=tale_id)
        if tale is None or tale.author_id != caller_id:
            return False
        if self._topology.has_children(node_id=tale_id):
            self._content.tombstone_tale(
                tale_id=tale_id,
                placeholder=TOMBSTONE_CONTENT,
                anonymous_name=ANONYMOUS_NAME,
            )
            logger.info("deletion.tombstoned tale_id=%s", tale_id)
            return True
        self._remove(tale_id)
        return True

    def delete_strict(self, *, tale_id: str, caller_id: str) -> None:
        tale = self._content.get_tale(tale_id=tale_id)
        if tale is None:
            raise NotFoundError(f"Tale {tale_id} was not found.")
        if tale.author_id != caller_id:
            raise UnauthorizedError("Only the author can delete this tale.")
        if self._topology.has_children(node_id=tale_id):
            raise StructuralConflictError(HAS_BRANCHES_MESSAGE)
        self._remove(tale_id)

    def delete_account(self, *, user_id: str) -> None:
        """Anonymize authored tales, then drop votes, notifications, and the profile.

        Tree shape and stored counters are left as they are.
        """
        anonymized = self._content.anonymize_author(
            author_id=user_id, ghost_name=GHOST_NAME, nil_author_id=NIL_USER_ID
        )
        votes = self._content.delete_votes_by_user(user_id=user_id)
        notifications = self._content.delete_notifications_for_user(user_id=user_id)
        self._content.delete_user(user_id=user_id)
        logger.info(
            "deletion.account user_id=%s tales=%s votes=%s notifications=%s",
            user_id,
            anonymized,
            votes,
            notifications,
        )

    def _remove(self, tale_id: str) -> None:
        self._topology.detach_delete(node_id=tale_id)
        self._content.delete_tale_and_votes(tale_id=tale_id)
        logger.info("deletion.removed tale_id=%s", tale_id)
