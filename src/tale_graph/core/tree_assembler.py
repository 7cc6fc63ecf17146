"""Read models joining topology structure with content-store text."""

from __future__ import annotations

from tale_graph.core.root_resolver import RootResolver
from tale_graph.domain.models import (
    SORT_OPTIONS,
    AuthorGroupings,
    MapNode,
    NodeType,
    Page,
    SortBy,
    StoredTale,
    StoryMap,
    TaleChoice,
    TaleSummary,
    TaleView,
)
from tale_graph.domain.ports import ContentStore, TopologyStore

CHOICE_PREVIEW_CHARS = 100
ROOT_PREVIEW_CHARS = 100
SUMMARY_PREVIEW_CHARS = 100
MAP_LABEL_CHARS = 50
MAX_PAGE_SIZE = 100
TOP_CHOICES = 10


def normalize_page(page: int, page_size: int) -> tuple[int, int]:
    return max(1, page), max(1, min(MAX_PAGE_SIZE, page_size))


def normalize_sort(sort_by: str | None) -> SortBy:
    normalized = (sort_by or "").strip().lower()
    if normalized in SORT_OPTIONS:
        return normalized  # type: ignore[return-value]
    return "popular"


def truncate(text: str, limit: int, *, ellipsis: bool = False) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ("..." if ellipsis else "")


def map_label(title: str | None, content: str) -> str:
    """Title when present, otherwise a short body preview."""
    if title:
        return title
    return truncate(content, MAP_LABEL_CHARS, ellipsis=True)


class TreeAssembler:
    """Side-effect-free assembly of choice lists, root listings, and story maps."""

    def __init__(
        self,
        *,
        topology: TopologyStore,
        content: ContentStore,
        resolver: RootResolver | None = None,
    ) -> None:
        self._topology = topology
        self._content = content
        self._resolver = resolver or RootResolver(topology)

    def list_choices(self, tale_id: str, *, page: int = 1, page_size: int = 10) -> Page[TaleChoice]:
        """Children of a tale ordered by edge votes, paginated in the topology store."""
        page, page_size = normalize_page(page, page_size)
        total = self._topology.count_children(parent_id=tale_id)
        if total == 0:
            return Page(items=[], total_count=0, page=page, page_size=page_size)
        items = self._choices(tale_id, offset=(page - 1) * page_size, limit=page_size)
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def top_choices(self, tale_id: str, *, limit: int = TOP_CHOICES) -> list[TaleChoice]:
        return self._choices(tale_id, offset=0, limit=limit)

    def _choices(self, tale_id: str, *, offset: int, limit: int) -> list[TaleChoice]:
        edges = self._topology.list_children(parent_id=tale_id, offset=offset, limit=limit)
        if not edges:
            return []
        previews = self._content.get_previews(tale_ids=[edge.child_id for edge in edges])
        choices: list[TaleChoice] = []
        for edge in edges:
            preview = previews.get(edge.child_id)
            choices.append(
                TaleChoice(
                    tale_id=edge.child_id,
                    title=(preview.title or "") if preview else "",
                    votes=edge.votes,
                    preview_text=truncate(preview.content, CHOICE_PREVIEW_CHARS)
                    if preview
                    else "",
                )
            )
        return choices

    def list_root_tales(
        self, *, page: int = 1, page_size: int = 10, sort_by: str | None = "popular"
    ) -> Page[TaleView]:
        """Root tales sorted and filtered by content-store aggregates.

        Candidate ids come from the topology store; the total reflects the
        content store, which hides soft-deleted roots the graph still holds.
        """
        page, page_size = normalize_page(page, page_size)
        root_ids = self._topology.list_root_ids()
        if not root_ids:
            return Page(items=[], total_count=0, page=page, page_size=page_size)
        rows, total = self._content.page_roots(
            candidate_ids=root_ids,
            sort_by=normalize_sort(sort_by),
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        items = [
            TaleView(
                tale_id=row.tale_id,
                title=row.title,
                author_name=row.author_name,
                content=truncate(row.content, ROOT_PREVIEW_CHARS),
                author_id=row.author_id,
                created_at_utc=row.created_at_utc,
                series_votes=row.series_votes,
                last_activity_at_utc=row.last_activity_at_utc,
            )
            for row in rows
        ]
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def story_map(self, node_id: str) -> StoryMap:
        """Every node and edge of the tree containing node_id."""
        if self._topology.get_node(node_id=node_id) is None:
            return StoryMap()
        root_id = self._resolver.resolve_or_none(node_id) or node_id
        nodes = self._topology.list_descendants(root_id=root_id)
        if not nodes:
            return StoryMap()
        node_ids = [node.node_id for node in nodes]
        edges = self._topology.list_edges_within(node_ids=node_ids)
        previews = self._content.get_previews(tale_ids=node_ids)
        map_nodes = []
        for node in nodes:
            preview = previews.get(node.node_id)
            label = map_label(preview.title, preview.content) if preview else ""
            map_nodes.append(MapNode(node_id=node.node_id, label=label, node_type=node.node_type))
        return StoryMap(nodes=map_nodes, edges=edges)

    def author_groupings(self, author_id: str) -> AuthorGroupings:
        """Split an author's live tales into roots and branches."""
        tales = self._content.list_tales_by_author(author_id=author_id)
        if not tales:
            return AuthorGroupings(roots=[], branches=[])
        tale_ids = [tale.tale_id for tale in tales]
        counts = self._content.vote_counts(tale_ids=tale_ids)
        types = self._topology.node_types(node_ids=tale_ids)
        roots: list[TaleSummary] = []
        branches: list[TaleSummary] = []
        for tale in tales:
            summary = summarize(tale, votes=counts.get(tale.tale_id, 0))
            if types.get(tale.tale_id, NodeType.BRANCH) is NodeType.ROOT:
                roots.append(summary)
            else:
                branches.append(summary)
        return AuthorGroupings(roots=roots, branches=branches)


def summarize(tale: StoredTale, *, votes: int) -> TaleSummary:
    return TaleSummary(
        tale_id=tale.tale_id,
        title=tale.title,
        content_preview=truncate(tale.content, SUMMARY_PREVIEW_CHARS, ellipsis=True),
        created_at_utc=tale.created_at_utc,
        votes_received=votes,
    )
