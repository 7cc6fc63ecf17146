from __future__ import annotations

from pathlib import Path

from tale_graph.adapters.sqlite_content_store import SQLiteContentStore
from tale_graph.adapters.sqlite_topology_store import SQLiteTopologyStore
from tale_graph.core.tree_assembler import TreeAssembler, map_label, normalize_page, normalize_sort
from tale_graph.domain.models import NodeType


def _setup(tmp_path: Path) -> tuple[SQLiteTopologyStore, SQLiteContentStore, TreeAssembler]:
    topology = SQLiteTopologyStore(db_path=tmp_path / "topology.db")
    content = SQLiteContentStore(db_path=tmp_path / "content.db")
    return topology, content, TreeAssembler(topology=topology, content=content)


def _tale(
    content: SQLiteContentStore,
    tale_id: str,
    *,
    title: str | None = None,
    body: str = "Body",
    author_id: str = "alice",
    created: str = "2024-01-01T00:00:00.000000+00:00",
) -> None:
    content.insert_tale(
        tale_id=tale_id,
        author_id=author_id,
        author_name=author_id.title(),
        title=title,
        content=body,
        created_at_utc=created,
    )


def test_normalizers() -> None:
    assert normalize_page(0, 0) == (1, 1)
    assert normalize_page(-3, 500) == (1, 100)
    assert normalize_page(2, 25) == (2, 25)
    assert normalize_sort("TRENDING") == "trending"
    assert normalize_sort("sideways") == "popular"
    assert normalize_sort(None) == "popular"
    assert map_label("Title", "ignored") == "Title"
    assert map_label(None, "x" * 50) == "x" * 50
    assert map_label("", "y" * 51) == "y" * 50 + "..."


def test_list_choices_orders_by_votes_and_previews(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    _tale(content, "root", title="Root")
    _tale(content, "a", title="A", body="a" * 150)
    _tale(content, "b", title=None, body="short")
    topology.create_root(node_id="root")
    topology.create_branch(parent_id="root", child_id="a")
    topology.create_branch(parent_id="root", child_id="b")
    topology.increment_edge_votes(child_id="b")

    page = assembler.list_choices("root", page=1, page_size=10)
    assert page.total_count == 2
    assert [(choice.tale_id, choice.votes) for choice in page.items] == [("b", 1), ("a", 0)]
    assert page.items[0].title == ""
    assert page.items[1].preview_text == "a" * 100


def test_list_choices_paginates_on_topology_side(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    _tale(content, "root")
    topology.create_root(node_id="root")
    for index in range(5):
        _tale(content, f"c{index}")
        topology.create_branch(parent_id="root", child_id=f"c{index}")

    second = assembler.list_choices("root", page=2, page_size=2)
    assert [choice.tale_id for choice in second.items] == ["c2", "c3"]
    assert second.total_count == 5
    empty = assembler.list_choices("c0", page=1, page_size=10)
    assert empty.items == [] and empty.total_count == 0


def test_list_root_tales_hides_soft_deleted_roots(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    _tale(content, "r1", body="r" * 120, created="2024-01-01T00:00:00.000000+00:00")
    _tale(content, "r2", created="2024-01-02T00:00:00.000000+00:00")
    _tale(content, "r3", created="2024-01-03T00:00:00.000000+00:00")
    for root in ("r1", "r2", "r3"):
        topology.create_root(node_id=root)
    content.tombstone_tale(tale_id="r3", placeholder="[gone]", anonymous_name="Anonymous")
    content.bump_series_votes(tale_id="r1", at_utc="2024-01-04T00:00:00.000000+00:00")

    page = assembler.list_root_tales(page=1, page_size=10, sort_by="bogus")
    assert page.total_count == 2
    assert [view.tale_id for view in page.items] == ["r1", "r2"]
    assert page.items[0].content == "r" * 100
    assert page.items[0].series_votes == 1

    newest = assembler.list_root_tales(sort_by="newest")
    assert [view.tale_id for view in newest.items] == ["r2", "r1"]


def test_story_map_from_any_node_covers_whole_tree(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    _tale(content, "root", title="Root")
    _tale(content, "mid", body="m" * 60)
    _tale(content, "leaf", title="Leaf")
    _tale(content, "other", title="Other")
    topology.create_root(node_id="root")
    topology.create_branch(parent_id="root", child_id="mid")
    topology.create_branch(parent_id="mid", child_id="leaf")
    topology.create_root(node_id="other")

    story_map = assembler.story_map("leaf")
    labels = {node.node_id: node.label for node in story_map.nodes}
    assert labels == {"root": "Root", "mid": "m" * 50 + "...", "leaf": "Leaf"}
    types = {node.node_id: node.node_type for node in story_map.nodes}
    assert types["root"] is NodeType.ROOT
    assert {(edge.parent_id, edge.child_id) for edge in story_map.edges} == {
        ("root", "mid"),
        ("mid", "leaf"),
    }
    assert assembler.story_map("root") == assembler.story_map("mid")


def test_story_map_for_absent_or_detached_nodes(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    assert assembler.story_map("nowhere").nodes == []

    _tale(content, "root")
    _tale(content, "mid")
    _tale(content, "leaf", title="Leaf")
    topology.create_root(node_id="root")
    topology.create_branch(parent_id="root", child_id="mid")
    topology.create_branch(parent_id="mid", child_id="leaf")
    topology.detach_delete(node_id="mid")

    detached = assembler.story_map("leaf")
    assert [node.node_id for node in detached.nodes] == ["leaf"]
    assert detached.edges == []


def test_author_groupings_split_roots_and_branches(tmp_path: Path) -> None:
    topology, content, assembler = _setup(tmp_path)
    _tale(content, "root", author_id="alice", body="x" * 120)
    _tale(content, "branch", author_id="alice")
    _tale(content, "foreign", author_id="bob")
    topology.create_root(node_id="root")
    topology.create_branch(parent_id="root", child_id="branch")
    topology.create_branch(parent_id="root", child_id="foreign")
    content.insert_vote(user_id="carol", tale_id="branch", voted_at_utc="x")

    groupings = assembler.author_groupings("alice")
    assert [item.tale_id for item in groupings.roots] == ["root"]
    assert [item.tale_id for item in groupings.branches] == ["branch"]
    assert groupings.roots[0].content_preview == "x" * 100 + "..."
    assert groupings.total_tales == 2
    assert groupings.total_votes == 1
    assert assembler.author_groupings("nobody").total_tales == 0
