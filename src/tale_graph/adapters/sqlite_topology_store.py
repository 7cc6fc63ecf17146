"""SQLite-backed topology store for the story forest (nodes and edges only)."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path

from tale_graph.domain.errors import TopologyConflictError
from tale_graph.domain.models import NodeType, TopologyEdge, TopologyNode


class SQLiteTopologyStore:
    """Persist tree structure and per-edge vote tallies in its own database."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                    node_id TEXT PRIMARY KEY,
                    node_type TEXT NOT NULL CHECK (node_type IN ('ROOT', 'BRANCH'))
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS edges (
                    child_id TEXT PRIMARY KEY,
                    parent_id TEXT NOT NULL,
                    votes INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0),
                    FOREIGN KEY (parent_id) REFERENCES nodes(node_id),
                    FOREIGN KEY (child_id) REFERENCES nodes(node_id)
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_edges_parent_votes
                ON edges(parent_id, votes DESC)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_nodes_type
                ON nodes(node_type)
                """
            )

    @staticmethod
    def _stage_ids(connection: sqlite3.Connection, node_ids: Sequence[str]) -> None:
        """Load an id set into a per-connection temp table for set joins."""
        connection.execute("CREATE TEMP TABLE IF NOT EXISTS staged_ids (node_id TEXT PRIMARY KEY)")
        connection.execute("DELETE FROM staged_ids")
        connection.executemany(
            "INSERT OR IGNORE INTO staged_ids (node_id) VALUES (?)",
            [(node_id,) for node_id in node_ids],
        )

    def ping(self) -> None:
        """Run a trivial query; raises sqlite3.Error when the database is unusable."""
        with self._connect() as connection:
            connection.execute("SELECT 1").fetchone()

    def create_root(self, *, node_id: str) -> None:
        """Insert a ROOT node; a root never has an incoming edge."""
        try:
            with self._connect() as connection:
                connection.execute(
                    "INSERT INTO nodes (node_id, node_type) VALUES (?, ?)",
                    (node_id, NodeType.ROOT.value),
                )
        except sqlite3.IntegrityError as exc:
            raise TopologyConflictError(f"Node {node_id} already exists.") from exc

    def create_branch(self, *, parent_id: str, child_id: str) -> bool:
        """Insert a BRANCH node and its incoming edge; return False without a parent."""
        try:
            with self._connect() as connection:
                parent = connection.execute(
                    "SELECT 1 FROM nodes WHERE node_id = ?",
                    (parent_id,),
                ).fetchone()
                if parent is None:
                    return False
                connection.execute(
                    "INSERT INTO nodes (node_id, node_type) VALUES (?, ?)",
                    (child_id, NodeType.BRANCH.value),
                )
                connection.execute(
                    "INSERT INTO edges (child_id, parent_id, votes) VALUES (?, ?, 0)",
                    (child_id, parent_id),
                )
        except sqlite3.IntegrityError as exc:
            raise TopologyConflictError(
                f"Node {child_id} already exists or already has a parent."
            ) from exc
        return True

    def get_node(self, *, node_id: str) -> TopologyNode | None:
        """Load one node and its type tag."""
        with self._connect() as connection:
            row = connection.execute(
                "SELECT node_id, node_type FROM nodes WHERE node_id = ?",
                (node_id,),
            ).fetchone()
        if row is None:
            return None
        return TopologyNode(node_id=str(row["node_id"]), node_type=NodeType(row["node_type"]))

    def node_types(self, *, node_ids: Sequence[str]) -> dict[str, NodeType]:
        """Return type tags for the known subset of node_ids."""
        if not node_ids:
            return {}
        with self._connect() as connection:
            self._stage_ids(connection, node_ids)
            rows = connection.execute(
                """
                SELECT n.node_id, n.node_type
                FROM nodes n
                JOIN staged_ids s ON s.node_id = n.node_id
                """
            ).fetchall()
        return {str(row["node_id"]): NodeType(row["node_type"]) for row in rows}

    def find_root(self, *, node_id: str) -> str | None:
        """Walk incoming edges upward in one recursive query to the ROOT node."""
        with self._connect() as connection:
            row = connection.execute(
                """
                WITH RECURSIVE ancestry(node_id) AS (
                    SELECT ?
                    UNION
                    SELECT e.parent_id
                    FROM edges e
                    JOIN ancestry a ON e.child_id = a.node_id
                )
                SELECT n.node_id
                FROM ancestry a
                JOIN nodes n ON n.node_id = a.node_id
                WHERE n.node_type = 'ROOT'
                LIMIT 1
                """,
                (node_id,),
            ).fetchone()
        if row is None:
            return None
        return str(row["node_id"])

    def increment_edge_votes(self, *, child_id: str) -> bool:
        """Atomically add one vote to the edge whose target is child_id."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE edges SET votes = votes + 1 WHERE child_id = ?",
                (child_id,),
            )
        return cursor.rowcount > 0

    def get_incoming_edge(self, *, child_id: str) -> TopologyEdge | None:
        """Load the single incoming edge of a BRANCH node."""
        with self._connect() as connection:
            row = connection.execute(
                "SELECT parent_id, child_id, votes FROM edges WHERE child_id = ?",
                (child_id,),
            ).fetchone()
        if row is None:
            return None
        return self._edge_from_row(row)

    def count_children(self, *, parent_id: str) -> int:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT COUNT(*) AS total FROM edges WHERE parent_id = ?",
                (parent_id,),
            ).fetchone()
        assert row is not None
        return int(row["total"])

    def has_children(self, *, node_id: str) -> bool:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT 1 FROM edges WHERE parent_id = ? LIMIT 1",
                (node_id,),
            ).fetchone()
        return row is not None

    def list_children(self, *, parent_id: str, offset: int, limit: int) -> list[TopologyEdge]:
        """Return outgoing edges ordered by vote tally, oldest branch first on ties."""
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT parent_id, child_id, votes
                FROM edges
                WHERE parent_id = ?
                ORDER BY votes DESC, rowid ASC
                LIMIT ? OFFSET ?
                """,
                (parent_id, limit, offset),
            ).fetchall()
        return [self._edge_from_row(row) for row in rows]

    def list_root_ids(self) -> list[str]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT node_id FROM nodes WHERE node_type = 'ROOT' ORDER BY rowid ASC"
            ).fetchall()
        return [str(row["node_id"]) for row in rows]

    def count_roots(self) -> int:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT COUNT(*) AS total FROM nodes WHERE node_type = 'ROOT'"
            ).fetchone()
        assert row is not None
        return int(row["total"])

    def list_descendants(self, *, root_id: str) -> list[TopologyNode]:
        """Return root_id and every node beneath it, breadth first."""
        with self._connect() as connection:
            rows = connection.execute(
                """
                WITH RECURSIVE subtree(node_id) AS (
                    SELECT ?
                    UNION
                    SELECT e.child_id
                    FROM edges e
                    JOIN subtree s ON e.parent_id = s.node_id
                )
                SELECT n.node_id, n.node_type
                FROM subtree s
                JOIN nodes n ON n.node_id = s.node_id
                """,
                (root_id,),
            ).fetchall()
        return [
            TopologyNode(node_id=str(row["node_id"]), node_type=NodeType(row["node_type"]))
            for row in rows
        ]

    def list_edges_within(self, *, node_ids: Sequence[str]) -> list[TopologyEdge]:
        """Return edges whose parent and child both belong to node_ids."""
        if not node_ids:
            return []
        with self._connect() as connection:
            self._stage_ids(connection, node_ids)
            rows = connection.execute(
                """
                SELECT e.parent_id, e.child_id, e.votes
                FROM edges e
                JOIN staged_ids p ON p.node_id = e.parent_id
                JOIN staged_ids c ON c.node_id = e.child_id
                ORDER BY e.rowid ASC
                """
            ).fetchall()
        return [self._edge_from_row(row) for row in rows]

    def detach_delete(self, *, node_id: str) -> bool:
        """Delete a node together with every edge touching it."""
        with self._connect() as connection:
            connection.execute(
                "DELETE FROM edges WHERE child_id = ? OR parent_id = ?",
                (node_id, node_id),
            )
            cursor = connection.execute("DELETE FROM nodes WHERE node_id = ?", (node_id,))
        return cursor.rowcount > 0

    @staticmethod
    def _edge_from_row(row: sqlite3.Row) -> TopologyEdge:
        return TopologyEdge(
            parent_id=str(row["parent_id"]),
            child_id=str(row["child_id"]),
            votes=int(row["votes"]),
        )
