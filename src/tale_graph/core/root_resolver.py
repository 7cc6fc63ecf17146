"""Resolve the ROOT node of the tree that contains any node."""

from __future__ import annotations

from tale_graph.domain.errors import NotFoundError
from tale_graph.domain.models import NodeType
from tale_graph.domain.ports import TopologyStore


class RootResolver:
    """Read-only upward lookup against the topology store.

    A node typed ROOT resolves to itself with a single key lookup. Any other
    node is resolved with one unbounded-depth path query over the incoming
    edges, never with a hop-by-hop walk from application code.
    """

    def __init__(self, topology: TopologyStore) -> None:
        self._topology = topology

    def resolve_or_none(self, node_id: str) -> str | None:
        node = self._topology.get_node(node_id=node_id)
        if node is None:
            return None
        if node.node_type is NodeType.ROOT:
            return node.node_id
        return self._topology.find_root(node_id=node_id)

    def resolve(self, node_id: str) -> str:
        """Return the root id, raising NotFoundError for absent nodes or broken chains."""
        root_id = self.resolve_or_none(node_id)
        if root_id is None:
            raise NotFoundError(f"No root found for tale {node_id}.")
        return root_id
