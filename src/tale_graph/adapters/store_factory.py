"""Factory wiring the two stores and the anomaly log from runtime settings."""

from __future__ import annotations

from dataclasses import dataclass

from tale_graph.adapters.sqlite_anomaly_store import SQLiteAnomalyStore
from tale_graph.adapters.sqlite_content_store import SQLiteContentStore
from tale_graph.adapters.sqlite_topology_store import SQLiteTopologyStore
from tale_graph.config import Settings


@dataclass(frozen=True)
class StoreBundle:
    """Independent topology and content stores plus the anomaly log.

    Anomalies live beside the content tables so that a failing topology store
    never takes the breadcrumbs down with it.
    """

    topology: SQLiteTopologyStore
    content: SQLiteContentStore
    anomalies: SQLiteAnomalyStore


def create_stores(settings: Settings) -> StoreBundle:
    if settings.content_db_path.resolve() == settings.topology_db_path.resolve():
        raise RuntimeError(
            "TALE_GRAPH_CONTENT_DB_PATH and TALE_GRAPH_TOPOLOGY_DB_PATH must point at "
            "different database files."
        )
    return StoreBundle(
        topology=SQLiteTopologyStore(db_path=settings.topology_db_path),
        content=SQLiteContentStore(db_path=settings.content_db_path),
        anomalies=SQLiteAnomalyStore(db_path=settings.content_db_path),
    )
