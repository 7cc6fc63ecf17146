"""CLI entrypoint for serving the tale_graph HTTP API."""

from __future__ import annotations

import argparse
import os

import uvicorn

from tale_graph.adapters.observability import configure_runtime_logging


def build_arg_parser() -> argparse.ArgumentParser:
    """Create CLI args for the API server process."""
    parser = argparse.ArgumentParser(description="Serve tale_graph API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument(
        "--content-db-path",
        default="",
        help="SQLite path for tales, votes, and profiles (default: work/local/content.db).",
    )
    parser.add_argument(
        "--topology-db-path",
        default="",
        help="SQLite path for the story forest (default: work/local/topology.db).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI flags and start uvicorn with the app module path."""
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    content_db_path = str(parsed.content_db_path).strip()
    if content_db_path:
        os.environ["TALE_GRAPH_CONTENT_DB_PATH"] = content_db_path
    topology_db_path = str(parsed.topology_db_path).strip()
    if topology_db_path:
        os.environ["TALE_GRAPH_TOPOLOGY_DB_PATH"] = topology_db_path
    uvicorn.run(
        "tale_graph.api.app:app",
        host=str(parsed.host),
        port=int(parsed.port),
        reload=bool(parsed.reload),
    )


if __name__ == "__main__":
    main()
