"""CLI entrypoint for the scheduled trending-score recomputation."""

from __future__ import annotations

import argparse
from pathlib import Path

from tale_graph.adapters.observability import configure_runtime_logging
from tale_graph.adapters.store_factory import create_stores
from tale_graph.config import Settings
from tale_graph.core.clock import utc_now
from tale_graph.core.trending import recompute_trending


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recompute trending scores for every root tale.")
    parser.add_argument("--content-db-path", default="")
    parser.add_argument("--topology-db-path", default="")
    return parser


def _optional_path(raw: str) -> Path | None:
    value = raw.strip()
    return Path(value) if value else None


def main(argv: list[str] | None = None) -> int:
    configure_runtime_logging()
    parsed = build_arg_parser().parse_args(argv)
    settings = Settings.from_env(
        content_db_path=_optional_path(str(parsed.content_db_path)),
        topology_db_path=_optional_path(str(parsed.topology_db_path)),
    )
    stores = create_stores(settings)
    updated = recompute_trending(topology=stores.topology, content=stores.content, now=utc_now())
    print(f"updated {updated} root tales")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
