"""Batch recomputation of root trending scores."""

from __future__ import annotations

import logging
from datetime import datetime

from tale_graph.core.clock import parse_utc_iso, to_utc_iso
from tale_graph.domain.ports import ContentStore, TopologyStore

logger = logging.getLogger(__name__)

GRAVITY = 1.8
AGE_OFFSET_HOURS = 2.0


def trending_score(series_votes: int, age_hours: float) -> float:
    """Votes decayed by age: votes / (hours + 2) ** 1.8."""
    return series_votes / (max(0.0, age_hours) + AGE_OFFSET_HOURS) ** GRAVITY


def recompute_trending(*, topology: TopologyStore, content: ContentStore, now: datetime) -> int:
    """Score every root with a content row and persist it; returns the number updated."""
    root_ids = topology.list_root_ids()
    if not root_ids:
        return 0
    now = parse_utc_iso(to_utc_iso(now))
    updated = 0
    for item in content.list_trending_inputs(tale_ids=root_ids):
        age_hours = (now - parse_utc_iso(item.created_at_utc)).total_seconds() / 3600.0
        score = trending_score(item.series_votes, age_hours)
        if content.set_trending_score(tale_id=item.tale_id, score=score):
            updated += 1
    logger.info("trending.recomputed roots=%s updated=%s", len(root_ids), updated)
    return updated
