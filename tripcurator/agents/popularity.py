"""Secondary popularity signal from blog-post hit counts."""
from __future__ import annotations

import math
from typing import List, Optional, Protocol, Sequence

from tripcurator.logsetup import get_logger
from tripcurator.schemas import Place

logger = get_logger(__name__)


class PopularityPort(Protocol):
    async def blog_count(self, query: str) -> Optional[int]: ...


def popularity_score(count: int) -> float:
    return math.log10(count + 1)


def popularity_query(place_name: str, region_hint: Optional[str]) -> str:
    hint = (region_hint or "").strip()
    return f"{hint} {place_name}".strip()


async def enrich_with_popularity(
    places: Sequence[Place],
    lookup: PopularityPort,
    region_hint: Optional[str] = None,
) -> List[Place]:
    """Attach count and log score to each place, in order.

    Lookups run one at a time; a missing count leaves the place untouched.
    """
    enriched: List[Place] = []
    hits = 0
    for place in places:
        count = await lookup.blog_count(popularity_query(place.name, region_hint))
        if count is None:
            enriched.append(place)
            continue
        hits += 1
        enriched.append(
            place.model_copy(update={"popularity_count": count, "popularity_score": popularity_score(count)})
        )
    logger.info("Popularity attached to %d/%d places", hits, len(enriched))
    return enriched


def pick_top_by_popularity(candidates: Sequence[Place], n: int) -> List[Place]:
    """Highest score first, then highest count, then nearest."""
    ranked = sorted(
        candidates,
        key=lambda p: (
            -(p.popularity_score or 0.0),
            -(p.popularity_count or 0),
            p.distance_meters if p.distance_meters is not None else float("inf"),
        ),
    )
    return ranked[: max(0, n)]
