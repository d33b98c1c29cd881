"""Category / neighborhood quota balancing and geographic spread."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from tripcurator import config
from tripcurator.geo import extract_neighborhood_keywords, haversine_m, split_multi_regions
from tripcurator.logsetup import get_logger
from tripcurator.schemas import Category, Place

logger = get_logger(__name__)


def fused_score(
    place: Place,
    *,
    rating_weight: float = config.RATING_WEIGHT,
    distance_weight: float = config.DISTANCE_WEIGHT,
) -> float:
    """Base/LLM score plus small rating and proximity bonuses.

    With the default weights the two bonuses add up to less than one point,
    so positional scores one apart never swap.
    """
    total = place.score or 0.0
    total += (place.rating or 0.0) * rating_weight
    if place.distance_meters is not None:
        total += distance_weight / (max(place.distance_meters, 0) + 50)
    return total


def rebalance_by_category(
    candidates: Sequence[Place],
    selected: Sequence[Category],
    *,
    min_per_category: int = config.MIN_PER_CATEGORY,
    top_per_category: int = config.TOP_PER_CATEGORY,
    total_cap: Optional[int] = config.MAX_LIST_RESULTS,
) -> Tuple[List[Place], List[Place]]:
    """Return ``(top_picks, top_picks + body)`` with the combined list capped.

    Top picks are taken first and count toward each category's minimum. A
    round-robin pass then lifts every category to the minimum (or until its
    pool runs dry); the rest is filled by fused score while avoiding two
    consecutive places of the same category where possible.
    """
    cats: List[Category] = []
    for cat in selected:
        if cat not in cats:
            cats.append(cat)

    seen: set = set()
    pools: Dict[Category, List[Place]] = {cat: [] for cat in cats}
    for place in candidates:
        if place.category not in pools or place.id in seen:
            continue
        seen.add(place.id)
        pools[place.category].append(place)
    for cat in cats:
        pools[cat].sort(key=fused_score, reverse=True)

    def _full(count: int) -> bool:
        return total_cap is not None and count >= total_cap

    used: set = set()
    counts: Dict[Category, int] = {cat: 0 for cat in cats}
    top_picks: List[Place] = []
    for cat in cats:
        take = min(top_per_category, len(pools[cat]))
        for place in pools[cat][:take]:
            if _full(len(top_picks)):
                break
            used.add(place.id)
            top_picks.append(place)
            counts[cat] += 1
        pools[cat] = pools[cat][take:]

    body: List[Place] = []

    def _can_take(cat: Category) -> bool:
        return counts[cat] < min_per_category and bool(pools[cat])

    while any(_can_take(cat) for cat in cats) and not _full(len(top_picks) + len(body)):
        for cat in cats:
            if _full(len(top_picks) + len(body)):
                break
            if not _can_take(cat):
                continue
            place = pools[cat].pop(0)
            if place.id in used:
                continue
            used.add(place.id)
            body.append(place)
            counts[cat] += 1

    remaining = sorted(
        (p for cat in cats for p in pools[cat]),
        key=fused_score,
        reverse=True,
    )
    last_cat: Optional[Category] = body[-1].category if body else (top_picks[-1].category if top_picks else None)

    for place in remaining:
        if _full(len(top_picks) + len(body)):
            break
        if place.id in used or place.category == last_cat:
            continue
        used.add(place.id)
        body.append(place)
        last_cat = place.category

    for place in remaining:
        if _full(len(top_picks) + len(body)):
            break
        if place.id in used:
            continue
        used.add(place.id)
        body.append(place)

    combined = top_picks + body
    if total_cap is not None:
        combined = combined[:total_cap]
    logger.debug("Category rebalance: %d top picks, %d total", len(top_picks), len(combined))
    return top_picks, combined


def rebalance_by_neighborhood(
    ordered: Sequence[Place],
    region_text: str,
    *,
    min_per_neighborhood: int = config.MIN_PER_NEIGHBORHOOD,
    total_cap: int = config.MAX_LIST_RESULTS,
) -> List[Place]:
    if not ordered:
        return []
    # "광주 동명동, 상무지구" -> ["동명동", "상무지구"]
    keywords = extract_neighborhood_keywords(", ".join(split_multi_regions(region_text)))
    if not keywords:
        return list(ordered)

    buckets: Dict[str, List[Place]] = {kw: [] for kw in keywords}
    for place in ordered:
        address = place.address or ""
        match = next((kw for kw in keywords if kw in address), None)
        if match is not None:
            buckets[match].append(place)

    picked: Dict[str, Place] = {}
    for kw in keywords:
        for place in buckets[kw][:min_per_neighborhood]:
            if len(picked) >= total_cap:
                break
            picked.setdefault(place.id, place)

    for place in ordered:
        if len(picked) >= total_cap:
            break
        picked.setdefault(place.id, place)

    return list(picked.values())


def spread_out(
    ordered: Sequence[Place],
    selected: Sequence[Category],
    *,
    min_per_category: int = config.MIN_PER_CATEGORY,
    min_distance_meters: float = config.MIN_DISTANCE_BETWEEN_PLACES_METERS,
) -> List[Place]:
    """Greedily drop places closer than ``min_distance_meters`` to an accepted one.

    A selected category still below ``min_per_category`` accepts regardless
    of distance.
    """
    accepted: List[Place] = []
    counts: Dict[Category, int] = {}
    for place in ordered:
        count = counts.get(place.category, 0)
        needed = min_per_category if place.category in selected else 0
        too_close = any(
            haversine_m(place.lat, place.lng, other.lat, other.lng) < min_distance_meters
            for other in accepted
        )
        if too_close and count >= needed:
            continue
        accepted.append(place)
        counts[place.category] = count + 1
    return accepted


def backfill_to_minimum(filtered: Sequence[Place], source: Sequence[Place], minimum: int) -> List[Place]:
    """Top up ``filtered`` from ``source`` (skipping present ids) until ``minimum``."""
    result = list(filtered)
    if len(result) >= minimum:
        return result
    present = {p.id for p in result}
    for place in source:
        if len(result) >= minimum:
            break
        if place.id in present:
            continue
        present.add(place.id)
        result.append(place)
    return result
