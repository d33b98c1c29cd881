"""Geometry and region-text helpers shared by the fetch and rebalance stages."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from tripcurator import config

EARTH_RADIUS_M = 6_371_000.0

_REGION_SEPARATORS = re.compile(r"[,·/;]")

# Korean administrative suffixes (dong, eup, myeon, ri, gu, ga, ro, gil, town).
FINE_REGION_SUFFIXES: Tuple[str, ...] = ("동", "읍", "면", "리", "구", "가", "로", "길", "타운")


@dataclass(frozen=True)
class SearchCenter:
    lat: float
    lng: float


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    r_lat1 = math.radians(lat1)
    r_lat2 = math.radians(lat2)

    h = math.sin(d_lat / 2) ** 2 + math.cos(r_lat1) * math.cos(r_lat2) * math.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def split_region_tokens(region_text: str) -> List[str]:
    return [t.strip() for t in _REGION_SEPARATORS.split(region_text or "") if t.strip()]


def has_multi_regions(region_text: str) -> bool:
    return bool(_REGION_SEPARATORS.search(region_text or ""))


def split_multi_regions(region_text: str) -> List[str]:
    """Expand "광주 동명동, 상무동" into ["광주 동명동", "광주 상무동"].

    When the first token carries a "city district" pair, bare later tokens
    inherit the city as a prefix. Otherwise tokens are returned as-is.
    """
    tokens = split_region_tokens(region_text)
    if len(tokens) <= 1:
        return tokens

    first_parts = tokens[0].split()
    if len(first_parts) < 2:
        return tokens
    city_hint = first_parts[0]

    expanded = [tokens[0]]
    for token in tokens[1:]:
        expanded.append(token if " " in token else f"{city_hint} {token}")
    return expanded


def extract_neighborhood_keywords(region_text: str) -> List[str]:
    """Second word of every multi-word token, de-duplicated in input order."""
    keywords: List[str] = []
    for token in split_region_tokens(region_text):
        parts = token.split()
        if len(parts) >= 2:
            kw = parts[1].strip()
            if kw and kw not in keywords:
                keywords.append(kw)
    return keywords


def is_fine_grained_region(region_text: str) -> bool:
    trimmed = (region_text or "").strip()
    if not trimmed:
        return False
    if " " in trimmed:
        return True
    return trimmed.endswith(FINE_REGION_SUFFIXES)


def city_keyword(region_text: str) -> Optional[str]:
    parts = [p.strip() for p in re.split(r"[,·/;\s]", region_text or "") if p.strip()]
    return parts[0] if parts else None


def district_keyword(region_text: str) -> Optional[str]:
    tokens = (region_text or "").strip().split(" ")
    if len(tokens) < 2:
        return None
    return tokens[1].strip() or None


def build_search_centers(
    base_lat: float,
    base_lng: float,
    delta: float = config.SEARCH_CENTER_DELTA,
) -> List[SearchCenter]:
    """Center plus four cardinal offsets (N, S, E, W)."""
    return [
        SearchCenter(base_lat, base_lng),
        SearchCenter(base_lat + delta, base_lng),
        SearchCenter(base_lat - delta, base_lng),
        SearchCenter(base_lat, base_lng + delta),
        SearchCenter(base_lat, base_lng - delta),
    ]


def centers_for_region(region_text: str, base_lat: float, base_lng: float) -> List[SearchCenter]:
    if is_fine_grained_region(region_text):
        return [SearchCenter(base_lat, base_lng)]
    return build_search_centers(base_lat, base_lng)
