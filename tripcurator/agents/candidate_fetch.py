"""Candidate fetch: region text -> search centers -> merged, filtered place list."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from tripcurator import config
from tripcurator.geo import (
    SearchCenter,
    centers_for_region,
    city_keyword,
    district_keyword,
    split_multi_regions,
)
from tripcurator.logsetup import get_logger
from tripcurator.schemas import Category, Place

logger = get_logger(__name__)

# Lower-case substrings. Government offices, institutional cafeterias, chain brands.
BANNED_KEYWORDS: Tuple[str, ...] = (
    "시청", "구청", "군청", "청사", "법원",
    "공무원", "구내식당", "사내식당", "공무원연금",
    "스타벅스", "starbucks",
    "이디야", "ediya",
    "투썸플레이스", "투썸",
    "메가커피", "메가mgc",
    "빽다방",
    "폴바셋", "paul bassett",
    "커피빈", "coffeebean",
    "할리스", "할리스커피", "hollys",
    "엔제리너스",
    "파스쿠찌",
    "탐앤탐스",
    "던킨", "던킨도너츠", "dunkin",
    "배스킨라빈스", "배스킨", "br31",
    "맥도날드", "맥날", "mcdonald",
    "롯데리아",
    "버거킹",
    "kfc",
    "맘스터치",
    "서브웨이", "subway",
)


class PlaceSearchPort(Protocol):
    async def geocode(self, region_or_address: str) -> Optional[Tuple[float, float]]: ...

    async def search_by_category(
        self,
        center_lat: float,
        center_lng: float,
        category: Category,
        *,
        radius_meters: int = ...,
        size: int = ...,
        max_pages: int = ...,
    ) -> List[Place]: ...


def filter_banned(candidates: Iterable[Place], banned: Sequence[str] = BANNED_KEYWORDS) -> List[Place]:
    kept: List[Place] = []
    for place in candidates:
        text = f"{place.name} {place.category.value}".lower()
        if any(keyword in text for keyword in banned):
            continue
        kept.append(place)
    return kept


def filter_by_city(candidates: List[Place], region_text: str) -> List[Place]:
    """Keep places whose address mentions the city token; no-op if nothing would survive."""
    keyword = city_keyword(region_text)
    if not candidates or keyword is None:
        return candidates
    filtered = [p for p in candidates if p.address and keyword in p.address]
    return filtered or candidates


def filter_by_district(candidates: List[Place], region_text: str) -> List[Place]:
    keyword = district_keyword(region_text)
    if not candidates or keyword is None:
        return candidates
    filtered = [p for p in candidates if p.address and keyword in p.address]
    return filtered or candidates


async def resolve_centers(
    search: PlaceSearchPort,
    region_text: str,
    base_lat: float,
    base_lng: float,
) -> List[SearchCenter]:
    """Geocode every sub-region token; fall back to the base center expansion.

    A token such as "광주 상무지구" that fails to geocode is retried with its
    last word only.
    """
    tokens = split_multi_regions(region_text)
    if len(tokens) <= 1:
        return centers_for_region(region_text, base_lat, base_lng)

    centers: List[SearchCenter] = []
    for token in tokens:
        coords = await search.geocode(token)
        if coords is None and " " in token:
            tail = token.rsplit(" ", 1)[-1].strip()
            if tail:
                coords = await search.geocode(tail)
        if coords is None:
            logger.warning("Geocode failed for region token %r", token)
            continue
        logger.debug("Center for %r => (%s, %s)", token, coords[0], coords[1])
        centers.append(SearchCenter(coords[0], coords[1]))

    return centers or centers_for_region(region_text, base_lat, base_lng)


async def fetch_candidates(
    search: PlaceSearchPort,
    centers: Sequence[SearchCenter],
    categories: Sequence[Category],
    *,
    radius_meters: int = config.BASE_RADIUS_METERS,
    size_per_category: int = config.BASE_SIZE_PER_CATEGORY,
    max_pages: int = 1,
    total_cap: Optional[int] = config.MAX_TOTAL_CANDIDATES,
) -> List[Place]:
    """Query every (category, center) pair in turn, merging unique-by-id.

    Stops issuing queries once ``total_cap`` unique places were collected.
    Search errors are absorbed by the collaborator, so this never raises for
    an unreachable service and simply returns fewer (or zero) places.
    """
    merged: Dict[str, Place] = {}

    def _full() -> bool:
        return total_cap is not None and len(merged) >= total_cap

    for category in categories:
        for center in centers:
            chunk = await search.search_by_category(
                center.lat,
                center.lng,
                category,
                radius_meters=radius_meters,
                size=size_per_category,
                max_pages=max_pages,
            )
            logger.debug(
                "cat=%s center=(%.4f,%.4f) chunk=%d %s",
                category.value,
                center.lat,
                center.lng,
                len(chunk),
                [p.name for p in chunk[:6]],
            )
            for place in chunk:
                if _full():
                    break
                merged.setdefault(place.id, place)
            if _full():
                break
        if _full():
            break

    logger.info("Fetched %d unique candidates over %d center(s)", len(merged), len(centers))
    return list(merged.values())


def apply_content_filters(candidates: List[Place], region_text: str) -> List[Place]:
    """Banned-keyword filter, then city, then district."""
    cleaned = filter_banned(candidates)
    city_filtered = filter_by_city(cleaned, region_text)
    return filter_by_district(city_filtered, region_text)
