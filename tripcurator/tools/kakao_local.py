from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from tripcurator import config
from tripcurator.logsetup import get_logger
from tripcurator.schemas import Category, Place

logger = get_logger(__name__)

# Internal category -> Kakao category_group_code (many-to-one in reverse).
CATEGORY_CODES: Dict[Category, Tuple[str, ...]] = {
    Category.FOOD: ("FD6",),
    Category.CAFE: ("CE7",),
    Category.CULTURE: ("CT1",),
    Category.PHOTO: ("AT4",),
    Category.SHOPPING: ("MT1", "CS2"),
    Category.HEALING: ("AT4",),
    Category.EXPERIENCE: ("AT4", "AC5"),
    Category.NIGHT: ("AD5",),
    Category.STAY: ("AD5",),
}

CODE_TO_CATEGORY: Dict[str, Category] = {
    "FD6": Category.FOOD,
    "CE7": Category.CAFE,
    "CT1": Category.CULTURE,
    "AT4": Category.PHOTO,
    "MT1": Category.SHOPPING,
    "CS2": Category.SHOPPING,
    "AD5": Category.STAY,
}

# Student/company cafeterias are never travel picks.
LOW_PRIORITY_NAME_KEYWORDS: Tuple[str, ...] = (
    "구내식당", "사내식당", "학생식당", "교내식당", "급식실", "기숙사식당",
)


def is_low_priority_name(name: str) -> bool:
    return any(keyword in name for keyword in LOW_PRIORITY_NAME_KEYWORDS)


def document_to_place(doc: Dict[str, Any], requested: Optional[Category] = None) -> Optional[Place]:
    """Map a Kakao place document to ``Place``; ``None`` when coordinates are unusable."""
    try:
        lat = float(doc["y"])
        lng = float(doc["x"])
    except (KeyError, TypeError, ValueError):
        return None
    place_id = str(doc.get("id") or "").strip()
    name = str(doc.get("place_name") or "").strip()
    if not place_id or not name:
        return None

    code = doc.get("category_group_code") or ""
    if requested is not None and code in CATEGORY_CODES.get(requested, ()):
        category = requested
    else:
        category = CODE_TO_CATEGORY.get(code, Category.CULTURE)

    distance: Optional[int] = None
    raw_distance = doc.get("distance")
    if raw_distance not in (None, ""):
        try:
            distance = int(float(raw_distance))
        except (TypeError, ValueError):
            distance = None

    return Place(
        id=place_id,
        name=name,
        category=category,
        lat=lat,
        lng=lng,
        distance_meters=distance,
        address=doc.get("road_address_name") or doc.get("address_name") or None,
    )


class KakaoLocalClient:
    """
    Kakao Local REST API: address geocoding plus category search.
    Failures are logged and surface as ``None`` / empty lists.
    """
    BASE_URL = "https://dapi.kakao.com"

    def __init__(self, api_key: Optional[str] = None, *, timeout: float = config.HTTP_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"KakaoAK {self.api_key}"}

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.BASE_URL}{path}", params=params, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object from {path}, got {type(data).__name__}")
        return data

    async def geocode(self, region_or_address: str) -> Optional[Tuple[float, float]]:
        """Free text -> (lat, lng) of the first address match."""
        if not self.api_key or not (region_or_address or "").strip():
            return None
        try:
            data = await self._get("/v2/local/search/address.json", {"query": region_or_address})
            docs = data.get("documents") or []
            if not docs:
                return None
            return float(docs[0]["y"]), float(docs[0]["x"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError):
            logger.warning("Geocode failed for %r", region_or_address, exc_info=True)
            return None

    async def search_by_category(
        self,
        center_lat: float,
        center_lng: float,
        category: Category,
        *,
        radius_meters: int = config.BASE_RADIUS_METERS,
        size: int = config.BASE_SIZE_PER_CATEGORY,
        max_pages: int = 1,
    ) -> List[Place]:
        if not self.api_key:
            return []
        out: List[Place] = []
        for code in CATEGORY_CODES.get(category, ()):
            for page in range(1, max_pages + 1):
                params = {
                    "category_group_code": code,
                    "x": center_lng,
                    "y": center_lat,
                    "radius": radius_meters,
                    "size": min(size, config.BASE_SIZE_PER_CATEGORY),
                    "page": page,
                    "sort": "distance",
                }
                try:
                    data = await self._get("/v2/local/search/category.json", params)
                except (httpx.HTTPError, ValueError):
                    logger.warning("Category search failed code=%s page=%d", code, page, exc_info=True)
                    break
                docs = data.get("documents") or []
                if not docs:
                    break
                out.extend(p for p in (document_to_place(d, category) for d in docs) if p is not None)
                meta = data.get("meta")
                if isinstance(meta, dict) and meta.get("is_end"):
                    break
        return self._finalise(out)

    @staticmethod
    def _finalise(places: Iterable[Place]) -> List[Place]:
        unique: Dict[str, Place] = {}
        for place in places:
            if place.id in unique or is_low_priority_name(place.name):
                continue
            unique[place.id] = place
        return sorted(
            unique.values(),
            key=lambda p: p.distance_meters if p.distance_meters is not None else float("inf"),
        )

