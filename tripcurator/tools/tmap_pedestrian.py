import asyncio
from typing import Any, Dict, List, Optional, Sequence

import httpx

from tripcurator import config
from tripcurator.geo import haversine_m
from tripcurator.logsetup import get_logger
from tripcurator.schemas import LatLng, Place, RouteSegment, TransportMode

logger = get_logger(__name__)


def straight_line_segment(origin: Place, dest: Place) -> RouteSegment:
    """Two-point segment used whenever the directions service cannot answer."""
    distance = int(haversine_m(origin.lat, origin.lng, dest.lat, dest.lng))
    return RouteSegment(
        from_place=origin,
        to_place=dest,
        path_coordinates=[LatLng(lat=origin.lat, lng=origin.lng), LatLng(lat=dest.lat, lng=dest.lng)],
        distance_meters=distance,
        duration_seconds=int(distance / config.WALKING_SPEED_MPS),
        mode=TransportMode.WALK,
    )


def parse_features(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pull coordinates and totals out of a TMAP GeoJSON feature collection.

    Returns ``None`` when fewer than two coordinates were found.
    """
    if not isinstance(payload, dict):
        return None
    coords: List[LatLng] = []
    total_distance: Optional[int] = None
    total_time: Optional[int] = None

    for feature in payload.get("features") or []:
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        if not isinstance(props, dict) or not isinstance(geometry, dict):
            continue
        if total_distance is None and props.get("totalDistance") is not None:
            total_distance = int(props["totalDistance"])
        if total_time is None and props.get("totalTime") is not None:
            total_time = int(props["totalTime"])

        kind = geometry.get("type")
        raw = geometry.get("coordinates") or []
        if kind == "Point" and len(raw) >= 2:
            points = [raw]
        elif kind == "LineString":
            points = raw
        else:
            continue
        for point in points:
            # GeoJSON order is [lng, lat]
            candidate = LatLng(lat=float(point[1]), lng=float(point[0]))
            if not coords or coords[-1] != candidate:
                coords.append(candidate)

    if len(coords) < 2:
        return None
    return {"coordinates": coords, "distance": total_distance, "duration": total_time}


class TmapPedestrianClient:
    """
    Walking directions between two places via the TMAP pedestrian route API.
    Every failure path degrades to a straight-line segment.
    """
    ROUTE_ENDPOINT = "https://apis.openapi.sk.com/tmap/routes/pedestrian"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        delay_seconds: float = config.DIRECTIONS_DELAY_SECONDS,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.delay_seconds = delay_seconds

    async def walking_segment(self, origin: Place, dest: Place) -> RouteSegment:
        if not self.api_key:
            return straight_line_segment(origin, dest)

        body = {
            "startX": str(origin.lng),
            "startY": str(origin.lat),
            "endX": str(dest.lng),
            "endY": str(dest.lat),
            "startName": origin.name,
            "endName": dest.name,
            "reqCoordType": "WGS84GEO",
            "resCoordType": "WGS84GEO",
            "searchOption": "0",
        }
        headers = {"appKey": self.api_key, "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.ROUTE_ENDPOINT, params={"version": 1}, json=body, headers=headers
                )
                response.raise_for_status()
                parsed = parse_features(response.json())
        except (httpx.HTTPError, AttributeError, KeyError, TypeError, ValueError, IndexError):
            logger.warning("Pedestrian route failed %s -> %s", origin.id, dest.id, exc_info=True)
            return straight_line_segment(origin, dest)

        if parsed is None:
            logger.info("Pedestrian route %s -> %s had no usable geometry", origin.id, dest.id)
            return straight_line_segment(origin, dest)

        fallback = straight_line_segment(origin, dest)
        distance = parsed["distance"] if parsed["distance"] is not None else fallback.distance_meters
        duration = parsed["duration"] if parsed["duration"] is not None else int(distance / config.WALKING_SPEED_MPS)
        return RouteSegment(
            from_place=origin,
            to_place=dest,
            path_coordinates=parsed["coordinates"],
            distance_meters=distance,
            duration_seconds=duration,
            mode=TransportMode.WALK,
        )

    async def full_route(self, places: Sequence[Place]) -> List[RouteSegment]:
        """Consecutive legs in order, pausing between calls."""
        segments: List[RouteSegment] = []
        for idx in range(len(places) - 1):
            if idx > 0 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            segments.append(await self.walking_segment(places[idx], places[idx + 1]))
        return segments
