from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from tripcurator import config
from tripcurator.agents.itinerary_planner import resequence_day
from tripcurator.logsetup import get_logger
from tripcurator.orchestrator import TravelCurator, build_default_curator
from tripcurator.schemas import (
    AiRecommendRequest,
    DaySchedule,
    FilterState,
    Itinerary,
    ItineraryRequest,
    RecommendationResult,
    ResequenceRequest,
    RouteBuildRequest,
    SavedRoute,
    WeatherInfo,
)
from tripcurator.tools.storage import JsonStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Collaborators are built once and shared read-only across requests.
    if getattr(app.state, "curator", None) is None:
        app.state.curator = build_default_curator()
    if getattr(app.state, "route_store", None) is None:
        app.state.route_store = JsonStore(Path(config.ROUTES_FILE), SavedRoute)
    if getattr(app.state, "itinerary_store", None) is None:
        app.state.itinerary_store = JsonStore(Path(config.ITINERARIES_FILE), Itinerary)
    logger.info("%s %s ready", config.APP_NAME, config.APP_VERSION)
    yield


app = FastAPI(title="Trip Curator API", version=config.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_in_flight: Set[str] = set()


@asynccontextmanager
async def _single_flight(endpoint: str, payload: Any) -> AsyncIterator[None]:
    """Reject an identical request while the first one is still running."""
    key = f"{endpoint}:{json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)}"
    if key in _in_flight:
        raise HTTPException(status_code=409, detail="An identical request is already in progress")
    _in_flight.add(key)
    try:
        yield
    finally:
        _in_flight.discard(key)


def get_curator(request: Request) -> TravelCurator:
    return request.app.state.curator


def get_route_store(request: Request) -> JsonStore:
    return request.app.state.route_store


def get_itinerary_store(request: Request) -> JsonStore:
    return request.app.state.itinerary_store


# ------- recommendations -------
@app.post("/api/recommend", response_model=RecommendationResult)
async def api_recommend(
    filter_state: FilterState,
    curator: TravelCurator = Depends(get_curator),
) -> RecommendationResult:
    async with _single_flight("recommend", filter_state.model_dump(mode="json")):
        return await curator.recommend(filter_state)


@app.post("/api/recommend/ai", response_model=RecommendationResult)
async def api_recommend_ai(
    payload: AiRecommendRequest,
    curator: TravelCurator = Depends(get_curator),
) -> RecommendationResult:
    async with _single_flight("recommend_ai", payload.model_dump(mode="json")):
        return await curator.recommend_with_ai(payload.filter, payload.center_lat, payload.center_lng)


@app.get("/api/weather")
async def api_weather(
    region: str = Query(..., min_length=1),
    curator: TravelCurator = Depends(get_curator),
) -> Dict[str, Any]:
    weather: Optional[WeatherInfo] = await curator.get_weather(region)
    return {"region": region, "weather": weather.model_dump() if weather else None}


# ------- itineraries -------
@app.post("/api/itinerary", response_model=Itinerary)
async def api_itinerary(
    payload: ItineraryRequest,
    curator: TravelCurator = Depends(get_curator),
) -> Itinerary:
    async with _single_flight("itinerary", payload.model_dump(mode="json")):
        return await curator.generate_itinerary(
            payload.places,
            payload.filter,
            auto_add_meals=payload.auto_add_meals,
            itinerary_config=payload.config,
            name=payload.name,
        )


@app.post("/api/itinerary/resequence", response_model=DaySchedule)
async def api_resequence(payload: ResequenceRequest) -> DaySchedule:
    try:
        return resequence_day(payload.day, start_from=payload.start_from, gap_minutes=payload.gap_minutes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/api/itineraries", response_model=List[Itinerary])
async def list_itineraries(store: JsonStore = Depends(get_itinerary_store)) -> List[Itinerary]:
    return store.list_all()


@app.get("/api/itineraries/{itinerary_id}", response_model=Itinerary)
async def get_itinerary(itinerary_id: str, store: JsonStore = Depends(get_itinerary_store)) -> Itinerary:
    found = store.get(itinerary_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Itinerary not found")
    return found


@app.put("/api/itineraries/{itinerary_id}", response_model=Itinerary)
async def put_itinerary(
    itinerary_id: str,
    itinerary: Itinerary,
    store: JsonStore = Depends(get_itinerary_store),
) -> Itinerary:
    return store.upsert(itinerary.model_copy(update={"id": itinerary_id}))


@app.delete("/api/itineraries/{itinerary_id}")
async def delete_itinerary(itinerary_id: str, store: JsonStore = Depends(get_itinerary_store)) -> Dict[str, str]:
    if not store.delete(itinerary_id):
        raise HTTPException(status_code=404, detail="Itinerary not found")
    return {"deleted": itinerary_id}


# ------- routes -------
@app.post("/api/routes/build", response_model=SavedRoute)
async def api_build_route(
    payload: RouteBuildRequest,
    curator: TravelCurator = Depends(get_curator),
) -> SavedRoute:
    async with _single_flight("routes_build", payload.model_dump(mode="json")):
        return await curator.build_route(payload.places, payload.name)


@app.get("/api/routes", response_model=List[SavedRoute])
async def list_routes(store: JsonStore = Depends(get_route_store)) -> List[SavedRoute]:
    return store.list_all()


@app.get("/api/routes/{route_id}", response_model=SavedRoute)
async def get_route(route_id: str, store: JsonStore = Depends(get_route_store)) -> SavedRoute:
    found = store.get(route_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Route not found")
    return found


@app.put("/api/routes/{route_id}", response_model=SavedRoute)
async def put_route(route_id: str, route: SavedRoute, store: JsonStore = Depends(get_route_store)) -> SavedRoute:
    return store.upsert(route.model_copy(update={"id": route_id}))


@app.delete("/api/routes/{route_id}")
async def delete_route(route_id: str, store: JsonStore = Depends(get_route_store)) -> Dict[str, str]:
    if not store.delete(route_id):
        raise HTTPException(status_code=404, detail="Route not found")
    return {"deleted": route_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tripcurator.main:app", host=config.SERVER_HOST, port=config.SERVER_PORT)
