# tripcurator/orchestrator.py
from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from tripcurator import config
from tripcurator.agents.candidate_fetch import (
    PlaceSearchPort,
    apply_content_filters,
    fetch_candidates,
    resolve_centers,
)
from tripcurator.agents.fit_labels import (
    AiFitRules,
    CompanionFitRules,
    WeatherFitRules,
    adjust_ai_fit_by_text,
    ai_fit_labels,
    companion_fit,
    summary_line,
    weather_fit,
)
from tripcurator.agents.itinerary_planner import ItineraryPlanner
from tripcurator.agents.popularity import PopularityPort, enrich_with_popularity, pick_top_by_popularity
from tripcurator.agents.rebalance import (
    backfill_to_minimum,
    rebalance_by_category,
    rebalance_by_neighborhood,
    spread_out,
)
from tripcurator.agents.reranker import PlaceReranker
from tripcurator.geo import SearchCenter, haversine_m, has_multi_regions, is_fine_grained_region, split_multi_regions
from tripcurator.llm import CompletionPort, OpenAICompletionClient
from tripcurator.logsetup import get_logger
from tripcurator.schemas import (
    Category,
    FilterState,
    Itinerary,
    ItineraryConfig,
    Place,
    RecommendationResult,
    RouteSegment,
    SavedRoute,
    WeatherInfo,
)
from tripcurator.tools.kakao_local import KakaoLocalClient
from tripcurator.tools.naver_search import NaverBlogSearch
from tripcurator.tools.tmap_pedestrian import TmapPedestrianClient
from tripcurator.tools.weather import OpenWeatherClient

logger = get_logger(__name__)


class WeatherPort(Protocol):
    async def current(self, lat: float, lng: float) -> Optional[WeatherInfo]: ...


class DirectionsPort(Protocol):
    async def full_route(self, places: Sequence[Place]) -> List[RouteSegment]: ...


def top_pick_per_category(ordered: Sequence[Place], categories: Sequence[Category]) -> List[Place]:
    picks: List[Place] = []
    for cat in categories:
        first = next((p for p in ordered if p.category == cat), None)
        if first is not None:
            picks.append(first)
    return picks


class TravelCurator:
    """
    Recommendation pipeline plus the itinerary and route entry points.

    Built once per process with its collaborators; holds no per-request state.
    """

    def __init__(
        self,
        search: PlaceSearchPort,
        popularity: PopularityPort,
        weather: WeatherPort,
        directions: DirectionsPort,
        llm: CompletionPort,
        *,
        weather_rules: Optional[WeatherFitRules] = None,
        companion_rules: Optional[CompanionFitRules] = None,
        ai_rules: Optional[AiFitRules] = None,
        planner: Optional[ItineraryPlanner] = None,
    ):
        self.search = search
        self.popularity = popularity
        self.weather = weather
        self.directions = directions
        self.reranker = PlaceReranker(llm)
        self.planner = planner or ItineraryPlanner(llm)
        self.weather_rules = weather_rules or WeatherFitRules()
        self.companion_rules = companion_rules or CompanionFitRules()
        self.ai_rules = ai_rules or AiFitRules()

    # ------- weather -------
    async def get_weather_at(self, lat: float, lng: float) -> Optional[WeatherInfo]:
        return await self.weather.current(lat, lng)

    async def get_weather(self, region: str) -> Optional[WeatherInfo]:
        center = await self.search.geocode(region)
        if center is None:
            logger.warning("Geocode failed for weather region=%r", region)
            return None
        return await self.get_weather_at(*center)

    # ------- recommendation -------
    async def recommend(self, filter_state: FilterState, weather: Optional[WeatherInfo] = None) -> RecommendationResult:
        """Search-only recommendation: heuristic scores, no LLM call."""
        region_text = filter_state.effective_region() or config.DEFAULT_REGION
        tokens = split_multi_regions(region_text)
        region_for_center = tokens[0] if tokens else region_text
        categories = filter_state.resolved_categories()
        logger.info("recommend region=%r center_hint=%r cats=%s", region_text, region_for_center, [c.value for c in categories])

        center = await self.search.geocode(region_for_center)
        if center is None:
            logger.warning("Geocode failed for region=%r; returning empty result", region_for_center)
            return RecommendationResult(weather=weather)

        if weather is None:
            weather = await self.get_weather_at(*center)

        centers = await resolve_centers(self.search, region_text, center[0], center[1])
        merged = await fetch_candidates(
            self.search,
            centers,
            categories,
            radius_meters=config.BASE_RADIUS_METERS,
            size_per_category=config.BASE_SIZE_PER_CATEGORY,
            total_cap=config.MAX_TOTAL_CANDIDATES,
        )
        candidates = apply_content_filters(merged, region_text)

        ordered, top_picks = self._balance(candidates, categories, region_text, center)
        reasons = {
            p.id: summary_line(
                weather_fit(p, weather, self.weather_rules),
                companion_fit(filter_state, p, self.companion_rules),
            )
            for p in ordered
        }
        logger.info("recommend final size=%d", len(ordered))
        return RecommendationResult(places=ordered, weather=weather, reasons=reasons, top_picks=top_picks)

    async def recommend_with_ai(
        self,
        filter_state: FilterState,
        center_lat: Optional[float] = None,
        center_lng: Optional[float] = None,
    ) -> RecommendationResult:
        """Popularity-enriched, LLM-reranked recommendation."""
        region_text = filter_state.effective_region()
        categories = filter_state.resolved_categories()

        if center_lat is None or center_lng is None:
            tokens = split_multi_regions(region_text)
            center = await self.search.geocode(tokens[0]) if tokens else None
            if center is None:
                logger.warning("No center for AI recommendation (region=%r)", region_text)
                return RecommendationResult()
        else:
            center = (center_lat, center_lng)
        logger.info("recommend_with_ai region=%r cats=%s center=%s", region_text, [c.value for c in categories], center)

        weather = await self.get_weather_at(*center)
        logger.debug("weather=%s", weather)

        if region_text:
            centers = await resolve_centers(self.search, region_text, center[0], center[1])
        else:
            centers = [SearchCenter(center[0], center[1])]

        merged = await fetch_candidates(
            self.search,
            centers,
            categories,
            radius_meters=config.BASE_RADIUS_METERS,
            size_per_category=config.BASE_SIZE_PER_CATEGORY,
            max_pages=config.AI_SEARCH_PAGES,
            total_cap=None,
        )
        candidates = apply_content_filters(merged, region_text)
        if not candidates:
            logger.warning("No candidates left after filtering")
            return RecommendationResult(weather=weather)

        enriched = await enrich_with_popularity(candidates, self.popularity, region_text or None)
        prompt_count = min(config.MAX_LIST_RESULTS, config.POPULARITY_TOP_N_FOR_LLM)
        for_llm = pick_top_by_popularity(enriched, prompt_count)

        blank_region = filter_state.model_copy(update={"region": "", "sub_regions": []})
        out = await self.reranker.rerank(blank_region, weather, for_llm)

        ordered, top_picks = self._balance(out.places, categories, region_text, center)

        ai_labels = ai_fit_labels(ordered, self.ai_rules)
        reasons: Dict[str, str] = {}
        for place in ordered:
            detail = out.reasons.get(place.id, "").strip()
            ai_label = adjust_ai_fit_by_text(ai_labels.get(place.id), detail, self.ai_rules)
            summary = summary_line(
                weather_fit(place, weather, self.weather_rules),
                companion_fit(filter_state, place, self.companion_rules),
                ai_label,
            )
            reasons[place.id] = f"{summary}\n{detail}" if detail else summary

        logger.info("recommend_with_ai final size=%d ai_top=%s", len(ordered), out.ai_top_ids)
        return RecommendationResult(
            places=ordered,
            weather=weather,
            reasons=reasons,
            ai_top_ids=out.ai_top_ids,
            top_picks=top_picks,
        )

    def _balance(
        self,
        candidates: Sequence[Place],
        categories: Sequence[Category],
        region_text: str,
        center: Tuple[float, float],
    ) -> Tuple[List[Place], List[Place]]:
        """Shared tail: quotas, spread, fine-region radius, minimum size, top picks."""
        if not candidates:
            return [], []

        _, balanced = rebalance_by_category(
            candidates,
            categories,
            min_per_category=config.MIN_PER_CATEGORY,
            top_per_category=config.TOP_PER_CATEGORY,
            total_cap=config.MAX_LIST_RESULTS,
        )

        multi = has_multi_regions(region_text)
        if multi:
            balanced = rebalance_by_neighborhood(
                balanced,
                region_text,
                min_per_neighborhood=config.MIN_PER_NEIGHBORHOOD,
                total_cap=config.MAX_LIST_RESULTS,
            )

        spread = spread_out(
            balanced,
            categories,
            min_per_category=config.MIN_PER_CATEGORY,
            min_distance_meters=config.MIN_DISTANCE_BETWEEN_PLACES_METERS,
        )
        spread = backfill_to_minimum(spread, balanced, config.MIN_LIST_RESULTS)

        if not multi and is_fine_grained_region(region_text):
            nearby = [
                p for p in spread
                if haversine_m(center[0], center[1], p.lat, p.lng) <= config.FINE_REGION_MAX_DISTANCE_METERS
            ]
            if nearby:
                spread = nearby

        ordered = backfill_to_minimum(spread, balanced, config.MIN_LIST_RESULTS)
        return ordered, top_pick_per_category(ordered, categories)

    # ------- routes & itineraries -------
    async def build_route(self, places: Sequence[Place], name: str = "") -> SavedRoute:
        segments = await self.directions.full_route(places) if len(places) > 1 else []
        route = SavedRoute(name=name, places=list(places), route_segments=segments)
        logger.info(
            "Route %r: %d places, %s, %s",
            name,
            len(route.places),
            route.total_distance_formatted(),
            route.total_duration_formatted(),
        )
        return route

    async def generate_itinerary(
        self,
        places: Sequence[Place],
        filter_state: FilterState,
        *,
        auto_add_meals: bool = False,
        itinerary_config: Optional[ItineraryConfig] = None,
        name: str = "",
    ) -> Itinerary:
        return await self.planner.generate(
            places,
            filter_state,
            auto_add_meals=auto_add_meals,
            itinerary_config=itinerary_config,
            name=name,
        )


def build_default_curator() -> TravelCurator:
    """Wire real collaborators from ``tripcurator.config``."""
    llm = OpenAICompletionClient(config.OPENAI_API_KEY, model=config.OPENAI_MODEL)
    return TravelCurator(
        search=KakaoLocalClient(config.KAKAO_REST_API_KEY),
        popularity=NaverBlogSearch(config.NAVER_CLIENT_ID, config.NAVER_CLIENT_SECRET),
        weather=OpenWeatherClient(config.OPENWEATHER_API_KEY),
        directions=TmapPedestrianClient(config.TMAP_API_KEY),
        llm=llm,
    )
