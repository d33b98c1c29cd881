import time
import uuid
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


# ------- Enums -------
class Category(str, Enum):
    FOOD = "FOOD"
    CAFE = "CAFE"
    PHOTO = "PHOTO"
    CULTURE = "CULTURE"
    SHOPPING = "SHOPPING"
    HEALING = "HEALING"
    EXPERIENCE = "EXPERIENCE"
    NIGHT = "NIGHT"
    STAY = "STAY"

    @classmethod
    def defaults(cls) -> List["Category"]:
        return list(cls)


class TripDuration(str, Enum):
    HALF_DAY = "HALF_DAY"
    DAY = "DAY"
    ONE_NIGHT = "ONE_NIGHT"
    TWO_NIGHTS = "TWO_NIGHTS"

    def to_days(self) -> int:
        return {
            TripDuration.HALF_DAY: 1,
            TripDuration.DAY: 1,
            TripDuration.ONE_NIGHT: 2,
            TripDuration.TWO_NIGHTS: 3,
        }[self]


class Companion(str, Enum):
    SOLO = "SOLO"
    FRIENDS = "FRIENDS"
    COUPLE = "COUPLE"
    FAMILY = "FAMILY"


class TransportMode(str, Enum):
    WALK = "WALK"
    CAR = "CAR"
    PUBLIC = "PUBLIC"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


# ------- Request models -------
class FilterState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    region: str = ""
    sub_regions: List[str] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
    duration: TripDuration = TripDuration.DAY
    budget_per_person: int = 30000
    companion: Companion = Companion.SOLO
    extra_note: str = ""
    number_of_people: int = 1
    mandatory_place: str = ""

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, value: List[Category]) -> List[Category]:
        seen: List[Category] = []
        for cat in value:
            if cat not in seen:
                seen.append(cat)
        return seen

    def effective_region(self) -> str:
        subs = [s.strip() for s in self.sub_regions if s and s.strip()]
        if subs:
            return ", ".join(subs)
        return self.region.strip()

    def resolved_categories(self) -> List[Category]:
        return list(self.categories) or [Category.FOOD]


# ------- Domain models -------
class WeatherInfo(BaseModel):
    temp_c: float
    condition: str
    icon: Optional[str] = None


class Place(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: Category
    lat: float
    lng: float
    distance_meters: Optional[int] = None
    rating: Optional[float] = None
    address: Optional[str] = None
    score: Optional[float] = None
    popularity_count: Optional[int] = None
    popularity_score: Optional[float] = None


class RankedPlace(BaseModel):
    id: str
    score: Optional[int] = None
    reason: Optional[str] = None


class RerankOutput(BaseModel):
    places: List[Place] = Field(default_factory=list)
    reasons: Dict[str, str] = Field(default_factory=dict)
    ai_top_ids: List[str] = Field(default_factory=list)


class RecommendationResult(BaseModel):
    places: List[Place] = Field(default_factory=list)
    weather: Optional[WeatherInfo] = None
    reasons: Dict[str, str] = Field(default_factory=dict)
    ai_top_ids: List[str] = Field(default_factory=list)
    top_picks: List[Place] = Field(default_factory=list)

    @model_validator(mode="after")
    def _drop_dangling_ids(self) -> "RecommendationResult":
        known = {p.id for p in self.places}
        self.reasons = {pid: text for pid, text in self.reasons.items() if pid in known}
        self.ai_top_ids = [pid for pid in self.ai_top_ids if pid in known]
        self.top_picks = [p for p in self.top_picks if p.id in known]
        return self


# ------- Itinerary models -------
class TravelInfo(BaseModel):
    distance_km: float
    duration_min: int
    mode: str = "WALK"


class TimeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    start_time: str
    end_time: str
    place: Optional[Place] = None
    activity: Literal["VISIT", "MEAL", "TRANSPORT"] = "VISIT"
    duration: int
    travel_info: Optional[TravelInfo] = None


class DaySchedule(BaseModel):
    day: int
    time_slots: List[TimeSlot] = Field(default_factory=list)


class Itinerary(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    days: List[DaySchedule] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)

    def place_ids(self) -> List[str]:
        return [
            slot.place.id
            for day in self.days
            for slot in day.time_slots
            if slot.place is not None
        ]


class ItineraryConfig(BaseModel):
    default_start: str = "10:00"
    default_end: str = "21:30"
    last_day_end_override: Optional[str] = None


# ------- Route models -------
class LatLng(BaseModel):
    lat: float
    lng: float


class RouteSegment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_place: Place = Field(..., alias="from")
    to_place: Place = Field(..., alias="to")
    path_coordinates: List[LatLng] = Field(default_factory=list)
    distance_meters: int
    duration_seconds: int
    mode: TransportMode = TransportMode.WALK


class SavedRoute(BaseModel):
    id: str = Field(default_factory=lambda: str(_now_ms()))
    name: str = ""
    places: List[Place] = Field(default_factory=list)
    route_segments: List[RouteSegment] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)

    @model_validator(mode="after")
    def _segments_match_places(self) -> "SavedRoute":
        if self.route_segments and len(self.route_segments) != len(self.places) - 1:
            raise ValueError("route_segments must hold exactly one segment per consecutive place pair")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_distance_meters(self) -> int:
        return sum(seg.distance_meters for seg in self.route_segments)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_duration_seconds(self) -> int:
        return sum(seg.duration_seconds for seg in self.route_segments)

    def total_duration_formatted(self) -> str:
        hours, rest = divmod(self.total_duration_seconds, 3600)
        minutes = rest // 60
        if hours and minutes:
            return f"{hours}h {minutes}m total"
        if hours:
            return f"{hours}h total"
        return f"{minutes}m total"

    def total_distance_formatted(self) -> str:
        meters = self.total_distance_meters
        if meters >= 1000:
            return f"{meters / 1000.0:.1f} km"
        return f"{meters} m"


# ------- API request bodies -------
class AiRecommendRequest(BaseModel):
    filter: FilterState = Field(default_factory=FilterState)
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None


class ItineraryRequest(BaseModel):
    places: List[Place] = Field(default_factory=list)
    filter: FilterState = Field(default_factory=FilterState)
    auto_add_meals: bool = False
    config: ItineraryConfig = Field(default_factory=ItineraryConfig)
    name: str = ""


class ResequenceRequest(BaseModel):
    day: DaySchedule
    start_from: Optional[str] = None
    gap_minutes: int = Field(10, ge=0)


class RouteBuildRequest(BaseModel):
    places: List[Place] = Field(..., min_length=1)
    name: str = ""
