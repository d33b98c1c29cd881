"""Day-by-day itinerary scheduling.

The LLM planner is tried first; any call or parse problem falls back to a
deterministic window scheduler (morning, lunch, afternoon, dinner, night).
Slots are immutable, so edits go through ``resequence_day`` which returns a
new day with recomputed times.
"""
from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Sequence

from tripcurator import config
from tripcurator.llm import CompletionPort, parse_json_object
from tripcurator.logsetup import get_logger
from tripcurator.schemas import (
    Category,
    DaySchedule,
    FilterState,
    Itinerary,
    ItineraryConfig,
    Place,
    TimeSlot,
)

logger = get_logger(__name__)

MINUTES_PER_DAY = 24 * 60

VISIT_MINUTES: Dict[Category, int] = {
    Category.FOOD: 60,
    Category.CAFE: 45,
    Category.CULTURE: 75,
    Category.EXPERIENCE: 75,
    Category.PHOTO: 45,
    Category.HEALING: 60,
    Category.SHOPPING: 60,
    Category.NIGHT: 60,
    Category.STAY: 0,
}

MEAL_MINUTES = 60

MORNING_END = 12 * 60
MORNING_FOOD_CUTOFF = 11 * 60
LUNCH_START, LUNCH_END = 12 * 60, 13 * 60
AFTERNOON_END = 18 * 60
DINNER_START, DINNER_END = 18 * 60, 19 * 60


class ItineraryParseError(ValueError):
    """Model output could not be turned into day schedules."""


# ------- time helpers -------
def parse_hhmm(value: str) -> int:
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        total = int(hours) * 60 + int(minutes)
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueError(f"invalid HH:MM time {value!r}") from exc
    if not 0 <= int(hours) < 24 or not 0 <= int(minutes) < 60:
        raise ValueError(f"invalid HH:MM time {value!r}")
    return total


def format_hhmm(total_minutes: int) -> str:
    total_minutes %= MINUTES_PER_DAY
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def duration_for(category: Category) -> int:
    return VISIT_MINUTES.get(category, 60)


def visit_slot(place: Place, start: int, minutes: int) -> TimeSlot:
    return TimeSlot(
        start_time=format_hhmm(start),
        end_time=format_hhmm(start + minutes),
        place=place,
        activity="VISIT",
        duration=minutes,
    )


def meal_slot(start: int, minutes: int = MEAL_MINUTES) -> TimeSlot:
    return TimeSlot(
        start_time=format_hhmm(start),
        end_time=format_hhmm(start + minutes),
        place=None,
        activity="MEAL",
        duration=minutes,
    )


# ------- resequencing -------
def resequence_day(
    day: DaySchedule,
    start_from: Optional[str] = None,
    gap_minutes: int = config.ITINERARY_GAP_MINUTES,
) -> DaySchedule:
    """Recompute every start/end time top to bottom. Returns a new day."""
    if not day.time_slots:
        return day.model_copy(update={"time_slots": []})

    cursor = parse_hhmm(start_from or day.time_slots[0].start_time)
    slots: List[TimeSlot] = []
    for slot in day.time_slots:
        end = cursor + slot.duration
        slots.append(
            slot.model_copy(update={"start_time": format_hhmm(cursor), "end_time": format_hhmm(end)})
        )
        cursor = end + gap_minutes
    return day.model_copy(update={"time_slots": slots})


def update_slot_duration(
    day: DaySchedule,
    slot_id: str,
    minutes: int,
    gap_minutes: int = config.ITINERARY_GAP_MINUTES,
) -> DaySchedule:
    if minutes < 0:
        raise ValueError("duration must be non-negative")
    if not any(slot.id == slot_id for slot in day.time_slots):
        raise KeyError(slot_id)
    slots = [
        slot.model_copy(update={"duration": minutes}) if slot.id == slot_id else slot
        for slot in day.time_slots
    ]
    return resequence_day(day.model_copy(update={"time_slots": slots}), gap_minutes=gap_minutes)


# ------- deterministic scheduler -------
class _Queues:
    def __init__(self, places: Sequence[Place]):
        self.food: Deque[Place] = deque()
        self.cafe: Deque[Place] = deque()
        self.night: Deque[Place] = deque()
        self.other: Deque[Place] = deque()
        seen: set = set()
        for place in places:
            if place.id in seen or place.category is Category.STAY:
                continue
            seen.add(place.id)
            self.for_category(place.category).append(place)

    def for_category(self, category: Category) -> Deque[Place]:
        if category is Category.FOOD:
            return self.food
        if category is Category.CAFE:
            return self.cafe
        if category is Category.NIGHT:
            return self.night
        return self.other

    def pop_first(self, *queues: Deque[Place]) -> Optional[Place]:
        for queue in queues:
            if queue:
                return queue.popleft()
        return None

    def put_back(self, place: Place) -> None:
        self.for_category(place.category).appendleft(place)


def _fill_window(
    queues: _Queues,
    slots: List[TimeSlot],
    cursor: int,
    window_start: int,
    window_end: int,
    pick: Callable[[int], Optional[Place]],
    gap_minutes: int,
) -> int:
    current = max(cursor, window_start)
    while current < window_end:
        place = pick(current)
        if place is None:
            break
        minutes = duration_for(place.category)
        if current + minutes > window_end:
            queues.put_back(place)
            break
        slots.append(visit_slot(place, current, minutes))
        current += minutes + gap_minutes
    return max(cursor, current)


def _fill_meal(
    queues: _Queues,
    slots: List[TimeSlot],
    cursor: int,
    window_start: int,
    window_end: int,
    auto_add_meals: bool,
) -> int:
    start = max(cursor, window_start)
    if start < window_end:
        if queues.food:
            place = queues.food.popleft()
            if start + MEAL_MINUTES <= window_end:
                slots.append(visit_slot(place, start, MEAL_MINUTES))
            else:
                queues.put_back(place)
        elif auto_add_meals and start + MEAL_MINUTES <= window_end:
            slots.append(meal_slot(start))
    return max(cursor, window_end)


def plan_fallback(
    places: Sequence[Place],
    days: int,
    *,
    auto_add_meals: bool = False,
    itinerary_config: Optional[ItineraryConfig] = None,
    day1_start: Optional[str] = None,
    gap_minutes: int = config.ITINERARY_GAP_MINUTES,
) -> List[DaySchedule]:
    cfg = itinerary_config or ItineraryConfig()
    queues = _Queues(places)
    logger.info(
        "Fallback schedule: %d day(s) food=%d cafe=%d night=%d other=%d meals=%s",
        days,
        len(queues.food),
        len(queues.cafe),
        len(queues.night),
        len(queues.other),
        auto_add_meals,
    )

    base_end = parse_hhmm(cfg.default_end)
    last_end = parse_hhmm(cfg.last_day_end_override) if cfg.last_day_end_override else base_end

    schedules: List[DaySchedule] = []
    for day_idx in range(days):
        start = day1_start if day_idx == 0 and day1_start else cfg.default_start
        cursor = parse_hhmm(start)
        day_end = last_end if day_idx == days - 1 else base_end
        slots: List[TimeSlot] = []

        cursor = _fill_window(
            queues, slots, cursor, cursor, min(MORNING_END, day_end),
            lambda now: queues.pop_first(
                queues.other,
                queues.food if now < MORNING_FOOD_CUTOFF else deque(),
                queues.cafe,
            ),
            gap_minutes,
        )
        cursor = _fill_meal(queues, slots, cursor, LUNCH_START, min(LUNCH_END, day_end), auto_add_meals)
        cursor = _fill_window(
            queues, slots, cursor, LUNCH_END, min(AFTERNOON_END, day_end),
            lambda now: queues.pop_first(queues.other, queues.cafe, queues.food),
            gap_minutes,
        )
        cursor = _fill_meal(queues, slots, cursor, DINNER_START, min(DINNER_END, day_end), auto_add_meals)
        _fill_window(
            queues, slots, cursor, DINNER_END, day_end,
            lambda now: queues.pop_first(queues.night, queues.cafe, queues.food),
            gap_minutes,
        )
        schedules.append(DaySchedule(day=day_idx + 1, time_slots=slots))
    return schedules


# ------- LLM planner -------
def build_itinerary_prompt(
    places: Sequence[Place],
    filter_state: FilterState,
    days: int,
    itinerary_config: ItineraryConfig,
    day1_start: str,
) -> str:
    places_text = "\n".join(
        f"- id={idx}, name={p.name}, category={p.category.value}, lat={p.lat}, lng={p.lng}"
        for idx, p in enumerate(places)
    )
    mandatory = filter_state.mandatory_place.strip()
    mandatory_text = f"\n- Must visit: {mandatory} (always include)" if mandatory else ""
    start = itinerary_config.default_start
    end = itinerary_config.default_end
    last_day = ""
    if itinerary_config.last_day_end_override:
        last_day = (
            f"\n[Last day]\n- Day {days} must finish every activity before "
            f"{itinerary_config.last_day_end_override} (travel home)."
        )
    per_day_low = len(places) // max(days, 1)

    return f"""You are a travel itinerary optimizer.
Fit as many of the {len(places)} selected places as possible into a {days}-day trip while keeping
the pace comfortable and the routes short.

[Selected places]
{places_text}

[Conditions]
- {days} day(s)
- Party size: {filter_state.number_of_people}{mandatory_text}

[Time windows]
- Usable hours per day: {start} ~ {end}. Day 1 starts no earlier than {day1_start}.
- {start}-12:00 morning: sights, photo spots, culture, experiences
- 12:00-13:00 lunch: a FOOD place or a "MEAL" activity
- 13:00-18:00 afternoon: sights, cafes, shopping, healing
- 18:00-19:00 dinner: a FOOD place or a "MEAL" activity
- 19:00-{end} night: night spots, night views, cafes

[Durations]
- FOOD 60-90, CAFE 30-60, PHOTO 45-75, CULTURE/EXPERIENCE 60-120, HEALING/SHOPPING 45-90, NIGHT 45-90 minutes
- Allow 5-30 minutes of travel between places depending on distance (estimate from lat/lng).
- Spread places evenly: about {per_day_low}-{per_day_low + 2} places per day, grouping nearby places on the same day.

[Constraints]
- Each place_id may be used at most ONCE across all days.
- If there is no FOOD place for a meal window, leave it for other activities.
- "start_time" is always "HH:MM". The last activity must end by {end}.{last_day}

Output format (JSON):
{{"days":[{{"day":1,"slots":[{{"place_id":0,"start_time":"{day1_start}","duration_min":60,"activity":"VISIT"}}]}}]}}"""


def parse_llm_schedule(
    raw: str,
    places: Sequence[Place],
    days: int,
    auto_add_meals: bool,
) -> List[DaySchedule]:
    """Strictly read ``days[].slots[]``; raise ``ItineraryParseError`` on bad shape."""
    data = parse_json_object(raw)
    day_items = data.get("days")
    if not isinstance(day_items, list):
        raise ItineraryParseError("response has no 'days' array")

    used: set = set()
    schedules: List[DaySchedule] = []
    try:
        for idx, day_obj in enumerate(day_items[:days]):
            day_no = int(day_obj.get("day", idx + 1))
            slots: List[TimeSlot] = []
            for slot_obj in day_obj.get("slots") or []:
                activity = str(slot_obj.get("activity") or "VISIT").upper()
                if activity == "MEAL" and not auto_add_meals:
                    continue
                start = parse_hhmm(slot_obj["start_time"])
                minutes = int(slot_obj["duration_min"])
                place: Optional[Place] = None
                if activity == "VISIT":
                    place_idx = slot_obj.get("place_id", -1)
                    if isinstance(place_idx, bool) or not isinstance(place_idx, int):
                        continue
                    if not 0 <= place_idx < len(places):
                        continue
                    place = places[place_idx]
                    if place.id in used:
                        continue
                    used.add(place.id)
                elif activity not in ("MEAL", "TRANSPORT"):
                    continue
                slots.append(
                    TimeSlot(
                        start_time=format_hhmm(start),
                        end_time=format_hhmm(start + minutes),
                        place=place,
                        activity=activity,  # type: ignore[arg-type]
                        duration=minutes,
                    )
                )
            schedules.append(DaySchedule(day=day_no, time_slots=slots))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ItineraryParseError(str(exc)) from exc
    return schedules


class ItineraryPlanner:
    def __init__(
        self,
        llm: Optional[CompletionPort] = None,
        *,
        gap_minutes: int = config.ITINERARY_GAP_MINUTES,
        day_start_floor: str = config.ITINERARY_DAY_START_FLOOR,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.llm = llm
        self.gap_minutes = gap_minutes
        self.day_start_floor = day_start_floor
        self.clock = clock

    def day1_start(self) -> str:
        now = self.clock()
        return format_hhmm(max(now.hour * 60 + now.minute, parse_hhmm(self.day_start_floor)))

    async def generate(
        self,
        places: Sequence[Place],
        filter_state: FilterState,
        *,
        auto_add_meals: bool = False,
        itinerary_config: Optional[ItineraryConfig] = None,
        name: str = "",
    ) -> Itinerary:
        cfg = itinerary_config or ItineraryConfig()
        days = filter_state.duration.to_days()
        first_start = self.day1_start()
        logger.info(
            "Itinerary for %d place(s) over %d day(s), day1 start %s, meals=%s",
            len(places),
            days,
            first_start,
            auto_add_meals,
        )

        schedules = await self._plan_with_llm(places, filter_state, days, auto_add_meals, cfg, first_start)
        if schedules is None:
            schedules = plan_fallback(
                places,
                days,
                auto_add_meals=auto_add_meals,
                itinerary_config=cfg,
                day1_start=first_start,
                gap_minutes=self.gap_minutes,
            )
        return Itinerary(name=name, days=schedules)

    async def _plan_with_llm(
        self,
        places: Sequence[Place],
        filter_state: FilterState,
        days: int,
        auto_add_meals: bool,
        cfg: ItineraryConfig,
        first_start: str,
    ) -> Optional[List[DaySchedule]]:
        if self.llm is None or not places:
            return None
        prompt = build_itinerary_prompt(places, filter_state, days, cfg, first_start)
        try:
            raw = await self.llm.complete_json(prompt)
        except Exception:
            logger.warning("Itinerary LLM call failed; using fallback", exc_info=True)
            return None
        try:
            schedules = parse_llm_schedule(raw, places, days, auto_add_meals)
        except ItineraryParseError:
            logger.warning("Could not parse itinerary response; using fallback", exc_info=True)
            return None
        if not any(day.time_slots for day in schedules):
            logger.warning("Itinerary response placed nothing; using fallback")
            return None
        return self._shift_day1(schedules, first_start)

    def _shift_day1(self, schedules: List[DaySchedule], start: str) -> List[DaySchedule]:
        shifted: List[DaySchedule] = []
        for day in schedules:
            if day.day == 1 and day.time_slots:
                day = resequence_day(day, start_from=start, gap_minutes=self.gap_minutes)
            shifted.append(day)
        return shifted
