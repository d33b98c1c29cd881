import asyncio
import json
from datetime import datetime

import pytest

from tripcurator.agents.itinerary_planner import (
    ItineraryParseError,
    ItineraryPlanner,
    format_hhmm,
    parse_hhmm,
    parse_llm_schedule,
    plan_fallback,
    resequence_day,
    update_slot_duration,
)
from tripcurator.schemas import Category, DaySchedule, FilterState, ItineraryConfig, Place, TimeSlot, TripDuration


def _place(pid, category):
    return Place(id=pid, name=pid, category=category, lat=37.5, lng=127.0)


PLACES = [
    _place("c1", Category.CULTURE),
    _place("p1", Category.PHOTO),
    _place("f1", Category.FOOD),
    _place("cafe1", Category.CAFE),
    _place("n1", Category.NIGHT),
    _place("s1", Category.STAY),
]


def _clock(hour, minute=0):
    return lambda: datetime(2026, 5, 1, hour, minute)


def _timeline(day):
    return [
        (slot.place.id if slot.place else slot.activity, slot.start_time, slot.end_time)
        for slot in day.time_slots
    ]


class ScriptedLLM:
    def __init__(self, response):
        self.response = response
        self.prompts = []

    async def complete_json(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_time_helpers():
    assert parse_hhmm("09:05") == 545
    assert format_hhmm(25 * 60 + 3) == "01:03"
    for bad in ["", "9", "24:00", "12:60", "ab:cd"]:
        with pytest.raises(ValueError):
            parse_hhmm(bad)


def test_fallback_fills_windows_in_order():
    async def run() -> None:
        planner = ItineraryPlanner(None, clock=_clock(9))
        itinerary = await planner.generate(PLACES, FilterState(duration=TripDuration.DAY), name="day out")

        assert itinerary.name == "day out"
        assert len(itinerary.days) == 1
        assert _timeline(itinerary.days[0]) == [
            ("c1", "10:00", "11:15"),
            ("f1", "12:00", "13:00"),
            ("p1", "13:00", "13:45"),
            ("cafe1", "13:55", "14:40"),
            ("n1", "19:00", "20:00"),
        ]
        assert "s1" not in itinerary.place_ids()

    asyncio.run(run())


def test_fallback_adds_meal_for_empty_dinner_window():
    async def run() -> None:
        planner = ItineraryPlanner(None, clock=_clock(9))
        itinerary = await planner.generate(PLACES, FilterState(), auto_add_meals=True)

        meals = [slot for slot in itinerary.days[0].time_slots if slot.activity == "MEAL"]
        assert [(m.start_time, m.end_time, m.place) for m in meals] == [("18:00", "19:00", None)]

    asyncio.run(run())


def test_late_start_skips_earlier_windows():
    async def run() -> None:
        planner = ItineraryPlanner(None, clock=_clock(15))
        itinerary = await planner.generate(PLACES, FilterState())

        starts = [parse_hhmm(slot.start_time) for slot in itinerary.days[0].time_slots]
        assert starts and min(starts) >= 15 * 60
        assert ("f1", "18:00", "19:00") in _timeline(itinerary.days[0])

    asyncio.run(run())


def test_multi_day_uses_each_place_once_and_honours_last_day_end():
    places = [_place(f"o{i}", Category.PHOTO) for i in range(20)] + [_place(f"f{i}", Category.FOOD) for i in range(4)]
    days = plan_fallback(
        places,
        3,
        itinerary_config=ItineraryConfig(last_day_end_override="16:00"),
        day1_start="10:00",
    )

    assert [d.day for d in days] == [1, 2, 3]
    used = [slot.place.id for d in days for slot in d.time_slots if slot.place]
    assert len(used) == len(set(used))
    slot_ids = [slot.id for d in days for slot in d.time_slots]
    assert len(slot_ids) == len(set(slot_ids))
    assert all(parse_hhmm(slot.end_time) <= 16 * 60 for slot in days[-1].time_slots)
    assert days[1].time_slots[0].start_time == "10:00"


def test_llm_schedule_is_deduped_and_day_one_shifted():
    async def run() -> None:
        response = json.dumps(
            {
                "days": [
                    {
                        "day": 1,
                        "slots": [
                            {"place_id": 1, "start_time": "09:00", "duration_min": 45, "activity": "VISIT"},
                            {"place_id": 1, "start_time": "10:00", "duration_min": 45, "activity": "VISIT"},
                            {"place_id": 99, "start_time": "10:30", "duration_min": 45},
                            {"place_id": 0, "start_time": "11:00", "duration_min": 75},
                            {"start_time": "12:00", "duration_min": 60, "activity": "MEAL"},
                        ],
                    }
                ]
            }
        )
        llm = ScriptedLLM(response)
        planner = ItineraryPlanner(llm, clock=_clock(11, 30))
        itinerary = await planner.generate(PLACES, FilterState(mandatory_place="한강공원"))

        assert _timeline(itinerary.days[0]) == [("p1", "11:30", "12:15"), ("c1", "12:25", "13:40")]
        assert "Must visit: 한강공원" in llm.prompts[0]
        assert "Day 1 starts no earlier than 11:30" in llm.prompts[0]

    asyncio.run(run())


@pytest.mark.parametrize(
    "response",
    [
        RuntimeError("model offline"),
        '{"plan": []}',
        '{"days": [{"day": 1, "slots": [{"start_time": "12:00", "duration_min": 60, "activity": "MEAL"}]}]}',
        '{"days": [{"day": 1, "slots": [{"place_id": 0, "start_time": "late", "duration_min": 60}]}]}',
    ],
)
def test_llm_problems_fall_back_to_window_scheduler(response):
    async def run() -> None:
        planner = ItineraryPlanner(ScriptedLLM(response), clock=_clock(9))
        itinerary = await planner.generate(PLACES, FilterState())
        assert _timeline(itinerary.days[0])[0] == ("c1", "10:00", "11:15")

    asyncio.run(run())


def test_parse_llm_schedule_rejects_bad_shape():
    with pytest.raises(ItineraryParseError):
        parse_llm_schedule('{"days": "soon"}', PLACES, 1, False)
    with pytest.raises(ItineraryParseError):
        parse_llm_schedule('{"days": [{"slots": [{"place_id": 0}]}]}', PLACES, 1, False)


def test_parse_llm_schedule_keeps_only_requested_days():
    raw = json.dumps({"days": [{"day": i + 1, "slots": []} for i in range(4)]})
    assert [d.day for d in parse_llm_schedule(raw, PLACES, 2, True)] == [1, 2]


def _day():
    return DaySchedule(
        day=1,
        time_slots=[
            TimeSlot(start_time="09:00", end_time="10:00", place=PLACES[0], duration=60),
            TimeSlot(start_time="13:00", end_time="13:30", place=PLACES[1], duration=30),
            TimeSlot(start_time="15:00", end_time="16:00", activity="MEAL", duration=60),
        ],
    )


def test_resequence_keeps_slots_and_packs_times():
    day = _day()
    result = resequence_day(day, start_from="10:00", gap_minutes=15)

    assert [s.id for s in result.time_slots] == [s.id for s in day.time_slots]
    assert [(s.start_time, s.end_time) for s in result.time_slots] == [
        ("10:00", "11:00"),
        ("11:15", "11:45"),
        ("12:00", "13:00"),
    ]
    assert day.time_slots[0].start_time == "09:00"
    assert resequence_day(DaySchedule(day=2)).time_slots == []


def test_update_slot_duration_resequences_from_first_slot():
    day = _day()
    target = day.time_slots[0].id
    result = update_slot_duration(day, target, 90, gap_minutes=10)

    assert [(s.start_time, s.end_time) for s in result.time_slots] == [
        ("09:00", "10:30"),
        ("10:40", "11:10"),
        ("11:20", "12:20"),
    ]
    with pytest.raises(KeyError):
        update_slot_duration(day, "missing", 30)
    with pytest.raises(ValueError):
        update_slot_duration(day, target, -5)
