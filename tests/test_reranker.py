import asyncio
import json
from typing import List

from tripcurator.agents.reranker import PlaceReranker, assemble, build_prompt, sanitize_reason
from tripcurator.schemas import Category, FilterState, Place, WeatherInfo


def _place(pid, category=Category.FOOD):
    return Place(id=pid, name=f"name-{pid}", category=category, lat=37.5, lng=127.0)


X, Y, Z = _place("x"), _place("y", Category.CAFE), _place("z", Category.PHOTO)


class ScriptedLLM:
    def __init__(self, responses: List[object]):
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def complete_json(self, prompt: str) -> str:
        self.prompts.append(prompt)
        item = self.responses.pop(0) if self.responses else "{}"
        if isinstance(item, Exception):
            raise item
        return item


def _ordered(*entries):
    return json.dumps({"ordered": [dict(e) for e in entries]}, ensure_ascii=False)


def test_placeholder_ids_resolve_and_missing_are_appended():
    out = assemble('{"ordered":[{"id":"p2","score":90},{"id":"p0"}]}', [X, Y, Z])

    assert [p.id for p in out.places] == ["z", "x", "y"]
    assert [p.score for p in out.places] == [90, 99, 98]
    assert out.ai_top_ids == ["z", "x", "y"]


def test_direct_ids_win_and_unknown_or_duplicate_ids_are_dropped():
    raw = _ordered(
        {"id": "ghost", "score": 100},
        {"id": "y", "reason": "  조용한\n 골목 카페  "},
        {"id": "p1", "score": 10},
        {"id": "", "score": 5},
    )
    out = assemble("sure thing: " + raw, [X, Y, Z])

    assert [p.id for p in out.places] == ["y", "x", "z"]
    assert out.places[0].score == 10
    assert out.reasons == {"y": "조용한 골목 카페"}


def test_output_always_has_the_input_id_set():
    for raw in ["", "garbage", '{"ordered": "nope"}', _ordered({"id": "p7"}), _ordered({"id": "z"}, {"id": "z"})]:
        out = assemble(raw, [X, Y, Z])
        assert sorted(p.id for p in out.places) == ["x", "y", "z"]


def test_sanitize_reason_single_line_and_truncated():
    assert sanitize_reason("a\tb\n\nc") == "a b c"
    long = "가" * 100
    assert sanitize_reason(long) == "가" * 79 + "…"
    assert sanitize_reason("   ") == "(AI가 이유를 비웠습니다)"


def test_unchanged_order_retries_exactly_once():
    async def run() -> None:
        llm = ScriptedLLM(["{}", "{}", "{}"])
        out = await PlaceReranker(llm).rerank(FilterState(), None, [X, Y, Z])

        assert len(llm.prompts) == 2
        assert "do not" in llm.prompts[1].lower() or "not allowed" in llm.prompts[1]
        assert [p.id for p in out.places] == ["x", "y", "z"]
        assert [p.score for p in out.places] == [100, 99, 98]
        assert out.ai_top_ids == []

    asyncio.run(run())


def test_retry_result_adopted_only_when_it_differs():
    async def run() -> None:
        same = _ordered({"id": "x"}, {"id": "y"}, {"id": "z"})
        changed = _ordered({"id": "y", "score": 95}, {"id": "x"}, {"id": "z"})

        adopted = await PlaceReranker(ScriptedLLM([same, changed])).rerank(FilterState(), None, [X, Y, Z])
        assert [p.id for p in adopted.places] == ["y", "x", "z"]
        assert adopted.ai_top_ids == ["y", "x", "z"]

        kept = await PlaceReranker(ScriptedLLM([same, same])).rerank(FilterState(), None, [X, Y, Z])
        assert [p.id for p in kept.places] == ["x", "y", "z"]

    asyncio.run(run())


def test_reasons_alone_mark_ai_as_used():
    out = assemble(_ordered({"id": "x", "reason": "현지인 맛집"}, {"id": "y"}, {"id": "z"}), [X, Y, Z])
    assert [p.id for p in out.places] == ["x", "y", "z"]
    assert out.ai_top_ids == ["x", "y", "z"]


def test_port_exception_degrades_to_positional_scores():
    async def run() -> None:
        llm = ScriptedLLM([RuntimeError("vendor down"), RuntimeError("still down")])
        out = await PlaceReranker(llm).rerank(FilterState(), None, [X, Y, Z])
        assert [p.id for p in out.places] == ["x", "y", "z"]
        assert out.reasons == {}

    asyncio.run(run())


def test_candidates_beyond_prompt_cap_are_appended():
    async def run() -> None:
        places = [_place(f"c{i}") for i in range(5)]
        llm = ScriptedLLM([_ordered({"id": "c2"}, {"id": "c0"}, {"id": "c1"})])
        out = await PlaceReranker(llm, max_candidates=3).rerank(FilterState(), None, places)

        assert [p.id for p in out.places] == ["c2", "c0", "c1", "c3", "c4"]
        assert [p.score for p in out.places] == [100, 99, 98, 97, 96]
        assert "c3" not in llm.prompts[0]

    asyncio.run(run())


def test_prompt_carries_candidates_filter_and_weather():
    filter_state = FilterState(categories=[Category.CAFE], extra_note="루프탑 카페 꼭 가보고 싶어요")
    weather = WeatherInfo(temp_c=18.25, condition="Clear")
    prompt = build_prompt(filter_state, weather, [X.model_copy(update={"popularity_score": 1.5, "popularity_count": 30})])

    assert "origIndex=0, id=x" in prompt
    assert "popScore=1.500, popCount=30" in prompt
    assert "18.2C" in prompt or "18.3C" in prompt
    assert "루프탑 카페" in prompt
    assert "CAFE" in prompt
    assert '{"ordered":[{"id":"<place_id>","score":95,"reason":"..."}]}' in prompt
