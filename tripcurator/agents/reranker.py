"""LLM rerank of candidate places.

The model is asked to reorder every candidate and justify each pick. Its
answer is trusted only as far as it can be reconciled with the candidate ids:
unknown ids are dropped, omitted candidates are appended in their original
order, and a positional score stands in wherever the model gave none.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from tripcurator import config
from tripcurator.llm import CompletionPort, parse_json_object
from tripcurator.logsetup import get_logger
from tripcurator.schemas import FilterState, Place, RankedPlace, RerankOutput, WeatherInfo

logger = get_logger(__name__)

FALLBACK_SCORE_BASE = 100
MAX_REASON_LENGTH = 80
AI_TOP_COUNT = 3
EMPTY_REASON = "(AI가 이유를 비웠습니다)"

RETRY_INSTRUCTION = (
    "\n\n[Additional instruction] Output a DIFFERENT order than before. "
    "Repeating the input order is not allowed."
)

CHAIN_PENALTY_RULE = """- Franchise penalty: if a name contains a chain brand (Starbucks, Mega Coffee, Ediya, Twosome Place,
  Paik's Coffee, Hollys, Coffee Bean, Gong Cha, Paul Bassett, Angel-in-us, Tom N Toms, The Venti, ...)
  it lacks local character, so RANK IT LOWER.
- Exception: a branch with a unique value (river view, rooftop, exhibition, limited menu) may stay high,
  but then the reason must state that value explicitly."""

POPULARITY_RULE = """- popScore (blog-search popularity) and popCount (number of blog posts) may be present.
- Higher values mean the place is mentioned more often. When other criteria are similar
  (category fit, companion, budget, time, weather), rank the more popular place higher."""


def _text(value: Any) -> str:
    if value is None:
        return "unspecified"
    return getattr(value, "value", None) or str(value)


def _format_candidate(idx: int, place: Place) -> str:
    rating = "-" if place.rating is None else str(place.rating)
    dist = "-" if place.distance_meters is None else str(place.distance_meters)
    pop_score = "-" if place.popularity_score is None else f"{place.popularity_score:.3f}"
    pop_count = "-" if place.popularity_count is None else str(place.popularity_count)
    return (
        f"- origIndex={idx}, id={place.id}, name={place.name}, cat={place.category.value}, "
        f"rating={rating}, distM={dist}, popScore={pop_score}, popCount={pop_count}"
    )


def build_prompt(filter_state: FilterState, weather: Optional[WeatherInfo], items: Sequence[Place]) -> str:
    if weather is not None:
        weather_text = f"- Current temperature: {weather.temp_c:.1f}C / condition: {weather.condition}"
    else:
        weather_text = "- No weather information"

    cats = ", ".join(c.value for c in filter_state.categories) or "unspecified"
    region = filter_state.effective_region() or "unspecified (use the given center)"

    note = filter_state.extra_note.strip()
    if note:
        note_block = (
            f'- Note written by the user:\n  "{note}"\n'
            "- If a place the note asks for is among the candidates, include it and rank it near the top.\n"
            "- Names not in the candidate list are hints only; prefer candidates with a similar mood,\n"
            "  location and price range."
        )
    else:
        note_block = "- No extra note"

    candidates_text = "\n".join(_format_candidate(idx, p) for idx, p in enumerate(items))

    return f"""You are a thoughtful local travel curator.
Reorder ALL of the candidate places below for this user, including every candidate exactly once.
For each place write a "reason": one natural sentence in Korean, 20-80 characters.

[User]
- Region: {region}
- Preferred categories: {cats}
- Companion: {_text(filter_state.companion)}
- Duration: {_text(filter_state.duration)}
- Budget per person: {filter_state.budget_per_person} KRW
- Party size: {filter_state.number_of_people}

[Weather]
{weather_text}

[User note]
{note_block}

[Criteria]
- Prefer places a local would call worth visiting on a trip.
- Weigh local uniqueness, rarity, review mood, weather fit (indoor/outdoor), companion, time and budget.
{CHAIN_PENALTY_RULE}
{POPULARITY_RULE}
- Keep the list diverse; do not cluster one kind of place.
- reason must not be blank or only symbols.
- Use every id exactly as given.
- A result identical to the input order scores zero. More than half of the positions must change.
- Give an integer score 0-100 when you can (higher is better).

[Candidates]
{candidates_text}

Output format:
{{"ordered":[{{"id":"<place_id>","score":95,"reason":"..."}}]}}"""


def sanitize_reason(src: str, max_len: int = MAX_REASON_LENGTH) -> str:
    one_line = re.sub(r"\s+", " ", src or "")
    one_line = "".join(ch for ch in one_line if ch.isprintable()).strip()
    if not one_line:
        return EMPTY_REASON
    if len(one_line) <= max_len:
        return one_line
    return one_line[: max_len - 1] + "…"


def parse_ranked(raw: str) -> List[RankedPlace]:
    """Best-effort read of ``{"ordered": [{id, score?, reason?}, ...]}``."""
    data = parse_json_object(raw)
    entries = data.get("ordered")
    if not isinstance(entries, list):
        return []

    ranked: List[RankedPlace] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        place_id = str(entry.get("id") or "").strip()
        if not place_id:
            continue
        score = entry.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = None
        reason = entry.get("reason")
        reason = reason if isinstance(reason, str) and reason.strip() else None
        ranked.append(RankedPlace(id=place_id, score=None if score is None else int(score), reason=reason))
    return ranked


def resolve_id(model_id: str, candidates: Sequence[Place], known_ids: Dict[str, Place]) -> Optional[str]:
    """Direct id match first, then ``p<index>`` placeholders."""
    if model_id in known_ids:
        return model_id
    if model_id.startswith("p") and model_id[1:].isdigit():
        idx = int(model_id[1:])
        if 0 <= idx < len(candidates):
            return candidates[idx].id
    return None


def same_order(a: Sequence[Place], b: Sequence[Place]) -> bool:
    return [p.id for p in a] == [p.id for p in b]


def assemble(raw: str, candidates: Sequence[Place]) -> RerankOutput:
    """Reconcile one model response with the candidate list."""
    ranked = parse_ranked(raw)
    by_id = {p.id: p for p in candidates}

    used: set = set()
    ordered: List[Place] = []
    scores: Dict[str, int] = {}
    reasons: Dict[str, str] = {}

    for item in ranked:
        real_id = resolve_id(item.id, candidates, by_id)
        if real_id is None:
            continue
        if item.score is not None and real_id not in scores:
            scores[real_id] = item.score
        if item.reason and real_id not in reasons:
            reasons[real_id] = sanitize_reason(item.reason)
        if real_id not in used:
            used.add(real_id)
            ordered.append(by_id[real_id])

    for place in candidates:
        if place.id not in used:
            used.add(place.id)
            ordered.append(place)

    scored = [
        p.model_copy(update={"score": float(scores.get(p.id, FALLBACK_SCORE_BASE - idx))})
        for idx, p in enumerate(ordered)
    ]

    ai_used = bool(ranked) and (not same_order(scored, candidates) or bool(reasons))
    top_ids = [p.id for p in scored[:AI_TOP_COUNT]] if ai_used else []
    return RerankOutput(places=scored, reasons=reasons, ai_top_ids=top_ids)


class PlaceReranker:
    """Runs the rerank protocol against a ``CompletionPort``."""

    def __init__(self, llm: CompletionPort, *, max_candidates: int = config.MAX_CANDIDATES_IN_PROMPT):
        self.llm = llm
        self.max_candidates = max_candidates

    async def _call(self, prompt: str) -> str:
        try:
            return await self.llm.complete_json(prompt)
        except Exception:
            logger.warning("Completion call failed; treating as empty response", exc_info=True)
            return "{}"

    async def rerank(
        self,
        filter_state: FilterState,
        weather: Optional[WeatherInfo],
        candidates: Sequence[Place],
    ) -> RerankOutput:
        if not candidates:
            return RerankOutput()

        capped = list(candidates[: self.max_candidates])
        overflow = list(candidates[self.max_candidates :])
        logger.debug("Before rerank ids: %s", [p.id for p in capped])

        prompt = build_prompt(filter_state, weather, capped)
        result = assemble(await self._call(prompt), capped)

        if same_order(result.places, capped):
            logger.warning("Rerank kept the input order; retrying once with a stronger instruction")
            retry = assemble(await self._call(prompt + RETRY_INSTRUCTION), capped)
            if not same_order(retry.places, capped):
                result = retry

        logger.info(
            "Rerank done: %d places, %d reasons, ai_top=%s",
            len(result.places),
            len(result.reasons),
            result.ai_top_ids,
        )

        if overflow:
            start = len(result.places)
            tail = [
                p.model_copy(update={"score": float(FALLBACK_SCORE_BASE - (start + idx))})
                for idx, p in enumerate(overflow)
            ]
            result = result.model_copy(update={"places": list(result.places) + tail})
        return result
