"""Weather / companion / AI fit labels shown next to each recommendation.

All thresholds live in small frozen rule objects so product policy can be
tuned without touching the pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from tripcurator.schemas import Category, Companion, FilterState, Place, WeatherInfo


class FitLabel(str, Enum):
    HIGH = "상"
    MEDIUM = "중"
    LOW = "하"


@dataclass(frozen=True)
class WeatherFitRules:
    outdoor: FrozenSet[Category] = frozenset({Category.PHOTO, Category.HEALING, Category.EXPERIENCE})
    indoor: FrozenSet[Category] = frozenset(
        {Category.CAFE, Category.FOOD, Category.SHOPPING, Category.STAY, Category.CULTURE}
    )
    wet_keywords: Tuple[str, ...] = ("비", "소나기", "눈", "rain", "drizzle", "thunderstorm", "snow")
    # (upper temperature bound inclusive, indoor label, outdoor label); checked in order
    temperature_bands: Tuple[Tuple[float, FitLabel, FitLabel], ...] = (
        (3.0, FitLabel.HIGH, FitLabel.LOW),
        (12.0, FitLabel.HIGH, FitLabel.MEDIUM),
        (22.0, FitLabel.MEDIUM, FitLabel.HIGH),
        (28.0, FitLabel.MEDIUM, FitLabel.MEDIUM),
    )
    hot_indoor: FitLabel = FitLabel.HIGH
    hot_outdoor: FitLabel = FitLabel.LOW


@dataclass(frozen=True)
class CompanionFitRules:
    category_points: Mapping[Category, int] = field(
        default_factory=lambda: {
            Category.CAFE: 2,
            Category.FOOD: 2,
            Category.PHOTO: 2,
            Category.HEALING: 2,
            Category.EXPERIENCE: 2,
            Category.SHOPPING: 1,
            Category.STAY: 1,
        }
    )
    # (min rating, points), first match wins
    rating_points: Tuple[Tuple[float, int], ...] = ((4.5, 2), (4.0, 1))
    low_rating_range: Tuple[float, float] = (0.1, 3.5)
    low_rating_penalty: int = -1
    blog_points: Tuple[Tuple[int, int], ...] = ((200, 2), (80, 1))
    # added on top of category_points for the party type
    companion_points: Mapping[Companion, Mapping[Category, int]] = field(
        default_factory=lambda: {
            Companion.COUPLE: {Category.NIGHT: 1},
            Companion.FRIENDS: {Category.NIGHT: 1},
            Companion.FAMILY: {Category.EXPERIENCE: 1, Category.NIGHT: -1},
        }
    )
    high_at_least: int = 4
    low_at_most: int = 1


@dataclass(frozen=True)
class AiFitRules:
    high_ratio: float = 0.2
    medium_ratio: float = 0.7
    strong_negative: Tuple[str, ...] = (
        "추천하지 않습니다", "비추천", "권하기 어렵", "실망", "별로 추천", "다시 찾지 않을",
        "not recommend", "disappointing", "hard to recommend",
    )
    mild_negative: Tuple[str, ...] = (
        "특별한 매력은 없는", "평범한 곳", "큰 특징은 없", "무난한 곳", "아주 특별하진 않", "그냥 평범한",
        "nothing special", "ordinary place", "fairly average",
    )


DEFAULT_WEATHER_RULES = WeatherFitRules()
DEFAULT_COMPANION_RULES = CompanionFitRules()
DEFAULT_AI_RULES = AiFitRules()


def weather_fit(place: Place, weather: Optional[WeatherInfo], rules: WeatherFitRules = DEFAULT_WEATHER_RULES) -> FitLabel:
    if weather is None:
        return FitLabel.MEDIUM
    is_indoor = place.category in rules.indoor
    is_outdoor = place.category in rules.outdoor
    if not is_indoor and not is_outdoor:
        return FitLabel.MEDIUM

    condition = (weather.condition or "").lower()
    if any(keyword in condition for keyword in rules.wet_keywords):
        return FitLabel.HIGH if is_indoor else FitLabel.LOW

    for upper, indoor_label, outdoor_label in rules.temperature_bands:
        if weather.temp_c <= upper:
            return indoor_label if is_indoor else outdoor_label
    return rules.hot_indoor if is_indoor else rules.hot_outdoor


def companion_fit(
    filter_state: FilterState,
    place: Place,
    rules: CompanionFitRules = DEFAULT_COMPANION_RULES,
) -> FitLabel:
    """Category, rating and blog-count points, shifted by the party type."""
    score = rules.category_points.get(place.category, 0)
    score += rules.companion_points.get(filter_state.companion, {}).get(place.category, 0)

    rating = place.rating or 0.0
    for threshold, points in rules.rating_points:
        if rating >= threshold:
            score += points
            break
    else:
        low, high = rules.low_rating_range
        if low <= rating <= high:
            score += rules.low_rating_penalty

    blogs = place.popularity_count or 0
    for threshold, points in rules.blog_points:
        if blogs >= threshold:
            score += points
            break

    if score >= rules.high_at_least:
        return FitLabel.HIGH
    if score <= rules.low_at_most:
        return FitLabel.LOW
    return FitLabel.MEDIUM


def ai_fit_labels(ordered: Sequence[Place], rules: AiFitRules = DEFAULT_AI_RULES) -> Dict[str, FitLabel]:
    """Relative-rank label: top 20% high, next 50% medium, rest low."""
    if not ordered:
        return {}
    if len(ordered) == 1:
        return {ordered[0].id: FitLabel.HIGH}

    denom = len(ordered) - 1
    labels: Dict[str, FitLabel] = {}
    for idx, place in enumerate(ordered):
        ratio = idx / denom
        if ratio <= rules.high_ratio:
            labels[place.id] = FitLabel.HIGH
        elif ratio <= rules.medium_ratio:
            labels[place.id] = FitLabel.MEDIUM
        else:
            labels[place.id] = FitLabel.LOW
    return labels


def adjust_ai_fit_by_text(
    base: Optional[FitLabel],
    detail: str,
    rules: AiFitRules = DEFAULT_AI_RULES,
) -> Optional[FitLabel]:
    if base is None or not (detail or "").strip():
        return base
    lowered = detail.lower()
    if any(phrase in lowered for phrase in rules.strong_negative):
        return FitLabel.LOW
    if any(phrase in lowered for phrase in rules.mild_negative):
        return FitLabel.MEDIUM if base is FitLabel.HIGH else base
    return base


def summary_line(weather_label: FitLabel, companion_label: FitLabel, ai_label: Optional[FitLabel] = None) -> str:
    parts: List[str] = [
        f"날씨 적합도 {weather_label.value}",
        f"동행자 적합도 {companion_label.value}",
    ]
    if ai_label is not None:
        parts.append(f"AI 추천도 {ai_label.value}")
    return ", ".join(parts)
