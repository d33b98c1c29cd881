import pytest

from tripcurator.agents.fit_labels import (
    FitLabel,
    WeatherFitRules,
    adjust_ai_fit_by_text,
    ai_fit_labels,
    companion_fit,
    summary_line,
    weather_fit,
)
from tripcurator.schemas import Category, Companion, FilterState, Place, WeatherInfo

H, M, L = FitLabel.HIGH, FitLabel.MEDIUM, FitLabel.LOW


def _place(pid="p", category=Category.CAFE, **kwargs):
    return Place(id=pid, name=pid, category=category, lat=37.5, lng=127.0, **kwargs)


@pytest.mark.parametrize(
    "temp,indoor,outdoor",
    [(0.0, H, L), (3.0, H, L), (10.0, H, M), (20.0, M, H), (25.0, M, M), (31.0, H, L)],
)
def test_weather_fit_follows_temperature_bands(temp, indoor, outdoor):
    weather = WeatherInfo(temp_c=temp, condition="Clear")
    assert weather_fit(_place(category=Category.CAFE), weather) is indoor
    assert weather_fit(_place(category=Category.PHOTO), weather) is outdoor


def test_wet_weather_favours_indoor():
    rainy = WeatherInfo(temp_c=20.0, condition="Rain")
    assert weather_fit(_place(category=Category.FOOD), rainy) is H
    assert weather_fit(_place(category=Category.HEALING), rainy) is L
    assert weather_fit(_place(category=Category.HEALING), WeatherInfo(temp_c=5.0, condition="소나기")) is L


def test_weather_fit_neutral_cases():
    assert weather_fit(_place(category=Category.PHOTO), None) is M
    assert weather_fit(_place(category=Category.NIGHT), WeatherInfo(temp_c=20.0, condition="Clear")) is M


def test_weather_rules_are_tunable():
    rules = WeatherFitRules(hot_outdoor=FitLabel.MEDIUM)
    weather = WeatherInfo(temp_c=33.0, condition="Clear")
    assert weather_fit(_place(category=Category.PHOTO), weather, rules) is M


def test_companion_fit_scores_category_rating_and_blogs():
    filter_state = FilterState()
    assert companion_fit(filter_state, _place(category=Category.CAFE, rating=4.6)) is H
    assert companion_fit(filter_state, _place(category=Category.SHOPPING, rating=3.0)) is L
    assert companion_fit(filter_state, _place(category=Category.NIGHT, rating=4.2, popularity_count=100)) is M
    assert companion_fit(filter_state, _place(category=Category.FOOD, popularity_count=250)) is H


def test_ai_fit_is_relative_rank():
    assert ai_fit_labels([]) == {}
    assert ai_fit_labels([_place("only")]) == {"only": H}

    ordered = [_place(f"p{i}") for i in range(6)]
    labels = ai_fit_labels(ordered)
    assert [labels[p.id] for p in ordered] == [H, H, M, M, L, L]


def test_negative_reason_text_lowers_ai_fit():
    assert adjust_ai_fit_by_text(H, "솔직히 비추천하는 곳") is L
    assert adjust_ai_fit_by_text(M, "Honestly I would not recommend it") is L
    assert adjust_ai_fit_by_text(H, "무난한 곳이지만 가까워요") is M
    assert adjust_ai_fit_by_text(L, "무난한 곳") is L
    assert adjust_ai_fit_by_text(H, "   ") is H
    assert adjust_ai_fit_by_text(None, "비추천") is None


def test_summary_line_format():
    assert summary_line(H, M) == "날씨 적합도 상, 동행자 적합도 중"
    assert summary_line(H, M, L) == "날씨 적합도 상, 동행자 적합도 중, AI 추천도 하"


def test_companion_type_shifts_the_score():
    night = _place(category=Category.NIGHT, rating=4.6, popularity_count=100)
    assert companion_fit(FilterState(companion=Companion.SOLO), night) is M
    assert companion_fit(FilterState(companion=Companion.COUPLE), night) is H

    workshop = _place(category=Category.EXPERIENCE, rating=4.2)
    assert companion_fit(FilterState(), workshop) is M
    assert companion_fit(FilterState(companion=Companion.FAMILY), workshop) is H
    assert companion_fit(FilterState(companion=Companion.FAMILY), night) is M
