import asyncio
from typing import Any, Dict, List

import httpx

from tripcurator.tools.naver_search import NaverBlogSearch
from tripcurator.tools.weather import OpenWeatherClient


class DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class DummyAsyncClient:
    def __init__(self, payload: Any, calls: List[Dict[str, Any]], *args, **kwargs):
        self.payload = payload
        self.calls = calls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def get(self, url, params=None, headers=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        if isinstance(self.payload, Exception):
            raise self.payload
        return DummyResponse(self.payload)


def _install(monkeypatch, payload):
    calls: List[Dict[str, Any]] = []
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: DummyAsyncClient(payload, calls, *a, **kw))
    return calls


def test_weather_reads_metric_temperature_and_condition(monkeypatch):
    calls = _install(monkeypatch, {"main": {"temp": 17.4}, "weather": [{"main": "Rain", "icon": "10d"}]})

    async def run() -> None:
        weather = await OpenWeatherClient("key").current(35.1, 129.0)
        assert weather.temp_c == 17.4
        assert weather.condition == "Rain"
        assert weather.icon == "10d"

    asyncio.run(run())
    assert calls[0]["params"]["units"] == "metric"
    assert calls[0]["params"]["lon"] == 129.0


def test_weather_failures_are_none(monkeypatch):
    _install(monkeypatch, {"weather": []})

    async def run() -> None:
        assert await OpenWeatherClient("key").current(0, 0) is None
        assert await OpenWeatherClient(None).current(0, 0) is None

    asyncio.run(run())

    _install(monkeypatch, httpx.ConnectError("down"))
    assert asyncio.run(OpenWeatherClient("key").current(0, 0)) is None


def test_blog_count_sends_credentials_and_reads_total(monkeypatch):
    calls = _install(monkeypatch, {"total": 1234, "items": []})

    count = asyncio.run(NaverBlogSearch("id", "secret").blog_count("부산 할매국밥"))

    assert count == 1234
    assert calls[0]["headers"] == {"X-Naver-Client-Id": "id", "X-Naver-Client-Secret": "secret"}
    assert calls[0]["params"]["query"] == "부산 할매국밥"


def test_blog_count_failures_are_none(monkeypatch):
    calls = _install(monkeypatch, httpx.ReadTimeout("slow"))

    assert asyncio.run(NaverBlogSearch("id", "secret").blog_count("q")) is None
    assert asyncio.run(NaverBlogSearch(None, "secret").blog_count("q")) is None
    assert asyncio.run(NaverBlogSearch("id", "secret").blog_count("   ")) is None
    assert len(calls) == 1


def test_non_object_weather_body_is_none(monkeypatch):
    _install(monkeypatch, ["not", "an", "object"])
    assert asyncio.run(OpenWeatherClient("key").current(37.5, 127.0)) is None

    _install(monkeypatch, {"main": {"temp": 3.0}, "weather": ["Clear"]})
    assert asyncio.run(OpenWeatherClient("key").current(37.5, 127.0)) is None
