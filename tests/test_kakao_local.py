import asyncio
from typing import Any, Dict, List

import httpx

from tripcurator import config
from tripcurator.schemas import Category
from tripcurator.tools.kakao_local import KakaoLocalClient, document_to_place


class DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class DummyAsyncClient:
    """Serves canned payloads keyed by (path suffix, page)."""

    def __init__(self, routes: Dict[Any, Any], calls: List[Dict[str, Any]], *args, **kwargs):
        self.routes = routes
        self.calls = calls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def get(self, url, params=None, headers=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        for (suffix, page), payload in self.routes.items():
            if url.endswith(suffix) and (page is None or params.get("page") == page):
                if isinstance(payload, Exception):
                    raise payload
                return DummyResponse(payload)
        return DummyResponse({"documents": [], "meta": {"is_end": True}})


def _doc(pid, name, code, distance, lat="37.5", lng="127.0"):
    return {
        "id": pid,
        "place_name": name,
        "category_group_code": code,
        "x": lng,
        "y": lat,
        "distance": str(distance),
        "road_address_name": "서울 성동구 성수이로 1",
    }


def _install(monkeypatch, routes):
    calls: List[Dict[str, Any]] = []
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: DummyAsyncClient(routes, calls, *a, **kw))
    return calls


def test_geocode_returns_first_match(monkeypatch):
    async def run() -> None:
        calls = _install(
            monkeypatch,
            {("address.json", None): {"documents": [{"x": "127.05", "y": "37.54"}, {"x": "0", "y": "0"}]}},
        )
        client = KakaoLocalClient("kakao-key")

        assert await client.geocode("서울 성수동") == (37.54, 127.05)
        assert calls[0]["headers"]["Authorization"] == "KakaoAK kakao-key"
        assert calls[0]["params"] == {"query": "서울 성수동"}

    asyncio.run(run())


def test_geocode_failure_is_none(monkeypatch):
    async def run() -> None:
        _install(monkeypatch, {("address.json", None): httpx.ConnectError("unreachable")})
        client = KakaoLocalClient("kakao-key")
        assert await client.geocode("서울") is None
        assert await KakaoLocalClient(None).geocode("서울") is None

    asyncio.run(run())


def test_category_search_pages_dedupes_and_filters(monkeypatch):
    async def run() -> None:
        calls = _install(
            monkeypatch,
            {
                ("category.json", 1): {
                    "documents": [
                        _doc("1", "숲길 공원", "AT4", 900),
                        _doc("2", "본사 구내식당", "AT4", 10),
                        _doc("3", "호수 전망대", "AT4", 300),
                    ],
                    "meta": {"is_end": False},
                },
                ("category.json", 2): {
                    "documents": [_doc("1", "숲길 공원", "AT4", 900), _doc("4", "정원", "AT4", 50)],
                    "meta": {"is_end": True},
                },
            },
        )
        client = KakaoLocalClient("kakao-key")
        places = await client.search_by_category(37.5, 127.0, Category.HEALING, radius_meters=8000, max_pages=3)

        assert [p.id for p in places] == ["4", "3", "1"]
        assert all(p.category is Category.HEALING for p in places)
        assert [c["params"]["page"] for c in calls] == [1, 2]
        assert calls[0]["params"]["category_group_code"] == "AT4"
        assert calls[0]["params"]["x"] == 127.0 and calls[0]["params"]["y"] == 37.5
        assert calls[0]["params"]["sort"] == "distance"

    asyncio.run(run())


def test_category_search_http_error_degrades_to_empty(monkeypatch):
    async def run() -> None:
        _install(monkeypatch, {("category.json", None): httpx.ReadTimeout("slow")})
        client = KakaoLocalClient("kakao-key")
        assert await client.search_by_category(37.5, 127.0, Category.FOOD) == []

    asyncio.run(run())


def test_document_mapping_uses_code_table():
    shop = document_to_place(_doc("9", "마트", "CS2", 10))
    assert shop is not None and shop.category is Category.SHOPPING
    assert document_to_place(_doc("9", "뭔가", "ZZ9", 10)).category is Category.CULTURE
    assert document_to_place({"id": "x", "place_name": "no coords"}) is None


def test_non_object_bodies_degrade_to_empty(monkeypatch):
    async def run() -> None:
        _install(
            monkeypatch,
            {("category.json", None): ["not", "an", "object"], ("address.json", None): ["nope"]},
        )
        client = KakaoLocalClient("kakao-key")
        assert await client.search_by_category(37.5, 127.0, Category.FOOD) == []
        assert await client.geocode("서울") is None

    asyncio.run(run())


def test_default_radius_comes_from_config(monkeypatch):
    async def run() -> None:
        calls = _install(monkeypatch, {})
        await KakaoLocalClient("kakao-key").search_by_category(37.5, 127.0, Category.CAFE)
        assert calls[0]["params"]["radius"] == config.BASE_RADIUS_METERS

    asyncio.run(run())
