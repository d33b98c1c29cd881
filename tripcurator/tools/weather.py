from typing import Optional

import httpx

from tripcurator import config
from tripcurator.logsetup import get_logger
from tripcurator.schemas import WeatherInfo

logger = get_logger(__name__)


class OpenWeatherClient:
    """Current conditions at a coordinate (OpenWeather, metric units)."""

    CURRENT_ENDPOINT = "https://api.openweathermap.org/data/2.5/weather"

    def __init__(self, api_key: Optional[str] = None, *, timeout: float = config.HTTP_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout

    async def current(self, lat: float, lng: float) -> Optional[WeatherInfo]:
        if not self.api_key:
            return None
        params = {
            "lat": lat,
            "lon": lng,
            "appid": self.api_key,
            "units": "metric",
            "lang": "kr",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.CURRENT_ENDPOINT, params=params)
                response.raise_for_status()
                data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            first = (data.get("weather") or [{}])[0]
            return WeatherInfo(
                temp_c=float(data["main"]["temp"]),
                condition=str(first.get("main") or ""),
                icon=first.get("icon"),
            )
        except (httpx.HTTPError, AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Weather lookup failed at (%s, %s)", lat, lng, exc_info=True)
            return None
