import logging
import os
from pathlib import Path

import httpx
from dotenv import load_dotenv

from models import WeatherInfo

# Load .env from project root (one level above weather-backend/)
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

OPENWEATHERMAP_API_URL = os.getenv(
    "OPENWEATHERMAP_API_URL", "https://api.openweathermap.org/data/2.5/weather"
)
OPENWEATHERMAP_API_KEY = os.getenv("OPENWEATHERMAP_API_KEY", "")

WEATHER_TIMEOUT_SECONDS = 10.0

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    pass


class WeatherLookupError(PipelineError):
    """The weather provider did not return a usable reading."""


async def get_weather_info(city: str) -> WeatherInfo:
    """Look up current weather for ``city`` in metric units.

    Raises WeatherLookupError on a non-success status or a transport failure;
    the caller must not substitute a default reading.
    """
    params = {
        "q": city,
        "appid": OPENWEATHERMAP_API_KEY,
        "units": "metric",
        "lang": "en",
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                OPENWEATHERMAP_API_URL, params=params, timeout=WEATHER_TIMEOUT_SECONDS
            )
    except httpx.TimeoutException as exc:
        logger.error("OpenWeatherMap timed out for city=%r", city)
        raise WeatherLookupError("Weather API error: request timed out") from exc
    except httpx.RequestError as exc:
        logger.error("OpenWeatherMap unreachable for city=%r: %s", city, exc)
        raise WeatherLookupError("Weather API error: service unreachable") from exc

    if not response.is_success:
        logger.error(
            "OpenWeatherMap HTTP error %s for city=%r",
            response.status_code,
            city,
        )
        raise WeatherLookupError(f"Weather API error: {response.reason_phrase}")

    data = response.json()

    conditions = data.get("weather") or [{}]
    main = data.get("main") or {}

    return WeatherInfo(
        city=city,
        weather=conditions[0].get("description", ""),
        temperature=main.get("temp", 0),
    )
