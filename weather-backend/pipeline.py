import logging

from openai import AsyncAzureOpenAI

from llm_client import LanguageModelError, complete
from models import WeatherResult
from prompts import (
    DEFAULT_CITY,
    EXTRACT_CITY_PROMPT,
    FALLBACK_RESPONSE,
    GENERATION_PROMPT_TEMPLATE,
    GENERATION_SYSTEM_PROMPT,
)
from weather_client import get_weather_info

logger = logging.getLogger(__name__)


def _clean_city(text: str) -> str:
    return text.strip().replace("[", "").replace("]", "").strip()


async def extract_city(user_input: str, chat_client: AsyncAzureOpenAI | None) -> str:
    try:
        content = await complete(
            chat_client,
            EXTRACT_CITY_PROMPT,
            user_input,
            temperature=0.7,
            top_p=0.95,
            max_tokens=50,
        )
    except LanguageModelError:
        logger.warning("City extraction failed, using default %r", DEFAULT_CITY)
        return DEFAULT_CITY

    city = _clean_city(content)
    if not city:
        logger.warning("City extraction returned nothing usable, using default %r", DEFAULT_CITY)
        return DEFAULT_CITY
    return city


async def generate_weather_response(
    city: str,
    weather: str,
    temperature: float,
    user_input: str,
    chat_client: AsyncAzureOpenAI | None,
) -> str:
    prompt = GENERATION_PROMPT_TEMPLATE.format(
        user_input=user_input,
        city=city,
        weather=weather,
        temperature=temperature,
    )
    try:
        content = await complete(
            chat_client,
            GENERATION_SYSTEM_PROMPT,
            prompt,
            temperature=0.7,
            top_p=0.95,
            max_tokens=200,
        )
    except LanguageModelError:
        logger.warning("Response generation failed, using fallback reply")
        return FALLBACK_RESPONSE

    if not content:
        logger.warning("Response generation returned empty content, using fallback reply")
        return FALLBACK_RESPONSE
    return content


async def handle(user_input: str, chat_client: AsyncAzureOpenAI | None) -> WeatherResult:
    """Resolve a place, fetch its weather and phrase the answer.

    Only the weather lookup can fail the request (WeatherLookupError); both
    language model stages fall back to fixed text instead.
    """
    logger.info("Pipeline invoked: user_input=%r", user_input[:80])

    city = await extract_city(user_input, chat_client)
    logger.info("Resolved city=%r", city)

    info = await get_weather_info(city)
    logger.info(
        "Weather for city=%r: weather=%r temperature=%s",
        info.city,
        info.weather,
        info.temperature,
    )

    reply = await generate_weather_response(
        info.city, info.weather, info.temperature, user_input, chat_client
    )
    logger.info("Pipeline reply: %r", reply[:120])

    return WeatherResult(
        city=info.city,
        weather=info.weather,
        temperature=info.temperature,
        response=reply,
    )
