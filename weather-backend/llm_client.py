import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from openai import AsyncAzureOpenAI

# Load .env from project root (one level above weather-backend/)
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY", "")
AZURE_API_VERSION = os.getenv("AZURE_API_VERSION", "2025-01-01-preview")
MODEL_DEPLOYMENT_NAME = os.getenv("MODEL_DEPLOYMENT_NAME", "")

LLM_TIMEOUT_SECONDS = 30.0

logger = logging.getLogger(__name__)


class LanguageModelError(Exception):
    pass


def _make_chat_client() -> AsyncAzureOpenAI:
    return AsyncAzureOpenAI(
        azure_endpoint=AZURE_OPENAI_ENDPOINT,
        api_key=AZURE_OPENAI_API_KEY,
        api_version=AZURE_API_VERSION,
        timeout=LLM_TIMEOUT_SECONDS,
    )


async def complete(
    chat_client: AsyncAzureOpenAI | None,
    system_prompt: str,
    user_message: str,
    *,
    temperature: float,
    top_p: float,
    max_tokens: int,
) -> str:
    """Run one chat completion and return its stripped text.

    Returns an empty string when the model answers with no content. Raises
    LanguageModelError when the call itself fails or no client is configured.
    """
    if chat_client is None:
        logger.error("LLM call skipped: chat client not initialized")
        raise LanguageModelError("chat client not initialized")

    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]
    try:
        response = await chat_client.chat.completions.create(
            model=MODEL_DEPLOYMENT_NAME,
            messages=messages,
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
        )
    except Exception as exc:
        logger.error("LLM call failed: %s", exc)
        raise LanguageModelError("model unavailable") from exc

    if not response.choices:
        return ""
    content = response.choices[0].message.content
    return (content or "").strip()
