import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import AsyncAzureOpenAI

from llm_client import AZURE_OPENAI_ENDPOINT, MODEL_DEPLOYMENT_NAME, _make_chat_client
from models import WeatherHealthResponse, WeatherRequest, WeatherResult
from pipeline import handle
from weather_client import OPENWEATHERMAP_API_KEY, PipelineError

# Load .env from project root (one level above weather-backend/)
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_chat_client: AsyncAzureOpenAI | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _chat_client
    if not OPENWEATHERMAP_API_KEY:
        logger.warning(
            "OPENWEATHERMAP_API_KEY is not set. "
            "Weather lookups will fail until the key is configured."
        )
    if not AZURE_OPENAI_ENDPOINT:
        logger.warning("AZURE_OPENAI_ENDPOINT is not set.")
    try:
        _chat_client = _make_chat_client()
        logger.info("Chat client initialized successfully.")
    except Exception as exc:
        logger.warning("Failed to initialize chat client: %s", exc)
    yield
    if _chat_client is not None:
        await _chat_client.close()
        logger.info("Chat client closed.")


app = FastAPI(
    title="Weather Chat Backend",
    description="Place extraction, weather lookup and reply generation for the weather chatbot.",
    version="1.0.0",
    lifespan=lifespan,
)


# ── Custom exception handlers ────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 400 (not FastAPI's default 422) when user_input is missing or empty."""
    return JSONResponse(status_code=400, content={"error": "Missing user_input"})


# ── Endpoints ────────────────────────────────────────────────────────────────

@app.get("/health", response_model=WeatherHealthResponse)
async def health() -> WeatherHealthResponse:
    return WeatherHealthResponse(
        status="ok",
        model=MODEL_DEPLOYMENT_NAME,
        weather_api_configured=bool(OPENWEATHERMAP_API_KEY),
    )


@app.post("/api/weather", response_model=WeatherResult)
async def weather(request: WeatherRequest) -> WeatherResult:
    logger.info("Incoming POST /api/weather: user_input=%r", request.user_input[:80])

    if _chat_client is None:
        logger.warning("Chat client not initialized; language model stages will fall back.")

    try:
        return await handle(request.user_input, _chat_client)
    except PipelineError as exc:
        logger.error("PipelineError in /api/weather: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except Exception:
        logger.error("Unexpected exception in /api/weather", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )


if __name__ == "__main__":
    uvicorn.run(
        "weather_server:app",
        host="0.0.0.0",
        port=int(os.getenv("BACKEND_PORT", "8001")),
        reload=False,
    )
