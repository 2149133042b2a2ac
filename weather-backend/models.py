from pydantic import BaseModel, Field


class WeatherRequest(BaseModel):
    user_input: str = Field(..., min_length=1)


class WeatherInfo(BaseModel):
    """Normalised weather reading for one place."""
    city: str
    weather: str
    temperature: float


class WeatherResult(BaseModel):
    city: str
    weather: str
    temperature: float
    response: str


class WeatherHealthResponse(BaseModel):
    status: str
    model: str
    weather_api_configured: bool
