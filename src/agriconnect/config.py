"""Configuration settings for the application."""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:8080"]

    # Language backend
    BACKEND: str = "gemini"  # Options: gemini, openai, anthropic
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"

    # Generation parameters and loop limits
    TEMPERATURE: float = 0.7
    MAX_OUTPUT_TOKENS: int = 2048
    MAX_ITERATIONS: int = Field(5, ge=1, le=15)
    TOOL_TIMEOUT: float = 15.0
    REQUEST_TIMEOUT: float = 30.0
    RUN_TIMEOUT: float = 60.0

    # Datastore (Supabase / PostgREST)
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    QUERY_RESULT_CAP: int = Field(10, ge=1, le=50)

    # Other API Keys and endpoints
    SERPER_API_KEY: str | None = None
    SERPER_ENDPOINT: str = "https://google.serper.dev/search"
    WEATHER_GEOCODING_URL: str = "https://geocoding-api.open-meteo.com/v1/search"
    WEATHER_FORECAST_URL: str = "https://api.open-meteo.com/v1/forecast"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
