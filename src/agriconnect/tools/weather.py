"""Current conditions and short forecast from Open-Meteo (no API key required)."""

import logging
from typing import (
    Any,
    Dict,
    List,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from agriconnect.tools import (
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)

_CURRENT_FIELDS = "temperature_2m,relative_humidity_2m,precipitation,wind_speed_10m,weather_code"
_DAILY_FIELDS = "temperature_2m_max,temperature_2m_min,precipitation_sum,precipitation_probability_max"


class WeatherArgs(BaseModel):
    location: str = Field(..., min_length=1, description="City, district or village name")
    days: int = Field(3, ge=1, le=7, description="Number of forecast days to include")


def _daily_rows(daily: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    dates = daily.get("time", [])
    return [
        {
            "date": date,
            "temp_max_c": daily.get("temperature_2m_max", [None] * len(dates))[i],
            "temp_min_c": daily.get("temperature_2m_min", [None] * len(dates))[i],
            "precipitation_mm": daily.get("precipitation_sum", [None] * len(dates))[i],
            "precipitation_chance_pct": daily.get(
                "precipitation_probability_max", [None] * len(dates)
            )[i],
        }
        for i, date in enumerate(dates)
    ]


@register_tool("get_weather", WeatherArgs)
async def get_weather(args: WeatherArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Get current weather conditions and a short daily forecast for a location. Use it for questions about weather, rain, irrigation or sowing timing."""
    try:
        geo = await ctx.http.get(
            ctx.settings.WEATHER_GEOCODING_URL,
            params={"name": args.location, "count": 1, "language": "en", "format": "json"},
        )
        geo.raise_for_status()
        places = geo.json().get("results") or []
        if not places:
            return {"error": f"Location '{args.location}' not found"}
        place = places[0]

        forecast = await ctx.http.get(
            ctx.settings.WEATHER_FORECAST_URL,
            params={
                "latitude": place["latitude"],
                "longitude": place["longitude"],
                "current": _CURRENT_FIELDS,
                "daily": _DAILY_FIELDS,
                "forecast_days": args.days,
                "timezone": "auto",
            },
        )
        forecast.raise_for_status()
        data = forecast.json()
    except httpx.HTTPError as exc:
        logger.warning("Weather lookup for %r failed: %s", args.location, exc)
        return {"error": "Weather service unavailable", "details": str(exc)}

    current = data.get("current", {})
    return {
        "location": ", ".join(
            p for p in (place.get("name"), place.get("admin1"), place.get("country")) if p
        ),
        "current": {
            "temperature_c": current.get("temperature_2m"),
            "humidity_pct": current.get("relative_humidity_2m"),
            "precipitation_mm": current.get("precipitation"),
            "wind_speed_kmh": current.get("wind_speed_10m"),
            "weather_code": current.get("weather_code"),
        },
        "forecast": _daily_rows(data.get("daily", {})),
    }
