"""Weather lookup tool (mock data)."""

import random
from typing import Any

from pydantic import BaseModel, Field

from wsagent.tools.base import ToolDefinition

CONDITIONS = ["Sunny", "Cloudy", "Rainy", "Partly Cloudy"]


class WeatherInput(BaseModel):
    """Input schema for the get_weather tool."""

    location: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="City name or location",
        examples=["Seattle", "Paris, France"],
    )


def create_get_weather_tool() -> ToolDefinition:
    async def get_weather_handler(params: WeatherInput) -> dict[str, Any]:  # noqa: RUF029
        return {
            "location": params.location,
            "temperature": f"{random.randint(50, 89)}°F",
            "condition": random.choice(CONDITIONS),
            "humidity": f"{random.randint(30, 79)}%",
            "note": "This is mock weather data for demonstration",
        }

    return ToolDefinition(
        name="get_weather",
        description="Get current weather for a location",
        input_schema_class=WeatherInput,
        handler=get_weather_handler,
    )
