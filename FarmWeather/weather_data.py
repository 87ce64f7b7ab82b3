"""Weather domain model - pure data structures independent of any API."""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Optional


# New Delhi; used when no farm location is configured.
DEFAULT_LOCATION = {"lat": 28.6139, "lon": 77.2090}


@dataclass(frozen=True)
class WeatherLocation:
    """Place the provider resolved the coordinates to."""
    name: str
    country: str
    lat: float
    lon: float


@dataclass(frozen=True)
class WeatherSnapshot:
    """Current conditions at one location, independent of any specific API."""
    temperature: float
    humidity: float
    pressure: float
    wind_speed: float
    wind_direction: float  # degrees
    visibility: float  # metres
    cloud_cover: float  # percentage
    description: str  # e.g., "broken clouds", "light rain"
    icon: str  # provider icon id, e.g. "04d"
    timestamp: str  # ISO-8601, UTC
    location: WeatherLocation
    uv_index: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "WeatherSnapshot":
        loc = d["location"]
        return cls(
            temperature=d["temperature"],
            humidity=d["humidity"],
            pressure=d["pressure"],
            wind_speed=d["wind_speed"],
            wind_direction=d["wind_direction"],
            visibility=d["visibility"],
            cloud_cover=d["cloud_cover"],
            description=d["description"],
            icon=d["icon"],
            timestamp=d["timestamp"],
            location=WeatherLocation(
                name=loc["name"],
                country=loc["country"],
                lat=loc["lat"],
                lon=loc["lon"],
            ),
            uv_index=d.get("uv_index", 0.0),
        )


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_snapshot(timestamp: Optional[str] = None) -> WeatherSnapshot:
    """
    Typical conditions used when neither the provider nor the cache can answer.

    The values never change apart from the timestamp, so consumers can render
    them without any null handling.
    """
    return WeatherSnapshot(
        temperature=25.5,
        humidity=65.0,
        pressure=1013.0,
        wind_speed=2.5,
        wind_direction=180.0,
        visibility=10000.0,
        cloud_cover=40.0,
        description="partly cloudy",
        icon="02d",
        timestamp=timestamp or utc_now_iso(),
        location=WeatherLocation(
            name="Farm Location",
            country="IN",
            lat=DEFAULT_LOCATION["lat"],
            lon=DEFAULT_LOCATION["lon"],
        ),
        uv_index=5.0,
    )


@dataclass(frozen=True)
class SensorReading:
    """Local air reading taken by a farm sensor."""
    temperature: float
    humidity: float


@dataclass
class WeatherValidation:
    """Outcome of comparing a local sensor reading with provider weather."""
    sensor_reliability: str  # "high", "medium" or "low"
    temperature_diff: float
    humidity_diff: float
    outliers: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    reference: str = ""  # fallback tier that produced the weather snapshot

    def to_dict(self) -> dict:
        return asdict(self)
