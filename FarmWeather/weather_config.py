"""Settings for the farm weather client, read from the environment."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from weather_data import DEFAULT_LOCATION

DEFAULT_STATE_DIR = os.path.join("~", ".farm-weather")


@dataclass
class WeatherSettings:
    api_key: Optional[str]
    lat: float = DEFAULT_LOCATION["lat"]
    lon: float = DEFAULT_LOCATION["lon"]
    units: str = "metric"
    lang: str = "en"
    daily_limit: int = 500
    cache_ttl_seconds: float = 30 * 60
    min_interval_seconds: float = 5 * 60
    timeout: float = 10
    state_dir: str = DEFAULT_STATE_DIR


def _number(name: str, default, cast, signed: bool = False):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise SystemExit(f"Invalid {name}: {exc}") from exc
    if value < 0 and not signed:
        raise SystemExit(f"Invalid {name}: must not be negative")
    return value


def load_settings(dotenv: bool = True) -> WeatherSettings:
    if dotenv:
        load_dotenv()

    settings = WeatherSettings(
        api_key=os.getenv("WEATHER_API_KEY") or None,
        lat=_number("WEATHER_LAT", DEFAULT_LOCATION["lat"], float, signed=True),
        lon=_number("WEATHER_LON", DEFAULT_LOCATION["lon"], float, signed=True),
        units=os.getenv("WEATHER_UNITS", "metric"),
        lang=os.getenv("WEATHER_LANG", "en"),
        daily_limit=_number("WEATHER_MAX_CALLS_PER_DAY", 500, int),
        cache_ttl_seconds=_number("WEATHER_CACHE_TTL", 30 * 60, float),
        min_interval_seconds=_number("WEATHER_MIN_CALL_INTERVAL", 5 * 60, float),
        timeout=_number("WEATHER_TIMEOUT", 10, float),
        state_dir=os.getenv("WEATHER_STATE_DIR", DEFAULT_STATE_DIR),
    )
    if settings.units not in ("metric", "imperial", "standard"):
        raise SystemExit(f"Invalid WEATHER_UNITS: {settings.units}")

    logging.info(
        "Configuration loaded: lat=%s lon=%s units=%s daily_limit=%s ttl=%ss interval=%ss",
        settings.lat, settings.lon, settings.units, settings.daily_limit,
        settings.cache_ttl_seconds, settings.min_interval_seconds,
    )
    return settings
