"""Operations CLI for the farm weather client."""
import argparse
import json
import logging
import signal
import sys
import time
from typing import List, Optional

from openweather_provider import OpenWeatherProvider
from state_store import JsonFileStore
from weather_config import WeatherSettings, load_settings
from weather_data import SensorReading, WeatherSnapshot
from weather_service import WeatherService


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser("farm-weather", description="Farm weather lookups and API quota tools")
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--lat", type=float, default=None, help="Latitude (default: WEATHER_LAT)")
    parser.add_argument("--lon", type=float, default=None, help="Longitude (default: WEATHER_LON)")
    parser.add_argument("--state-dir", default=None, help="Directory for quota and cache files")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    parser.add_argument("--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    current = sub.add_parser("current", help="Show current conditions")
    current.add_argument("--watch", type=float, default=None, metavar="SECONDS",
                         help="Keep refreshing every SECONDS until interrupted")

    validate = sub.add_parser("validate", help="Compare a sensor reading with current weather")
    validate.add_argument("--temperature", type=float, required=True)
    validate.add_argument("--humidity", type=float, required=True)

    forecast = sub.add_parser("forecast", help="Show the next 3-hour forecast slots")
    forecast.add_argument("--count", type=int, default=8)

    sub.add_parser("stats", help="Show API usage and cache size")
    sub.add_parser("clear-cache", help="Drop every cached response")
    sub.add_parser("reset-quota", help="Reset the daily API call counter")
    return parser.parse_args(argv)


def setup_logging(log_file: Optional[str], verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def build_weather_service(settings: WeatherSettings) -> WeatherService:
    provider = None
    if settings.api_key:
        provider = OpenWeatherProvider(
            api_key=settings.api_key,
            units=settings.units,
            lang=settings.lang,
            timeout=settings.timeout,
        )
    service = WeatherService(
        provider=provider,
        store=JsonFileStore(settings.state_dir),
        daily_limit=settings.daily_limit,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        min_interval_seconds=settings.min_interval_seconds,
    )
    logging.info("Weather service ready (cache ttl=%ss, state=%s)", settings.cache_ttl_seconds, settings.state_dir)
    return service


def format_weather_lines(weather: WeatherSnapshot) -> List[str]:
    place = weather.location.name or f"{weather.location.lat:.2f},{weather.location.lon:.2f}"
    if weather.location.country:
        place = f"{place}, {weather.location.country}"
    return [
        f"{place}: {weather.temperature:.1f}° {weather.description}",
        f"Humidity {weather.humidity:.0f}%  Pressure {weather.pressure:.0f} hPa  Clouds {weather.cloud_cover:.0f}%",
        f"Wind {weather.wind_speed:.1f}m/s @ {weather.wind_direction:.0f}°  Visibility {weather.visibility / 1000:.1f} km",
        f"Updated {weather.timestamp}",
    ]


def emit(payload, lines: List[str], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
    else:
        print("\n".join(lines))


def signal_handler(signum, frame):
    logging.info("Received signal %s, shutting down", signum)
    raise KeyboardInterrupt()


def watch_loop(service: WeatherService, lat: float, lon: float, refresh: float, as_json: bool) -> None:
    frame = 0
    while True:
        frame += 1
        logging.info("Frame %s: fetching weather", frame)
        result = service.resolve_current(lat, lon)
        emit(
            {"source": result.tier, "weather": result.snapshot.to_dict()},
            format_weather_lines(result.snapshot) + [f"Source {result.tier}", ""],
            as_json,
        )
        time.sleep(max(refresh, 1.0))


def run(args: argparse.Namespace, settings: WeatherSettings) -> int:
    service = build_weather_service(settings)
    lat = settings.lat if args.lat is None else args.lat
    lon = settings.lon if args.lon is None else args.lon

    try:
        if args.command == "current":
            if args.watch:
                signal.signal(signal.SIGINT, signal_handler)
                signal.signal(signal.SIGTERM, signal_handler)
                try:
                    watch_loop(service, lat, lon, args.watch, args.json)
                except KeyboardInterrupt:
                    logging.info("Stopping weather watch")
                return 0
            result = service.resolve_current(lat, lon)
            emit(
                {"source": result.tier, "weather": result.snapshot.to_dict()},
                format_weather_lines(result.snapshot) + [f"Source {result.tier}"],
                args.json,
            )
        elif args.command == "validate":
            reading = SensorReading(temperature=args.temperature, humidity=args.humidity)
            validation = service.validate_sensor_data(reading, lat, lon)
            lines = [
                f"Reliability {validation.sensor_reliability} (reference: {validation.reference})",
                f"Temperature diff {validation.temperature_diff:.1f}°C  Humidity diff {validation.humidity_diff:.1f}%",
            ]
            lines += [f"Outlier: {o}" for o in validation.outliers]
            lines += [f"- {r}" for r in validation.recommendations]
            emit(validation.to_dict(), lines, args.json)
        elif args.command == "forecast":
            forecast = service.get_forecast(lat, lon, args.count)
            if not forecast:
                logging.warning("Forecast unavailable")
                return 1
            lines = [f"{slot.timestamp}  {slot.temperature:.1f}°  {slot.humidity:.0f}%  {slot.description}"
                     for slot in forecast]
            emit([slot.to_dict() for slot in forecast], lines, args.json)
        elif args.command == "stats":
            stats = service.stats()
            emit(stats.to_dict(), [
                f"Calls used {stats.calls_used}/{stats.daily_limit} ({stats.calls_remaining} remaining)",
                f"Window resets {stats.reset_time}",
                f"Cache entries {stats.cache_size}",
            ], args.json)
        elif args.command == "clear-cache":
            service.clear_cache()
            emit({"cleared": True}, ["Weather cache cleared"], args.json)
        elif args.command == "reset-quota":
            service.reset_quota_counter()
            emit({"reset": True}, ["API call counter reset"], args.json)
    except ValueError as err:
        logging.error("Invalid request: %s", err)
        return 2
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)
    settings = load_settings()
    if args.state_dir:
        settings.state_dir = args.state_dir
    sys.exit(run(args, settings))


if __name__ == "__main__":
    main()
