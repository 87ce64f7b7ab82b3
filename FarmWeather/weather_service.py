"""Weather service with caching, quota enforcement and graceful fallback."""
import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional

from fallback_chain import (
    FallbackChain,
    FallbackResult,
    FreshCacheTier,
    LiveFetchTier,
    StaleCacheTier,
    StaticDefaultTier,
    WeatherRequest,
)
from quota_tracker import QuotaExceededError, QuotaTracker
from request_coalescer import RequestCoalescer
from response_cache import ResponseCache, make_cache_key
from sensor_validation import compare_readings
from state_store import StateStore
from weather_data import SensorReading, WeatherSnapshot, WeatherValidation
from weather_provider import WeatherProviderBase, WeatherProviderError


@dataclass(frozen=True)
class WeatherServiceStats:
    calls_used: int
    calls_remaining: int
    daily_limit: int
    reset_time: str
    cache_size: int

    def to_dict(self) -> dict:
        return asdict(self)


class WeatherService:
    """
    Service that wraps a weather provider with caching, a daily call budget
    and request coalescing.

    `get_current_weather` never raises for provider, network or quota
    trouble. It answers from the first tier that can: a fresh cache entry,
    a live fetch (shared by concurrent callers for the same location), the
    last cached entry however old, and finally a fixed default snapshot.
    Only invalid coordinates raise (ValueError).
    """

    def __init__(
        self,
        provider: Optional[WeatherProviderBase],
        store: StateStore,
        daily_limit: int = 500,
        cache_ttl_seconds: float = 1800,  # 30 minutes default
        min_interval_seconds: float = 300,  # 5 minutes default
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize weather service.

        Args:
            provider: Weather provider to use; None serves cached or default
                data only and never touches the network
            store: Durable store for quota counters and cached responses
            daily_limit: Provider calls allowed per 24 hour window
            cache_ttl_seconds: How long a fetched snapshot counts as fresh
            min_interval_seconds: Minimum spacing between provider calls
            clock: Source of POSIX timestamps
        """
        self.provider = provider
        self.cache_ttl_seconds = cache_ttl_seconds
        self.quota = QuotaTracker(store, daily_limit, min_interval_seconds, clock)
        self.cache = ResponseCache(store, clock)
        self.coalescer = RequestCoalescer()

        tiers = [FreshCacheTier(self.cache)]
        if provider is not None:
            tiers.append(LiveFetchTier(self.coalescer, self._fetch_current))
        else:
            logging.warning("No weather API key configured, serving cached or default weather only")
        tiers += [StaleCacheTier(self.cache), StaticDefaultTier()]
        self.chain = FallbackChain(tiers)

    def _call_provider(self, fetch: Callable[[], object]):
        """Run one provider call against a reserved unit of quota."""
        reservation = self.quota.acquire()
        try:
            return fetch()
        except Exception as e:
            # a 2xx with an unusable body still spent the call upstream
            if not (isinstance(e, WeatherProviderError) and e.accepted):
                self.quota.release(reservation)
            raise

    def _fetch_current(self, request: WeatherRequest) -> WeatherSnapshot:
        # Another leader may have filled the cache between our miss and now.
        entry = self.cache.get_fresh(request.key)
        if entry is not None:
            return entry.payload

        logging.info("Fetching weather data from provider for %s...", request.key)
        snapshot = self._call_provider(lambda: self.provider.get_current(request.lat, request.lon))
        self.cache.put(request.key, snapshot, self.cache_ttl_seconds)
        return snapshot

    def resolve_current(self, lat: float, lon: float) -> FallbackResult:
        """Like get_current_weather, but also reports which tier answered."""
        key = make_cache_key(lat, lon, "current")
        result = self.chain.resolve(WeatherRequest(key, lat, lon))
        logging.info(f"Weather for {key} served from {result.tier}: {result.snapshot.temperature}°C")
        return result

    def get_current_weather(self, lat: float, lon: float) -> WeatherSnapshot:
        """
        Get current weather for a coordinate, preferring the freshest data available.

        Raises:
            ValueError: If the coordinates are not finite or out of range
        """
        return self.resolve_current(lat, lon).snapshot

    def validate_sensor_data(self, reading: SensorReading, lat: float, lon: float) -> WeatherValidation:
        """Compare a local reading against the weather at the farm's location."""
        result = self.resolve_current(lat, lon)
        validation = compare_readings(reading, result.snapshot)
        validation.reference = result.tier
        if result.tier == StaticDefaultTier.name:
            validation.recommendations.append(
                "Weather data unavailable - validated against typical conditions"
            )
        return validation

    def get_forecast(self, lat: float, lon: float, count: int = 8) -> List[WeatherSnapshot]:
        """
        Fetch the next `count` 3-hour forecast slots.

        Forecasts are not cached and spend one call from the daily budget.
        Returns an empty list when the quota, the network or the provider
        prevents it.
        """
        make_cache_key(lat, lon, "forecast")  # validates the coordinates
        if self.provider is None:
            return []
        try:
            forecast = self._call_provider(lambda: self.provider.get_forecast(lat, lon, count))
        except QuotaExceededError as e:
            logging.info(f"Forecast unavailable: {e}")
            return []
        except WeatherProviderError as e:
            logging.warning(f"Forecast fetch failed: {e}")
            return []
        return forecast

    def stats(self) -> WeatherServiceStats:
        quota = self.quota.stats()
        return WeatherServiceStats(
            calls_used=quota.calls_used,
            calls_remaining=quota.calls_remaining,
            daily_limit=quota.daily_limit,
            reset_time=quota.reset_time,
            cache_size=self.cache.size(),
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    def reset_quota_counter(self) -> None:
        self.quota.reset()
