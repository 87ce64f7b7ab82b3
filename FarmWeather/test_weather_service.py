"""Tests for weather service."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import make_snapshot
from quota_tracker import DAY_SECONDS
from response_cache import make_cache_key
from weather_data import SensorReading, default_snapshot
from weather_provider import WeatherProviderBase, WeatherProviderError, RateLimitedError
from weather_service import WeatherService


class MockProvider(WeatherProviderBase):
    """Mock weather provider for testing."""

    def __init__(self, return_data=None, raise_error=None, forecast=None):
        self.return_data = return_data
        self.raise_error = raise_error
        self.forecast = forecast or []
        self.call_count = 0
        self.forecast_calls = 0

    def get_current(self, lat, lon):
        self.call_count += 1
        if self.raise_error:
            raise self.raise_error
        return self.return_data

    def get_forecast(self, lat, lon, count=8):
        self.forecast_calls += 1
        if self.raise_error:
            raise self.raise_error
        return self.forecast[:count]


def make_service(provider, store, clock, **kwargs):
    kwargs.setdefault("daily_limit", 500)
    kwargs.setdefault("cache_ttl_seconds", 1800)
    kwargs.setdefault("min_interval_seconds", 0)
    return WeatherService(provider, store, clock=clock, **kwargs)


def test_weather_service_caching(sample_weather, store, clock):
    """Test that service caches results."""
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock)

    # First call should hit provider
    result1 = service.get_current_weather(28.61, 77.20)
    assert provider.call_count == 1
    assert result1.temperature == 20.0

    # Second call within TTL should use cache
    result2 = service.get_current_weather(28.61, 77.20)
    assert provider.call_count == 1  # Still 1, not 2
    assert result2 == result1
    assert service.stats().calls_used == 1


def test_nearby_coordinates_share_cache_entry(sample_weather, store, clock):
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock)

    service.get_current_weather(28.611, 77.201)
    result = service.resolve_current(28.614, 77.204)

    assert provider.call_count == 1
    assert result.tier == "fresh-cache"
    assert make_cache_key(28.611, 77.201) == make_cache_key(28.614, 77.204)


def test_weather_service_cache_expiry(sample_weather, store, clock):
    """Test that cache expires after TTL."""
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, cache_ttl_seconds=60)

    service.get_current_weather(28.61, 77.20)
    assert provider.call_count == 1

    clock.advance(61)

    service.get_current_weather(28.61, 77.20)
    assert provider.call_count == 2
    assert service.stats().calls_used == 2


def test_quota_exhausted_serves_stale_entry(store, clock):
    """Quota exhausted and a stale entry cached: the stale payload comes back, no call is spent."""
    stale = make_snapshot(temperature=18.0)
    provider = MockProvider(return_data=stale)
    service = make_service(provider, store, clock, daily_limit=1, cache_ttl_seconds=60)
    service.get_current_weather(28.61, 77.20)
    assert service.stats().calls_used == 1

    clock.advance(3600)
    provider.return_data = make_snapshot(temperature=30.0)
    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "stale-cache"
    assert result.snapshot == stale
    assert provider.call_count == 1
    assert service.stats().calls_used == 1


def test_quota_exhausted_without_cache_serves_default(store, clock, sample_weather):
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, daily_limit=0)

    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "static-default"
    assert result.snapshot.temperature == default_snapshot().temperature
    assert provider.call_count == 0


def test_min_interval_blocks_second_location(store, clock, sample_weather):
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, min_interval_seconds=300)
    service.get_current_weather(28.61, 77.20)

    result = service.resolve_current(19.07, 72.87)

    assert provider.call_count == 1
    assert result.tier == "static-default"


def test_timeout_without_cache_serves_default(store, clock):
    """A timeout with an empty cache returns the default snapshot and spends no quota."""
    provider = MockProvider(raise_error=WeatherProviderError("Network error: Read timed out"))
    service = make_service(provider, store, clock)

    weather = service.get_current_weather(28.61, 77.20)

    assert weather.temperature == default_snapshot().temperature
    assert weather.description == default_snapshot().description
    assert provider.call_count == 1
    assert service.stats().calls_used == 0


def test_weather_service_fallback_to_stale_cache(sample_weather, store, clock):
    """Test that service falls back to stale cache on failure."""
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, cache_ttl_seconds=60)

    result1 = service.get_current_weather(28.61, 77.20)
    assert result1.temperature == 20.0

    # Make provider fail
    provider.raise_error = WeatherProviderError("Network error")
    provider.return_data = None

    clock.advance(61)

    # Should return stale cache instead of raising
    result2 = service.get_current_weather(28.61, 77.20)
    assert result2.temperature == 20.0
    assert provider.call_count == 2
    assert service.stats().calls_used == 1


def test_provider_rate_limit_is_not_recorded(sample_weather, store, clock):
    provider = MockProvider(raise_error=RateLimitedError("OpenWeather API error 429: rate limit exceeded"))
    service = make_service(provider, store, clock)

    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "static-default"
    assert service.stats().calls_used == 0
    assert service.stats().cache_size == 0


def test_invalid_coordinates_raise(store, clock, sample_weather):
    service = make_service(MockProvider(return_data=sample_weather), store, clock)

    with pytest.raises(ValueError):
        service.get_current_weather(float("nan"), 77.20)


def test_no_provider_serves_default(store, clock):
    service = make_service(None, store, clock)

    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "static-default"
    assert service.stats().calls_used == 0


def test_concurrent_lookups_share_one_call(sample_weather, store, clock):
    gate = threading.Event()
    provider = MockProvider(return_data=sample_weather)
    original = provider.get_current

    def slow_get_current(lat, lon):
        gate.wait(5)
        return original(lat, lon)

    provider.get_current = slow_get_current
    service = make_service(provider, store, clock)

    with ThreadPoolExecutor(max_workers=5) as pool:
        futures = [pool.submit(service.get_current_weather, 28.61, 77.20) for _ in range(5)]
        time.sleep(0.2)
        gate.set()
        results = [f.result(timeout=5) for f in futures]

    assert provider.call_count == 1
    assert all(r == sample_weather for r in results)
    assert service.stats().calls_used == 1


def test_parallel_lookups_for_different_locations_respect_limit(sample_weather, store, clock):
    """Two leaders for different keys cannot both spend the last call of the window."""
    entered = threading.Event()
    gate = threading.Event()
    provider = MockProvider(return_data=sample_weather)
    original = provider.get_current

    def slow_get_current(lat, lon):
        entered.set()
        gate.wait(5)
        return original(lat, lon)

    provider.get_current = slow_get_current
    service = make_service(provider, store, clock, daily_limit=1, min_interval_seconds=300)

    with ThreadPoolExecutor(max_workers=2) as pool:
        first = pool.submit(service.resolve_current, 28.61, 77.20)
        assert entered.wait(5)
        second = pool.submit(service.resolve_current, 19.07, 72.87)
        second_tier = second.result(timeout=5).tier
        gate.set()
        first_tier = first.result(timeout=5).tier

    assert first_tier == "live"
    assert second_tier == "static-default"
    assert provider.call_count == 1
    assert service.stats().calls_used == 1


def test_unparseable_success_response_is_counted(store, clock):
    provider = MockProvider(raise_error=WeatherProviderError("Response missing 'main' block", accepted=True))
    service = make_service(provider, store, clock)

    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "static-default"
    assert provider.call_count == 1
    assert service.stats().calls_used == 1
    assert service.stats().cache_size == 0


def test_failed_call_gives_back_spacing(sample_weather, store, clock):
    provider = MockProvider(raise_error=WeatherProviderError("Network error"))
    service = make_service(provider, store, clock, min_interval_seconds=300)
    service.get_current_weather(28.61, 77.20)

    provider.raise_error = None
    provider.return_data = sample_weather
    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "live"
    assert provider.call_count == 2
    assert service.stats().calls_used == 1


def test_quota_window_rollover_restores_calls(sample_weather, store, clock):
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, daily_limit=1, cache_ttl_seconds=60)
    service.get_current_weather(28.61, 77.20)
    clock.advance(DAY_SECONDS + 1)

    result = service.resolve_current(28.61, 77.20)

    assert result.tier == "live"
    assert service.stats().calls_used == 1


def test_validate_sensor_data(store, clock):
    provider = MockProvider(return_data=make_snapshot(temperature=25, humidity=65))
    service = make_service(provider, store, clock)

    validation = service.validate_sensor_data(SensorReading(temperature=40, humidity=60), 28.61, 77.20)

    assert validation.temperature_diff == 15
    assert validation.sensor_reliability == "low"
    assert any("Temperature difference" in o for o in validation.outliers)
    assert validation.reference == "live"


def test_validate_against_default_notes_it(store, clock):
    service = make_service(None, store, clock)

    validation = service.validate_sensor_data(SensorReading(temperature=25.5, humidity=65), 28.61, 77.20)

    assert validation.reference == "static-default"
    assert any("typical conditions" in r for r in validation.recommendations)


def test_forecast_spends_quota(store, clock, sample_weather):
    slots = [make_snapshot(temperature=t) for t in (20.0, 21.0, 22.0)]
    provider = MockProvider(forecast=slots)
    service = make_service(provider, store, clock)

    forecast = service.get_forecast(28.61, 77.20, count=2)

    assert [s.temperature for s in forecast] == [20.0, 21.0]
    assert service.stats().calls_used == 1


def test_forecast_unavailable_returns_empty(store, clock):
    provider = MockProvider(raise_error=WeatherProviderError("Network error"))
    service = make_service(provider, store, clock)

    assert service.get_forecast(28.61, 77.20) == []
    assert service.stats().calls_used == 0

    blocked = make_service(MockProvider(), store, clock, daily_limit=0)
    assert blocked.get_forecast(28.61, 77.20) == []


def test_forecast_unparseable_response_is_counted(store, clock):
    provider = MockProvider(raise_error=WeatherProviderError("Failed to parse response: 'list'", accepted=True))
    service = make_service(provider, store, clock)

    assert service.get_forecast(28.61, 77.20) == []
    assert service.stats().calls_used == 1


def test_stats_clear_cache_and_reset(sample_weather, store, clock):
    provider = MockProvider(return_data=sample_weather)
    service = make_service(provider, store, clock, daily_limit=10)
    service.get_current_weather(28.61, 77.20)
    service.get_current_weather(19.07, 72.87)

    stats = service.stats().to_dict()
    assert stats["calls_used"] == 2
    assert stats["calls_remaining"] == 8
    assert stats["daily_limit"] == 10
    assert stats["cache_size"] == 2
    assert stats["reset_time"]

    service.clear_cache()
    service.reset_quota_counter()

    assert service.stats().cache_size == 0
    assert service.stats().calls_used == 0


def test_state_persists_across_service_instances(sample_weather, store, clock):
    provider = MockProvider(return_data=sample_weather)
    make_service(provider, store, clock).get_current_weather(28.61, 77.20)

    restarted = make_service(provider, store, clock)
    result = restarted.resolve_current(28.61, 77.20)

    assert result.tier == "fresh-cache"
    assert restarted.stats().calls_used == 1
    assert provider.call_count == 1
