"""Shared pytest fixtures."""
import pytest
from weather_data import WeatherSnapshot, WeatherLocation
from state_store import MemoryStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


def make_snapshot(temperature=20.0, humidity=60.0, name="Testville"):
    return WeatherSnapshot(
        temperature=temperature,
        humidity=humidity,
        pressure=1012.0,
        wind_speed=5.0,
        wind_direction=90.0,
        visibility=10000.0,
        cloud_cover=20.0,
        description="clear sky",
        icon="01d",
        timestamp="2024-05-24T12:00:00+00:00",
        location=WeatherLocation(name=name, country="IN", lat=28.61, lon=77.2),
    )


@pytest.fixture
def sample_weather():
    """Sample weather data."""
    return make_snapshot()
