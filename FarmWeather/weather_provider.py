"""Weather provider abstraction - allows swapping different weather APIs."""
from abc import ABC, abstractmethod
from typing import List, Optional
from weather_data import WeatherSnapshot


class WeatherProviderBase(ABC):
    """Abstract base class for weather data providers."""

    @abstractmethod
    def get_current(self, lat: float, lon: float) -> WeatherSnapshot:
        """
        Fetch current weather data for a coordinate.

        Returns:
            WeatherSnapshot: Current weather information

        Raises:
            RateLimitedError: If the provider signals a rate limit
            WeatherProviderError: If the provider fails to fetch data
        """
        pass

    def get_forecast(self, lat: float, lon: float, count: int = 8) -> List[WeatherSnapshot]:
        """Fetch short-range forecast slots. Providers without a forecast raise."""
        raise WeatherProviderError(f"{type(self).__name__} does not provide forecasts")


class WeatherProviderError(Exception):
    """
    Exception raised when a weather provider fails.

    `accepted` is True when the upstream answered with a success status but
    the body could not be used; such a call still counts against the quota.
    """

    def __init__(self, message: str, accepted: bool = False):
        super().__init__(message)
        self.accepted = accepted


class RateLimitedError(WeatherProviderError):
    """The provider rejected the call with an explicit rate-limit signal (HTTP 429)."""

    def __init__(self, message: str, status_code: int = 429, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after
