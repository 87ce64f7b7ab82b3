"""OpenWeather Current Weather API provider implementation."""
import logging
import requests
from typing import List, Optional
from weather_provider import WeatherProviderBase, WeatherProviderError, RateLimitedError
from weather_data import WeatherSnapshot, WeatherLocation, utc_now_iso


class OpenWeatherProvider(WeatherProviderBase):
    """
    Weather provider using OpenWeather Current Weather API.

    Uses the free Current Weather API: https://openweathermap.org/current
    and the 5 day / 3 hour forecast: https://openweathermap.org/forecast5
    Neither requires a paid subscription like One Call API 3.0.
    """

    BASE_URL = "https://api.openweathermap.org/data/2.5"

    def __init__(
        self,
        api_key: str,
        units: str = "metric",
        lang: str = "en",
        timeout: float = 10
    ):
        """
        Initialize OpenWeather provider.

        Args:
            api_key: OpenWeather API key
            units: Temperature units ("metric", "imperial", or "standard")
            lang: Language code for descriptions (e.g., "en", "de")
            timeout: HTTP request timeout in seconds; a timeout is reported
                as a WeatherProviderError like any other network failure
        """
        self.api_key = api_key
        self.units = units
        self.lang = lang
        self.timeout = timeout

    def get_current(self, lat: float, lon: float) -> WeatherSnapshot:
        """
        Fetch current weather from OpenWeather Current Weather API.

        Returns:
            WeatherSnapshot: Current weather information

        Raises:
            RateLimitedError: On HTTP 429
            WeatherProviderError: If the API request fails; `accepted` is set
                when the API answered 2xx but the body was unusable
        """
        data = self._request("weather", lat, lon)
        try:
            snapshot = self._parse_conditions(data, data, lat, lon, utc_now_iso())
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logging.error(f"Failed to parse API response: {e}", exc_info=True)
            raise WeatherProviderError(f"Failed to parse response: {str(e)}", accepted=True)

        logging.info(
            f"Successfully parsed weather data: {snapshot.temperature}°C, "
            f"{snapshot.description} at {snapshot.location.name}"
        )
        return snapshot

    def get_forecast(self, lat: float, lon: float, count: int = 8) -> List[WeatherSnapshot]:
        """
        Fetch the next `count` 3-hour forecast slots.

        Raises:
            RateLimitedError: On HTTP 429
            WeatherProviderError: If the API request fails
        """
        data = self._request("forecast", lat, lon, cnt=count)
        try:
            city = data.get("city", {})
            place = {
                "name": city.get("name", ""),
                "sys": {"country": city.get("country", "")},
                "coord": city.get("coord", {}),
            }
            items = data["list"]
            forecast = [
                self._parse_conditions(item, place, lat, lon, item.get("dt_txt", ""))
                for item in items
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logging.error(f"Failed to parse forecast response: {e}", exc_info=True)
            raise WeatherProviderError(f"Failed to parse response: {str(e)}", accepted=True)

        logging.info(f"Successfully parsed {len(forecast)} forecast slots")
        return forecast

    def _request(self, endpoint: str, lat: float, lon: float, **extra) -> dict:
        url = f"{self.BASE_URL}/{endpoint}"
        params = {
            "lat": lat,
            "lon": lon,
            "appid": self.api_key,
            "units": self.units,
            "lang": self.lang,
        }
        params.update(extra)

        try:
            logging.info(f"Making OpenWeather API request: {url}")
            logging.debug(f"Request parameters: lat={lat}, lon={lon}, units={self.units}, lang={self.lang}")

            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            raise WeatherProviderError(f"Network error: {str(e)}")

        logging.info(f"API response status: {response.status_code}")

        if response.status_code == 429:
            retry_after = self._retry_after(response)
            logging.warning(f"OpenWeather rate limit hit (retry after: {retry_after})")
            raise RateLimitedError("OpenWeather API error 429: rate limit exceeded", retry_after=retry_after)

        if not response.ok:
            logging.error(f"API request failed with status {response.status_code}")
            self._handle_error_response(response)

        # From here on the provider has accepted the call.
        try:
            data = response.json()
        except ValueError as e:
            logging.error(f"Failed to decode API response: {e}")
            raise WeatherProviderError(f"Failed to parse response: {str(e)}", accepted=True)
        if not isinstance(data, dict):
            raise WeatherProviderError("Response body is not a JSON object", accepted=True)
        logging.debug(f"API response (truncated): {str(data)[:500]}...")
        return data

    @staticmethod
    def _parse_conditions(data: dict, place: dict, lat: float, lon: float, timestamp: str) -> WeatherSnapshot:
        main_data = data.get("main")
        if not main_data:
            raise WeatherProviderError("Response missing 'main' block", accepted=True)

        weather_array = data.get("weather") or [{}]
        weather = weather_array[0]

        wind_data = data.get("wind") or {}
        clouds_data = data.get("clouds") or {}
        coord = place.get("coord") or {}
        sys_data = place.get("sys") or {}

        return WeatherSnapshot(
            temperature=float(main_data["temp"]),
            humidity=float(main_data["humidity"]),
            pressure=float(main_data.get("pressure", 0.0)),
            wind_speed=float(wind_data.get("speed", 0.0)),
            wind_direction=float(wind_data.get("deg", 0.0)),
            visibility=float(data.get("visibility", 10000)),
            cloud_cover=float(clouds_data.get("all", 0)),
            description=weather.get("description", ""),
            icon=weather.get("icon", ""),
            timestamp=timestamp,
            location=WeatherLocation(
                name=place.get("name", ""),
                country=sys_data.get("country", ""),
                lat=float(coord.get("lat", lat)),
                lon=float(coord.get("lon", lon)),
            ),
        )

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After") if response.headers else None
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def _handle_error_response(self, response: requests.Response) -> None:
        """Parse and raise error from OpenWeather error response."""
        try:
            error_data = response.json()
            cod = error_data.get("cod", response.status_code)
            message = error_data.get("message", "Unknown error")
            logging.error(f"OpenWeather API error response: {error_data}")
        except ValueError:
            # Not JSON, use HTTP status
            logging.error(f"Non-JSON error response: HTTP {response.status_code}, body: {response.text[:500]}")
            raise WeatherProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}"
            )
        raise WeatherProviderError(f"OpenWeather API error {cod}: {message}")
