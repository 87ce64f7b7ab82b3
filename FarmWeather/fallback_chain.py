"""Ordered fallback tiers for resolving a weather lookup."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from quota_tracker import QuotaExceededError
from request_coalescer import RequestCoalescer
from response_cache import ResponseCache
from weather_data import WeatherSnapshot, default_snapshot
from weather_provider import RateLimitedError, WeatherProviderError


@dataclass(frozen=True)
class WeatherRequest:
    key: str
    lat: float
    lon: float


@dataclass(frozen=True)
class FallbackResult:
    snapshot: WeatherSnapshot
    tier: str


class FallbackTier(ABC):
    """One step of the chain. Returns a snapshot, or None to continue to the next tier."""

    name = "tier"

    @abstractmethod
    def resolve(self, request: WeatherRequest) -> Optional[WeatherSnapshot]:
        pass


class FreshCacheTier(FallbackTier):
    name = "fresh-cache"

    def __init__(self, cache: ResponseCache):
        self.cache = cache

    def resolve(self, request: WeatherRequest) -> Optional[WeatherSnapshot]:
        entry = self.cache.get_fresh(request.key)
        if entry is None:
            logging.debug("Cache miss for %s", request.key)
            return None
        logging.debug("Cache hit for %s", request.key)
        return entry.payload


class LiveFetchTier(FallbackTier):
    """
    Coalesced network fetch.

    `fetcher` does the quota check, the provider call and the bookkeeping on
    success; it runs at most once per key at a time. Any failure it raises
    (quota denial, 429, transport or decoding error) moves the chain on.
    """

    name = "live"

    def __init__(self, coalescer: RequestCoalescer, fetcher: Callable[[WeatherRequest], WeatherSnapshot]):
        self.coalescer = coalescer
        self.fetcher = fetcher

    def resolve(self, request: WeatherRequest) -> Optional[WeatherSnapshot]:
        try:
            return self.coalescer.fetch_or_join(request.key, lambda: self.fetcher(request))
        except QuotaExceededError as e:
            logging.info(f"Skipping live fetch for {request.key}: {e}")
        except RateLimitedError as e:
            logging.warning(f"Provider rate limited {request.key}: {e}")
        except WeatherProviderError as e:
            logging.warning(f"Live fetch failed for {request.key}: {e}")
        except Exception as e:
            logging.exception(f"Unexpected error fetching {request.key}: {e}")
        return None


class StaleCacheTier(FallbackTier):
    name = "stale-cache"

    def __init__(self, cache: ResponseCache):
        self.cache = cache

    def resolve(self, request: WeatherRequest) -> Optional[WeatherSnapshot]:
        entry = self.cache.get(request.key)
        if entry is None:
            return None
        logging.warning(f"Using stale weather for {request.key} (cached at {entry.cached_at:.0f})")
        return entry.payload


class StaticDefaultTier(FallbackTier):
    name = "static-default"

    def resolve(self, request: WeatherRequest) -> Optional[WeatherSnapshot]:
        logging.warning(f"No weather data for {request.key}, using default conditions")
        return default_snapshot()


class FallbackChain:
    """Evaluates tiers in order; the last tier must always answer."""

    def __init__(self, tiers: Sequence[FallbackTier]):
        if not tiers:
            raise ValueError("FallbackChain needs at least one tier")
        self.tiers: List[FallbackTier] = list(tiers)

    def resolve(self, request: WeatherRequest) -> FallbackResult:
        for tier in self.tiers:
            snapshot = tier.resolve(request)
            if snapshot is not None:
                logging.debug("Resolved %s via %s", request.key, tier.name)
                return FallbackResult(snapshot, tier.name)
        raise LookupError(f"No fallback tier answered for {request.key}")
