"""TTL cache of provider responses, keyed by rounded coordinate."""
import logging
import math
import threading
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional

from state_store import StateStore, StateStoreError
from weather_data import WeatherSnapshot

RECORD_NAME = "weather_cache"
KEY_PRECISION = 2  # decimal degrees, roughly 1 km cells
KEY_QUANTUM = Decimal(1).scaleb(-KEY_PRECISION)
REQUEST_TYPES = ("current", "forecast")


def make_cache_key(lat: float, lon: float, request_type: str = "current") -> str:
    """
    Build the cache key for a coordinate.

    Nearby points collapse onto the same key, e.g. (28.611, 77.201) and
    (28.614, 77.204) both map to "current_28.61_77.20".

    Raises:
        ValueError: for non-finite or out-of-range coordinates or an
            unknown request type
    """
    if request_type not in REQUEST_TYPES:
        raise ValueError(f"Unknown request type: {request_type!r}")
    for name, value, limit in (("latitude", lat, 90), ("longitude", lon, 180)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        if not math.isfinite(value) or abs(value) > limit:
            raise ValueError(f"{name} out of range: {value!r}")
    return f"{request_type}_{_fixed(lat)}_{_fixed(lon)}"


def _fixed(value: float) -> str:
    # Half away from zero on the exact binary value: 28.125 -> "28.13".
    rounded = Decimal(value).quantize(KEY_QUANTUM, rounding=ROUND_HALF_UP)
    if rounded.is_zero():
        rounded = rounded.copy_abs()
    return str(rounded)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: WeatherSnapshot
    cached_at: float
    expires_at: float

    def to_record(self) -> dict:
        return {
            "payload": self.payload.to_dict(),
            "cached_at": self.cached_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_record(cls, key: str, record: dict) -> "CacheEntry":
        return cls(
            key=key,
            payload=WeatherSnapshot.from_dict(record["payload"]),
            cached_at=float(record["cached_at"]),
            expires_at=float(record["expires_at"]),
        )


class ResponseCache:
    """
    Write-through cache of weather snapshots.

    Expired entries stay addressable so they can be served when the provider
    is unreachable; an entry only disappears when it is overwritten or the
    whole cache is cleared. There is no background sweep: the number of
    distinct rounded locations a farm queries is small.
    """

    def __init__(self, store: StateStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._load()

    def _load(self) -> None:
        try:
            records = self.store.load(RECORD_NAME) or {}
        except StateStoreError as e:
            logging.warning(f"Failed to load weather cache, starting empty: {e}")
            return

        for key, record in records.items():
            try:
                self._entries[key] = CacheEntry.from_record(key, record)
            except (KeyError, TypeError, ValueError) as e:
                logging.warning(f"Dropping malformed cache entry {key}: {e}")
        logging.info("Weather cache loaded: %s entries", len(self._entries))

    def _persist(self) -> None:
        records = {key: entry.to_record() for key, entry in self._entries.items()}
        try:
            self.store.save(RECORD_NAME, records)
        except StateStoreError as e:
            # losing a cache entry only costs a future miss
            logging.error(f"Failed to save weather cache: {e}")

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry whether or not it is still fresh."""
        with self._lock:
            return self._entries.get(key)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() < entry.expires_at

    def get_fresh(self, key: str) -> Optional[CacheEntry]:
        entry = self.get(key)
        if entry is not None and self.is_fresh(entry):
            return entry
        return None

    def put(self, key: str, payload: WeatherSnapshot, ttl: float) -> CacheEntry:
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        now = self._clock()
        entry = CacheEntry(key=key, payload=payload, cached_at=now, expires_at=now + ttl)
        with self._lock:
            self._entries[key] = entry
            self._persist()
        logging.debug("Cached %s until %s", key, entry.expires_at)
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            try:
                self.store.delete(RECORD_NAME)
            except StateStoreError as e:
                logging.error(f"Failed to clear weather cache from storage: {e}")
        logging.info("Weather cache cleared")

    def size(self) -> int:
        with self._lock:
            return len(self._entries)
