"""Daily call budget and minimum call spacing for the upstream weather API."""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from state_store import StateStore, StateStoreError

DAY_SECONDS = 24 * 60 * 60
RECORD_NAME = "weather_api_calls"

DAILY_LIMIT = "daily-limit"
RATE_LIMIT = "rate-limit"


@dataclass
class CallBudget:
    """Provider call consumption inside the current quota window."""
    calls_used: int
    daily_limit: int
    window_reset_at: float
    last_call_at: Optional[float] = None

    def to_record(self) -> dict:
        # daily_limit is configuration, not state
        return {
            "calls_used": self.calls_used,
            "window_reset_at": self.window_reset_at,
            "last_call_at": self.last_call_at,
        }


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after: Optional[float] = None  # seconds


@dataclass(frozen=True)
class QuotaStats:
    calls_used: int
    calls_remaining: int
    daily_limit: int
    window_reset_at: float

    @property
    def reset_time(self) -> str:
        return datetime.fromtimestamp(self.window_reset_at, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class QuotaReservation:
    """One counted call, as handed out by `QuotaTracker.acquire`."""
    acquired_at: float
    window_reset_at: float
    previous_last_call_at: Optional[float] = None


class QuotaExceededError(Exception):
    """A call was refused locally before reaching the network."""

    def __init__(self, decision: QuotaDecision):
        super().__init__(f"API call not allowed: {decision.reason} (retry after {decision.retry_after or 0:.0f}s)")
        self.decision = decision


class QuotaTracker:
    """
    Persists and enforces the provider's daily call budget.

    Every mutation is written to the store before the mutating call returns,
    so restarting the process never hands back quota that was already spent.
    The window rolls over lazily: the first check after `window_reset_at`
    zeroes the counter and opens a new 24 hour window starting at that check.
    """

    def __init__(
        self,
        store: StateStore,
        daily_limit: int = 500,
        min_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        if daily_limit < 0:
            raise ValueError("daily_limit must not be negative")
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative")
        self.store = store
        self.daily_limit = daily_limit
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._budget = self._load()

    @property
    def budget(self) -> CallBudget:
        with self._lock:
            return CallBudget(**vars(self._budget))

    def _fresh_budget(self, now: float) -> CallBudget:
        return CallBudget(calls_used=0, daily_limit=self.daily_limit, window_reset_at=now + DAY_SECONDS)

    def _load(self) -> CallBudget:
        now = self._clock()
        try:
            record = self.store.load(RECORD_NAME)
        except StateStoreError as e:
            logging.warning(f"Failed to load API call tracker, starting a new window: {e}")
            record = None

        budget = None
        if record is not None:
            try:
                last_call_at = record.get("last_call_at")
                budget = CallBudget(
                    calls_used=int(record["calls_used"]),
                    daily_limit=self.daily_limit,
                    window_reset_at=float(record["window_reset_at"]),
                    last_call_at=float(last_call_at) if last_call_at is not None else None,
                )
            except (KeyError, TypeError, ValueError) as e:
                logging.warning(f"Ignoring malformed API call tracker record: {e}")

        if budget is None:
            budget = self._fresh_budget(now)
            self._budget = budget
            self._persist()
            return budget

        self._budget = budget
        self._roll_over(now)
        logging.info(
            "API call tracker loaded: %s/%s calls used, window resets %s",
            budget.calls_used, self.daily_limit, self.stats().reset_time,
        )
        return budget

    def _persist(self) -> None:
        try:
            self.store.save(RECORD_NAME, self._budget.to_record())
        except StateStoreError as e:
            logging.error(f"Failed to save API call tracker: {e}")

    def _roll_over(self, now: float) -> None:
        if now > self._budget.window_reset_at:
            logging.info("Quota window expired, resetting API call counter")
            self._budget.calls_used = 0
            self._budget.window_reset_at = now + DAY_SECONDS
            self._persist()

    def _decide(self, now: float) -> QuotaDecision:
        budget = self._budget
        if budget.calls_used >= self.daily_limit:
            return QuotaDecision(False, DAILY_LIMIT, max(0.0, budget.window_reset_at - now))

        if budget.last_call_at is not None:
            since_last = now - budget.last_call_at
            if since_last < self.min_interval_seconds:
                return QuotaDecision(False, RATE_LIMIT, self.min_interval_seconds - since_last)

        return QuotaDecision(True)

    def can_call(self) -> QuotaDecision:
        """Check the daily limit first, then the minimum spacing since the last call."""
        with self._lock:
            now = self._clock()
            self._roll_over(now)
            return self._decide(now)

    def check(self) -> None:
        """Raise QuotaExceededError unless a call is allowed right now."""
        decision = self.can_call()
        if not decision.allowed:
            logging.warning(f"Weather API call blocked: {decision.reason}, retry in {decision.retry_after or 0:.0f}s")
            raise QuotaExceededError(decision)

    def acquire(self) -> QuotaReservation:
        """
        Check and count one call in a single step.

        Concurrent callers can never both pass the check for the last call of
        the window. Hand the reservation back to `release` when the provider
        did not accept the call.

        Raises:
            QuotaExceededError: If no call is allowed right now
        """
        with self._lock:
            now = self._clock()
            self._roll_over(now)
            decision = self._decide(now)
            if not decision.allowed:
                logging.warning(f"Weather API call blocked: {decision.reason}, retry in {decision.retry_after or 0:.0f}s")
                raise QuotaExceededError(decision)

            reservation = QuotaReservation(
                acquired_at=now,
                window_reset_at=self._budget.window_reset_at,
                previous_last_call_at=self._budget.last_call_at,
            )
            self._budget.calls_used += 1
            self._budget.last_call_at = now
            self._persist()
            logging.debug("Reserved API call %s/%s", self._budget.calls_used, self.daily_limit)
            return reservation

    def release(self, reservation: QuotaReservation) -> None:
        """Give back a reserved call the provider never accepted."""
        with self._lock:
            budget = self._budget
            if budget.window_reset_at != reservation.window_reset_at:
                # window rolled over or was reset since; nothing of ours to undo
                return
            if budget.calls_used > 0:
                budget.calls_used -= 1
            if budget.last_call_at == reservation.acquired_at:
                budget.last_call_at = reservation.previous_last_call_at
            self._persist()
            logging.debug("Released API call, %s/%s used", budget.calls_used, self.daily_limit)

    def record_call(self) -> None:
        """Count one call the provider accepted. Never call this for cache hits or joined requests."""
        with self._lock:
            now = self._clock()
            self._roll_over(now)
            self._budget.calls_used += 1
            self._budget.last_call_at = now
            self._persist()
            logging.debug("Recorded API call %s/%s", self._budget.calls_used, self.daily_limit)

    def stats(self) -> QuotaStats:
        with self._lock:
            return QuotaStats(
                calls_used=self._budget.calls_used,
                calls_remaining=max(0, self.daily_limit - self._budget.calls_used),
                daily_limit=self.daily_limit,
                window_reset_at=self._budget.window_reset_at,
            )

    def reset(self) -> None:
        """Start a new, empty window now. Meant for tests and manual intervention."""
        with self._lock:
            self._budget = self._fresh_budget(self._clock())
            self._persist()
            logging.info("API call counter reset")
