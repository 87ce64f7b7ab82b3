"""Collapse concurrent fetches for the same key into one call."""
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, TypeVar

T = TypeVar("T")


class RequestCoalescer:
    """
    Keyed registry of pending results.

    The first caller for a key becomes the leader: it registers a Future,
    runs `fetch_fn` on its own thread and publishes the outcome. Callers that
    arrive while the Future is registered wait on it instead of fetching.
    The registry is guarded by a lock, so at most one fetch per key runs even
    when callers are on different threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Dict[str, Future] = {}

    def fetch_or_join(self, key: str, fetch_fn: Callable[[], T]) -> T:
        """
        Run `fetch_fn` once for `key`, or wait for the run already in flight.

        Every caller gets the same return value, or the same exception
        re-raised.
        """
        with self._lock:
            future = self._pending.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._pending[key] = future

        if not leader:
            logging.debug("Joining in-flight request for %s", key)
            return future.result()

        try:
            result = fetch_fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]

    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)
