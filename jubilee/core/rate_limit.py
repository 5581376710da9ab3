import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float


class RateLimiter:
    """Fixed-window request counter per (scope, user).

    Lives in process memory only; each FastAPI app builds its own instance in
    its lifespan, so it does not survive restarts or span several workers.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, str], Tuple[int, float]] = {}

    def check(self, scope: str, user_id: str, max_requests: int, window_s: float = 60.0) -> RateLimitResult:
        now = self._clock()
        key = (scope, user_id)
        with self._lock:
            current = self._windows.get(key)
            if current is None or now > current[1]:
                reset_time = now + window_s
                self._windows[key] = (1, reset_time)
                return RateLimitResult(True, max_requests - 1, reset_time)

            count, reset_time = current
            if count >= max_requests:
                return RateLimitResult(False, 0, reset_time)

            count += 1
            self._windows[key] = (count, reset_time)
            return RateLimitResult(True, max_requests - count, reset_time)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
