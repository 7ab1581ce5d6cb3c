
import time
import threading
from typing import Callable, Optional

class TokenBucket:
    """Blocking token bucket shared by every gateway call of a job."""
    def __init__(self, rate_per_sec: float, capacity: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.rate = max(0.1, float(rate_per_sec))
        self.capacity = capacity or self.rate
        self.tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self.timestamp = clock()
        self.lock = threading.Lock()

    def acquire(self, amount: float = 1.0) -> float:
        """Take ``amount`` tokens, sleeping until they are available. Returns seconds waited."""
        waited = 0.0
        while True:
            with self.lock:
                now = self._clock()
                self.tokens = min(self.capacity, self.tokens + (now - self.timestamp) * self.rate)
                self.timestamp = now
                if self.tokens >= amount:
                    self.tokens -= amount
                    return waited
                delay = (amount - self.tokens) / self.rate
            self._sleep(delay)
            waited += delay
