"""
### Rate Limiter

Throttles how often a caller may compile & run pipelines: at most `limit` uses within any `window` seconds.
Every caller (e.g. an API key, an agent session) has a window of its own; `None` is a caller too.

```python
limiter = RateLimiter(limit=60, window=60)

limiter.check('agent-1')  # records a use, or raises RateLimitExceeded
limiter.stats('agent-1')
# -> {'limit': 60, 'window': 60, 'used': 1, 'remaining': 59, 'retry_after': None}
```

The limiter is thread-safe: a single lock guards every check & record, so concurrent callers
can never get more than `limit` uses through.
"""

import logging
import threading
import time
from collections import deque

from .exc import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    """ Sliding window rate limiter

        :param limit: Maximum number of uses within a window
        :param window: Window length, seconds
        :param clock: A function that returns the current time, seconds. Monotonic by default.
    """

    DEFAULT_LIMIT = 60
    DEFAULT_WINDOW = 60

    #: The smallest `retry_after` ever reported, seconds
    MIN_RETRY_AFTER = 0.1

    def __init__(self, limit: int = DEFAULT_LIMIT, window: float = DEFAULT_WINDOW, clock=time.monotonic):
        if limit < 1:
            raise ValueError('Rate limit must be at least 1; got {}'.format(limit))
        if window <= 0:
            raise ValueError('Rate limit window must be positive; got {}'.format(window))

        self.limit = limit
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()

        # caller => timestamps of its recent uses, oldest first
        self._requests = {}

    def check(self, caller=None) -> bool:
        """ Record a use

            :raises RateLimitExceeded: the caller has used up the window
        """
        with self._lock:
            requests = self._cleanup(caller)
            if len(requests) >= self.limit:
                retry_after = self._retry_after(requests)
                logger.info('Rate limit hit by %r: %s uses in %ss, retry after %.1fs',
                            caller, len(requests), self.window, retry_after)
                raise RateLimitExceeded(limit=self.limit, window=self.window, retry_after=retry_after)

            requests.append(self._clock())
            self._requests[caller] = requests
            return True

    def is_available(self, caller=None) -> bool:
        """ Would check() succeed now? """
        with self._lock:
            return len(self._cleanup(caller)) < self.limit

    def remaining(self, caller=None) -> int:
        """ The number of uses left in the current window """
        with self._lock:
            return max(self.limit - len(self._cleanup(caller)), 0)

    def retry_after(self, caller=None):
        """ Seconds until the caller can try again, or `None` when not limited """
        with self._lock:
            requests = self._cleanup(caller)
            if len(requests) < self.limit:
                return None
            return self._retry_after(requests)

    def stats(self, caller=None) -> dict:
        with self._lock:
            requests = self._cleanup(caller)
            used = len(requests)
            return {
                'limit': self.limit,
                'window': self.window,
                'used': used,
                'remaining': max(self.limit - used, 0),
                'retry_after': self._retry_after(requests) if used >= self.limit else None,
            }

    def reset(self, caller=None):
        """ Forget recorded uses of a caller; `None` resets everyone """
        with self._lock:
            if caller is None:
                self._requests.clear()
            else:
                self._requests.pop(caller, None)

    def _cleanup(self, caller) -> deque:
        """ Drop uses that went out of the window. Must be called with the lock held. """
        requests = self._requests.get(caller)
        if requests is None:
            return deque()

        cutoff = self._clock() - self.window
        while requests and requests[0] < cutoff:
            requests.popleft()

        # Forget idle callers
        if not requests:
            del self._requests[caller]
        return requests

    def _retry_after(self, requests: deque) -> float:
        if not requests:
            return self.MIN_RETRY_AFTER
        oldest = requests[0]
        return max(oldest + self.window - self._clock(), self.MIN_RETRY_AFTER)
