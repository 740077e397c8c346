"""Rate limiter — fixed-window request counter for the webhook endpoint.

Each key (client IP, or "global") gets a window that starts at its first
request. Within a window the counter saturates at max_requests: once the
limit is reached further requests are refused without being counted.
After the window elapses the next request starts a fresh window.

Counters live behind the WindowStore interface so the backing mechanism
can be swapped without touching callers:
- MemoryWindowStore: dict guarded by a lock (single process, lost on restart)
- SQLWindowStore: rate_windows table via compare-and-set UPDATEs
"""

import logging
import threading
import time

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError

from payrelay.errors import RateLimitExceeded
from payrelay.extensions import db
from payrelay.models.rate_window import RateWindow

logger = logging.getLogger(__name__)

GLOBAL_KEY = "global"


class WindowStore:
    """Backing store for rate windows.

    hit() must be atomic with respect to concurrent callers: count the
    request and report whether it was within the limit in one step.
    """

    def hit(self, key, max_requests, window_seconds, now):
        raise NotImplementedError

    def get(self, key):
        """Return (count, window_start) or None. Diagnostics only."""
        raise NotImplementedError


class MemoryWindowStore(WindowStore):

    def __init__(self):
        self._windows = {}
        self._lock = threading.Lock()

    def hit(self, key, max_requests, window_seconds, now):
        with self._lock:
            state = self._windows.get(key)
            if state is None or now - state[1] > window_seconds:
                self._windows[key] = (1, now)
                return True
            count, window_start = state
            if count >= max_requests:
                return False
            self._windows[key] = (count + 1, window_start)
            return True

    def get(self, key):
        with self._lock:
            return self._windows.get(key)


class SQLWindowStore(WindowStore):
    """Rate windows in the rate_windows table.

    Every step is a single conditional statement, so two workers racing on
    the same key can never both take the last slot:
      1. increment if the window is active and below the limit
      2. otherwise restart the window if it has expired
      3. otherwise insert a new row (primary key guards concurrent inserts)
    Requires an application context.
    """

    def hit(self, key, max_requests, window_seconds, now):
        cutoff = now - window_seconds

        for _ in range(2):
            try:
                bumped = db.session.execute(
                    update(RateWindow)
                    .where(
                        RateWindow.key == key,
                        RateWindow.window_start >= cutoff,
                        RateWindow.count < max_requests,
                    )
                    .values(count=RateWindow.count + 1)
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount == 1:
                    db.session.commit()
                    return True

                restarted = db.session.execute(
                    update(RateWindow)
                    .where(
                        RateWindow.key == key,
                        RateWindow.window_start < cutoff,
                    )
                    .values(count=1, window_start=now)
                    .execution_options(synchronize_session=False)
                )
                if restarted.rowcount == 1:
                    db.session.commit()
                    return True

                if db.session.get(RateWindow, key) is not None:
                    # Active window already at the limit
                    db.session.rollback()
                    return False

                db.session.execute(
                    insert(RateWindow).values(key=key, count=1, window_start=now)
                )
                db.session.commit()
                return True
            except IntegrityError:
                # Another request inserted the row first; retry the updates
                db.session.rollback()

        logger.warning(f"Rate window for {key} kept changing under us, refusing request")
        return False

    def get(self, key):
        row = db.session.get(RateWindow, key)
        if row is None:
            return None
        return row.count, row.window_start


class RateLimiter:
    """Allow at most max_requests per key within window_seconds."""

    def __init__(self, store, max_requests, window_seconds, clock=time.time):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    def allow(self, client_key):
        """Count one request for client_key. Returns False if over the limit."""
        allowed = self.store.hit(
            client_key, self.max_requests, self.window_seconds, self.clock()
        )
        if not allowed:
            logger.info(f"Rate limit reached for {client_key}")
        return allowed

    def check(self, client_key):
        """Like allow(), but raises RateLimitExceeded when over the limit."""
        if not self.allow(client_key):
            raise RateLimitExceeded(
                f"{client_key} exceeded {self.max_requests} requests "
                f"per {self.window_seconds}s"
            )


def build_rate_limiter(app_config):
    """Build a RateLimiter from RATELIMIT_* config values."""
    storage = app_config.get("RATELIMIT_STORAGE", "database")
    if storage == "memory":
        store = MemoryWindowStore()
    elif storage == "database":
        store = SQLWindowStore()
    else:
        raise ValueError(f"Unknown RATELIMIT_STORAGE: {storage}")

    return RateLimiter(
        store,
        max_requests=app_config.get("RATELIMIT_MAX_REQUESTS", 100),
        window_seconds=app_config.get("RATELIMIT_WINDOW_SECONDS", 3600),
    )
