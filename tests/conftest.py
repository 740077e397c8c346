"""Shared test fixtures for the payrelay test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, sync notifications)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- webhook_handler: the app's handler with a fresh rate limiter and a
  per-test access log
- access_log_path / access_log_entries: the per-test access log and a reader
- http: fake requests.post answering for PayPal and Telegram
"""

from unittest.mock import MagicMock, patch

import pytest

from payrelay import create_app
from payrelay.extensions import db as _db
from payrelay.services.log_manager import LogManager
from payrelay.services.rate_limiter import MemoryWindowStore, RateLimiter


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application configured for testing."""
    log_dir = tmp_path_factory.mktemp("logs")
    app = create_app("testing", overrides={"LOG_DIR": str(log_dir)})
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def access_log_path(tmp_path_factory):
    return tmp_path_factory.mktemp("access") / "cppp.log"


@pytest.fixture(autouse=True)
def webhook_handler(app, access_log_path, monkeypatch):
    """Give every test its own rate-limit counters and access log file.

    The app is session-scoped, so without this the handler's state would
    leak between tests.
    """
    access_log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = app.extensions["webhook_handler"]
    log_manager = LogManager(str(access_log_path), max_bytes=app.config["LOG_MAX_BYTES"])

    monkeypatch.setattr(handler, "rate_limiter", RateLimiter(
        MemoryWindowStore(),
        max_requests=app.config["RATELIMIT_MAX_REQUESTS"],
        window_seconds=app.config["RATELIMIT_WINDOW_SECONDS"],
    ))
    monkeypatch.setattr(handler, "log_manager", log_manager)
    yield handler
    log_manager.close()


@pytest.fixture
def access_log_entries(access_log_path):
    """Callable returning the access log lines written so far."""

    def read():
        if not access_log_path.exists():
            return []
        return access_log_path.read_text(encoding="utf-8").splitlines()

    return read


def _response(status_code, body):
    resp = MagicMock(status_code=status_code)
    resp.json.return_value = body
    return resp


class FakePost:
    """Stand-in for requests.post that answers like PayPal and Telegram.

    Flip the attributes to simulate failures; inspect .calls afterwards.
    """

    def __init__(self):
        self.calls = []
        self.verification_status = "SUCCESS"
        self.paypal_status_code = 200
        self.paypal_error = None
        self.telegram_status_code = 200
        self.telegram_ok = True
        self.telegram_error = None

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if url.endswith("/v1/notifications/verify-webhook-signature"):
            if self.paypal_error:
                raise self.paypal_error
            return _response(
                self.paypal_status_code,
                {"verification_status": self.verification_status},
            )
        if url.endswith("/sendMessage"):
            if self.telegram_error:
                raise self.telegram_error
            return _response(self.telegram_status_code, {"ok": self.telegram_ok})
        raise AssertionError(f"Unexpected POST to {url}")

    @property
    def paypal_calls(self):
        return [(url, kw) for url, kw in self.calls if "verify-webhook-signature" in url]

    @property
    def telegram_calls(self):
        return [(url, kw) for url, kw in self.calls if url.endswith("/sendMessage")]

    @property
    def telegram_messages(self):
        return [kw["json"]["text"] for _, kw in self.telegram_calls]


@pytest.fixture
def http():
    """Patch requests.post (used by both the PayPal and Telegram services)."""
    fake = FakePost()
    with patch("requests.post", new=fake):
        yield fake
