import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


DEFAULT_MESSAGE_TEMPLATE = (
    "🆕 NEW PAYMENT at {service_name}\n\n"
    "💫 Current Transaction:\n"
    "━━━━━━━━━━━━━━━━━━━━\n"
    "💰 Amount: {amount} {currency}\n"
    "🆔 Payment ID: {payment_id}\n"
    "📅 Time: {create_time}\n"
    "✅ Status: {status}\n\n"
    "📊 Statistics:\n"
    "━━━━━━━━━━━━━━━━━━━━\n"
    "📈 Last 24 Hours:\n"
    "   • Transactions: {payments24h}\n"
    "   • Total Amount: {sumamounts24h} {currency}\n\n"
    "📈 Last 7 Days:\n"
    "   • Transactions: {payments7d}\n"
    "   • Total Amount: {sumamounts7d} {currency}\n\n"
    "📈 Last 28 Days:\n"
    "   • Transactions: {payments28d}\n"
    "   • Total Amount: {sumamounts28d} {currency}"
)


class Config:
    """Base configuration. Shared across all environments."""

    # --- Database ---
    # Some PaaS providers (Railway, Heroku) hand out "postgres://" URLs,
    # which SQLAlchemy 1.4+ doesn't accept. Empty means a SQLite file in
    # the instance folder (resolved in create_app).
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- PayPal ---
    PAYPAL_MODE = os.environ.get("PAYPAL_MODE", "live")  # live | sandbox
    PAYPAL_API_BASE = os.environ.get("PAYPAL_API_BASE")  # overrides PAYPAL_MODE
    PAYPAL_WEBHOOK_ID = os.environ.get("PAYPAL_WEBHOOK_ID")
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET")
    # Reject transmissions older than this many seconds. 0 disables the check.
    PAYPAL_MAX_TRANSMISSION_AGE = int(os.environ.get("PAYPAL_MAX_TRANSMISSION_AGE", 0))
    PAYPAL_TIMEOUT = float(os.environ.get("PAYPAL_TIMEOUT", 15))

    # --- Telegram ---
    TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")
    TELEGRAM_SERVICE_NAME = os.environ.get("TELEGRAM_SERVICE_NAME", "My Webservice")
    TELEGRAM_MESSAGE_TEMPLATE = os.environ.get(
        "TELEGRAM_MESSAGE_TEMPLATE", DEFAULT_MESSAGE_TEMPLATE
    )
    TELEGRAM_API_BASE = os.environ.get("TELEGRAM_API_BASE", "https://api.telegram.org")
    TELEGRAM_TIMEOUT = float(os.environ.get("TELEGRAM_TIMEOUT", 10))
    # Send in a background thread so a slow Telegram never delays the ack.
    TELEGRAM_ASYNC = _env_flag("TELEGRAM_ASYNC", "true")

    # --- Webhook rate limiting ---
    RATELIMIT_MAX_REQUESTS = int(os.environ.get("RATELIMIT_MAX_REQUESTS", 100))
    RATELIMIT_WINDOW_SECONDS = int(os.environ.get("RATELIMIT_WINDOW_SECONDS", 3600))
    RATELIMIT_SCOPE = os.environ.get("RATELIMIT_SCOPE", "ip")  # ip | global
    RATELIMIT_STORAGE = os.environ.get("RATELIMIT_STORAGE", "database")  # database | memory

    # --- Access log ---
    LOG_DIR = os.environ.get("LOG_DIR")  # defaults to <instance>/logs
    LOG_FILENAME = os.environ.get("LOG_FILENAME", "cppp.log")
    LOG_MAX_BYTES = int(os.environ.get("LOG_MAX_BYTES", 5 * 1024 * 1024))

    # --- Diagnostics API ---
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")
    API_RATE_LIMIT = os.environ.get("API_RATE_LIMIT", "60 per minute")

    # --- Maintenance ---
    PAYMENT_RETENTION_DAYS = int(os.environ.get("PAYMENT_RETENTION_DAYS", 60))

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "PAYPAL_WEBHOOK_ID",
            "PAYPAL_CLIENT_ID",
            "PAYPAL_CLIENT_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    PAYPAL_MODE = os.environ.get("PAYPAL_MODE", "sandbox")
    RATELIMIT_STORAGE = os.environ.get("RATELIMIT_STORAGE", "memory")


class TestConfig(Config):
    """Testing — in-memory SQLite, synchronous notifications."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAYPAL_MODE = "sandbox"
    PAYPAL_API_BASE = None
    PAYPAL_WEBHOOK_ID = "WH-TEST-123"
    PAYPAL_CLIENT_ID = "client_test_fake"
    PAYPAL_CLIENT_SECRET = "secret_test_fake"
    PAYPAL_MAX_TRANSMISSION_AGE = 0
    TELEGRAM_BOT_TOKEN = "123456:test-token"
    TELEGRAM_CHAT_ID = "-100123"
    TELEGRAM_SERVICE_NAME = "Test Service"
    TELEGRAM_MESSAGE_TEMPLATE = DEFAULT_MESSAGE_TEMPLATE
    TELEGRAM_ASYNC = False  # tests assert on the outbound call directly
    RATELIMIT_MAX_REQUESTS = 100
    RATELIMIT_WINDOW_SECONDS = 3600
    RATELIMIT_SCOPE = "ip"
    RATELIMIT_STORAGE = "memory"
    RATELIMIT_ENABLED = False  # Flask-Limiter (diagnostics API) off in tests
    ADMIN_API_TOKEN = "admin-test-token"
    LOG_MAX_BYTES = 5 * 1024 * 1024

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
