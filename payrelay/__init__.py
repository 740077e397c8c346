import os
import logging

import click
from flask import Flask, jsonify

from payrelay.config import config_by_name
from payrelay.extensions import db, migrate, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None, overrides=None):
    """Application factory.

    overrides: optional dict applied on top of the selected config
    (tests use it to point LOG_DIR at a temp directory).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Default database: SQLite file in the instance folder ---
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        os.makedirs(app.instance_path, exist_ok=True)
        app.config["SQLALCHEMY_DATABASE_URI"] = (
            "sqlite:///" + os.path.join(app.instance_path, "payrelay.db")
        )

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from payrelay import models  # noqa: F401

    # --- Webhook pipeline ---
    init_webhook_pipeline(app)

    # --- Register blueprints ---
    from payrelay.blueprints.webhooks import webhooks_bp
    from payrelay.blueprints.api import api_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(api_bp)

    # --- Error handlers (JSON, PayPal never sees HTML) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify(status=404, message="Not Found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(status=405, message="Method Not Allowed"), 405

    @app.errorhandler(429)
    def too_many_requests(e):
        return jsonify(status=429, message="Too Many Requests"), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(status=500, message="Internal Server Error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Nothing here is meant to be framed or cached
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def init_webhook_pipeline(app):
    """Build the webhook pipeline collaborators and attach them to the app.

    Stored on app.extensions so blueprints, CLI commands and tests all use
    the same instances (and tests can swap one out).
    """
    from payrelay.services.log_manager import LogManager, resolve_log_dir
    from payrelay.services.payment_store import PaymentStore
    from payrelay.services.paypal_service import PayPalVerifier
    from payrelay.services.rate_limiter import build_rate_limiter
    from payrelay.services.telegram_service import TelegramNotifier
    from payrelay.services.webhook_handler import WebhookHandler

    store = PaymentStore()
    notifier = TelegramNotifier.from_config(app.config)
    log_manager = LogManager.from_config(app.config, resolve_log_dir(app))

    app.extensions["payment_store"] = store
    app.extensions["telegram_notifier"] = notifier
    app.extensions["access_log"] = log_manager
    app.extensions["webhook_handler"] = WebhookHandler(
        rate_limiter=build_rate_limiter(app.config),
        verifier=PayPalVerifier.from_config(app.config),
        store=store,
        notifier=notifier,
        log_manager=log_manager,
        notify_async=app.config.get("TELEGRAM_ASYNC", False),
    )


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("init-db")
    def init_db():
        """Create the payments and rate_windows tables if they don't exist.

        For managed deployments prefer `flask db upgrade`.
        """
        db.create_all()
        click.echo(f"Database ready: {app.config['SQLALCHEMY_DATABASE_URI']}")

    @app.cli.command("payment-stats")
    @click.option("--currency", default="USD", help="Currency to report on")
    def payment_stats(currency):
        """Show payment counts and totals for the last 24h / 7d / 28d.

        Usage:
            flask payment-stats
            flask payment-stats --currency EUR
        """
        store = app.extensions["payment_store"]
        stats = store.stats(currency.upper())

        click.echo("")
        click.echo("=" * 60)
        click.echo(f"Payments in {currency.upper()}")
        click.echo("=" * 60)
        for label, title in (("24h", "Last 24 Hours"), ("7d", "Last 7 Days"),
                             ("28d", "Last 28 Days")):
            click.echo(
                f"  {title:<14} {stats[f'payments{label}']:>6} transaction(s)   "
                f"{stats[f'sumamounts{label}']} {currency.upper()}"
            )
        click.echo("=" * 60)

    @app.cli.command("prune-payments")
    @click.option("--days", type=int, default=None,
                  help="Delete payments processed more than this many days ago "
                       "(default: PAYMENT_RETENTION_DAYS)")
    @click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
    def prune_payments(days, yes):
        """Delete old payment records.

        The webhook pipeline never deletes anything; this is the only
        retention mechanism. Note that pruned payment IDs are no longer
        protected against duplicate delivery.

        Usage:
            flask prune-payments
            flask prune-payments --days 90 --yes
        """
        if days is None:
            days = app.config["PAYMENT_RETENTION_DAYS"]
        if days <= 0:
            raise click.BadParameter("--days must be positive")

        if not yes:
            click.confirm(f"Delete payments processed more than {days} days ago?", abort=True)

        deleted = app.extensions["payment_store"].prune(days)
        click.echo(f"Deleted {deleted} payment(s).")

    @app.cli.command("send-test-notification")
    def send_test_notification():
        """Send a sample payment message to the configured Telegram chat."""
        from datetime import datetime, timezone
        from decimal import Decimal

        from payrelay.models.payment import Payment

        sample = Payment(
            payment_id="TEST-NOTIFICATION",
            amount=Decimal("1.00"),
            currency="USD",
            status="COMPLETED",
            create_time=datetime.now(timezone.utc),
        )
        result = app.extensions["telegram_notifier"].notify(sample)
        if result.sent:
            click.echo("Test notification sent.")
        else:
            click.echo(f"ERROR: test notification not sent ({result.reason}).")
