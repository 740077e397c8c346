"""
Telegram notification service.

Sends a human-readable "new payment" message to a Telegram chat through the
Bot API. Notification is best-effort: a failed send is logged and reported
as a failed NotificationResult, never raised, so it can't undo or fail the
webhook that triggered it.

Usage:
    notifier = TelegramNotifier.from_config(app.config)
    result = notifier.notify(payment, stats)
    if not result.sent:
        ...  # already logged
"""

import html
import logging
import threading
from dataclasses import dataclass

import requests

from payrelay.config import DEFAULT_MESSAGE_TEMPLATE
from payrelay.errors import NotificationFailure

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    sent: bool
    reason: str = None


class _Placeholders(dict):
    """format_map mapping that leaves unknown {fields} in place."""

    def __missing__(self, key):
        return "{" + key + "}"


class TelegramNotifier:

    def __init__(self, bot_token, chat_id, service_name="My Webservice",
                 template=DEFAULT_MESSAGE_TEMPLATE,
                 api_base="https://api.telegram.org", timeout=10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.service_name = service_name
        self.template = template
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, app_config):
        return cls(
            bot_token=app_config.get("TELEGRAM_BOT_TOKEN"),
            chat_id=app_config.get("TELEGRAM_CHAT_ID"),
            service_name=app_config.get("TELEGRAM_SERVICE_NAME", "My Webservice"),
            template=app_config.get("TELEGRAM_MESSAGE_TEMPLATE") or DEFAULT_MESSAGE_TEMPLATE,
            api_base=app_config.get("TELEGRAM_API_BASE", "https://api.telegram.org"),
            timeout=app_config.get("TELEGRAM_TIMEOUT", 10),
        )

    @property
    def configured(self):
        return bool(self.bot_token and self.chat_id)

    def format_message(self, payment, stats=None):
        """Render the message template for a payment.

        Stats default to "this payment only" when not supplied, matching
        what the first payment in an empty database would show.

        Raises NotificationFailure if the template can't be rendered
        (format specs, stray braces, positional fields).
        """
        stats = stats or {}
        values = {
            "service_name": self.service_name,
            "amount": payment.amount,
            "currency": payment.currency,
            "payment_id": payment.payment_id,
            "create_time": payment.create_time.strftime("%Y-%m-%d %H:%M:%S UTC")
            if payment.create_time else "",
            "status": payment.status,
        }
        for label in ("24h", "7d", "28d"):
            values[f"payments{label}"] = stats.get(f"payments{label}") or 1
            values[f"sumamounts{label}"] = stats.get(f"sumamounts{label}") or payment.amount

        escaped = {key: html.escape(str(value)) for key, value in values.items()}
        try:
            return self.template.format_map(_Placeholders(escaped))
        except (ValueError, KeyError, IndexError, AttributeError) as e:
            raise NotificationFailure(f"message template could not be rendered: {e}")

    def notify(self, payment, stats=None):
        """Send the payment message. Blocks until Telegram answers or times out.

        Returns NotificationResult(sent=True) or NotificationResult(sent=False, reason).
        """
        try:
            text = self.format_message(payment, stats)
        except NotificationFailure as e:
            logger.error(f"Telegram notification for {payment.payment_id} not sent: {e}")
            return NotificationResult(sent=False, reason=str(e))
        return self._deliver(payment.payment_id, text)

    def notify_async(self, payment, stats=None):
        """Send in a background thread so the webhook response doesn't wait.

        The message is rendered here, in the request thread, so the worker
        never touches the (session-bound) Payment. The outcome only reaches
        the log. Returns the worker thread, or None if the message could
        not be rendered (nothing is sent then).
        """
        try:
            text = self.format_message(payment, stats)
        except NotificationFailure as e:
            logger.error(f"Telegram notification for {payment.payment_id} not sent: {e}")
            return None
        thread = threading.Thread(target=self._deliver, args=(payment.payment_id, text))
        thread.daemon = True
        thread.start()
        return thread

    def _deliver(self, payment_id, text):
        if not self.configured:
            logger.warning(
                f"Telegram notification for {payment_id} not sent — "
                "TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not configured."
            )
            return NotificationResult(sent=False, reason="not configured")

        try:
            self._send(text)
        except NotificationFailure as e:
            logger.error(f"Failed to send Telegram notification for {payment_id}: {e}")
            return NotificationResult(sent=False, reason=str(e))

        logger.info(f"Telegram notification sent for payment {payment_id}")
        return NotificationResult(sent=True)

    def _send(self, text):
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        try:
            resp = requests.post(
                url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            # requests puts the URL (and with it the bot token) in the message
            detail = str(e).replace(self.bot_token, "<token>")
            raise NotificationFailure(f"request failed: {detail}")

        if resp.status_code != 200:
            raise NotificationFailure(f"Telegram returned HTTP {resp.status_code}")

        try:
            ok = resp.json().get("ok")
        except (ValueError, AttributeError):
            ok = False
        if not ok:
            raise NotificationFailure("Telegram did not acknowledge the message")
