"""Payment store — persistence for processed payments.

Responsible for:
- Idempotent insert of payment records (record_if_new)
- Lookup by PayPal payment ID
- Rolling statistics for the notification message
- Retention pruning (operator CLI only, never the webhook path)

Idempotency is enforced by the unique constraint on payments.payment_id,
not by a read before the write: two near-simultaneous deliveries of the
same payment both try to insert, and the loser's IntegrityError is the
signal that the payment already exists.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from payrelay.errors import PersistenceFailure
from payrelay.extensions import db
from payrelay.models.payment import Payment

logger = logging.getLogger(__name__)

INSERTED = "inserted"
ALREADY_EXISTS = "already_exists"

# (label, window) pairs used in the notification template
STATS_WINDOWS = (
    ("24h", timedelta(hours=24)),
    ("7d", timedelta(days=7)),
    ("28d", timedelta(days=28)),
)


class PaymentStore:
    """Thin persistence layer over the payments table.

    Uses the Flask-SQLAlchemy session, so it needs an application context.
    """

    def record_if_new(self, record):
        """Insert record unless its payment_id is already stored.

        Returns INSERTED or ALREADY_EXISTS.
        Raises PersistenceFailure on any other database error.
        """
        if record.processed_at is None:
            record.processed_at = datetime.now(timezone.utc)

        payment_id = record.payment_id
        try:
            db.session.add(record)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if self._exists(payment_id):
                logger.info(f"Payment {payment_id} already recorded, skipping")
                return ALREADY_EXISTS
            logger.error(f"Constraint violation storing payment {payment_id}: {e}")
            raise PersistenceFailure(f"constraint violation: {e.orig}") from e
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to store payment {payment_id}: {e}", exc_info=True)
            raise PersistenceFailure(str(e)) from e

        logger.info(f"Recorded payment {payment_id} ({record.amount} {record.currency})")
        return INSERTED

    def find_by_payment_id(self, payment_id):
        """Return the Payment with this PayPal ID, or None."""
        return Payment.query.filter_by(payment_id=payment_id).first()

    def _exists(self, payment_id):
        try:
            return self.find_by_payment_id(payment_id) is not None
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure(str(e)) from e

    def stats(self, currency, now=None):
        """Count and sum of payments processed recently, per window.

        Returns a dict keyed the way the message template expects:
        payments24h, sumamounts24h, payments7d, ... Only payments in
        `currency` are counted, since summing across currencies is meaningless.
        """
        now = now or datetime.now(timezone.utc)
        stats = {}
        for label, window in STATS_WINDOWS:
            count, total = (
                db.session.query(func.count(Payment.id), func.sum(Payment.amount))
                .filter(
                    Payment.currency == currency,
                    Payment.processed_at > now - window,
                )
                .one()
            )
            stats[f"payments{label}"] = count or 0
            stats[f"sumamounts{label}"] = Decimal(total or 0).quantize(Decimal("0.01"))
        return stats

    def prune(self, older_than_days, now=None):
        """Delete payments processed more than `older_than_days` ago.

        Returns the number of rows deleted.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=older_than_days)
        try:
            deleted = Payment.query.filter(Payment.processed_at < cutoff).delete(
                synchronize_session=False
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure(str(e)) from e
        logger.info(f"Pruned {deleted} payment(s) processed before {cutoff.isoformat()}")
        return deleted
