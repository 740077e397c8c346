"""Payment model (idempotency + audit table).

Every payment webhook that passes verification is recorded here by its
PayPal payment ID. The unique constraint on payment_id is what makes
ingestion idempotent: a retried delivery fails the insert and is treated
as already processed. Rows are never updated by the webhook pipeline.
"""

import uuid
from datetime import timezone

from sqlalchemy.types import DateTime, TypeDecorator

from payrelay.extensions import db


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way in, so values are stored as naive UTC
    and handed back with tzinfo=UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Payment(db.Model):
    __tablename__ = "payments"

    # -- Normalized statuses (PayPal states are mapped onto these) --
    STATUSES = [
        "PENDING",
        "COMPLETED",
        "FAILED",
        "REFUNDED",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    payment_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "8MC585209K746392H"
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)  # e.g. "USD"
    status = db.Column(
        db.String(20), nullable=False
    )  # PENDING | COMPLETED | FAILED | REFUNDED
    create_time = db.Column(UTCDateTime(), nullable=False)  # from PayPal
    processed_at = db.Column(UTCDateTime(), nullable=False, index=True)
    event_type = db.Column(
        db.String(255), nullable=True
    )  # e.g. "PAYMENT.SALE.COMPLETED"

    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )

    def to_dict(self):
        return {
            "payment_id": self.payment_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "event_type": self.event_type,
        }

    def __repr__(self):
        return f"<Payment {self.payment_id} {self.amount} {self.currency} ({self.status})>"
