"""Tests for the payment store.

Covers:
- Idempotent insert (inserted / already_exists, one row)
- Round trip of every field
- Constraint violations other than duplicates -> PersistenceFailure
- Rolling statistics per currency
- Retention pruning
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from payrelay.errors import PersistenceFailure
from payrelay.models.payment import Payment
from payrelay.services.payment_store import ALREADY_EXISTS, INSERTED, PaymentStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _payment(payment_id="TEST123", amount="100.00", currency="USD",
             status="COMPLETED", processed_at=None):
    return Payment(
        payment_id=payment_id,
        amount=Decimal(amount),
        currency=currency,
        status=status,
        create_time=datetime(2026, 3, 1, 11, 59, 30, tzinfo=timezone.utc),
        processed_at=processed_at,
        event_type="PAYMENT.SALE.COMPLETED",
    )


class TestRecordIfNew:
    """Idempotent ingestion."""

    def test_first_insert(self, db_session):
        store = PaymentStore()
        assert store.record_if_new(_payment()) == INSERTED
        assert Payment.query.count() == 1

    def test_duplicate_payment_id(self, db_session):
        """Same payment_id twice -> one inserted, one already_exists, one row."""
        store = PaymentStore()
        first = store.record_if_new(_payment())
        second = store.record_if_new(_payment(amount="999.99"))

        assert (first, second) == (INSERTED, ALREADY_EXISTS)
        assert Payment.query.filter_by(payment_id="TEST123").count() == 1
        # The original row is untouched
        assert store.find_by_payment_id("TEST123").amount == Decimal("100.00")

    def test_sets_processed_at(self, db_session):
        store = PaymentStore()
        before = datetime.now(timezone.utc)
        store.record_if_new(_payment())

        stored = store.find_by_payment_id("TEST123")
        assert stored.processed_at >= before - timedelta(seconds=1)
        assert stored.processed_at.tzinfo is not None

    def test_other_constraint_violation_raises(self, db_session):
        """A negative amount trips the check constraint, not the unique one."""
        store = PaymentStore()
        with pytest.raises(PersistenceFailure):
            store.record_if_new(_payment(amount="-5.00"))

        # Session is usable again afterwards
        assert store.record_if_new(_payment(payment_id="NEXT")) == INSERTED

    def test_missing_required_column_raises(self, db_session):
        store = PaymentStore()
        with pytest.raises(PersistenceFailure):
            store.record_if_new(_payment(currency=None))
        assert Payment.query.count() == 0


class TestFindByPaymentId:
    """Read path."""

    def test_round_trip(self, db_session):
        store = PaymentStore()
        written = _payment(processed_at=NOW)
        store.record_if_new(written)
        db_session.expunge_all()

        read = store.find_by_payment_id("TEST123")
        assert read.payment_id == "TEST123"
        assert read.amount == Decimal("100.00")
        assert read.currency == "USD"
        assert read.status == "COMPLETED"
        assert read.create_time == datetime(2026, 3, 1, 11, 59, 30, tzinfo=timezone.utc)
        assert read.processed_at == NOW
        assert read.event_type == "PAYMENT.SALE.COMPLETED"

    def test_missing_returns_none(self, db_session):
        assert PaymentStore().find_by_payment_id("NOPE") is None

    def test_to_dict(self, db_session):
        store = PaymentStore()
        store.record_if_new(_payment(processed_at=NOW))
        data = store.find_by_payment_id("TEST123").to_dict()
        assert data["amount"] == "100.00"
        assert data["status"] == "COMPLETED"
        assert data["processed_at"] == NOW.isoformat()


class TestStats:
    """Rolling windows used by the notification message."""

    def test_counts_and_sums_per_window(self, db_session):
        store = PaymentStore()
        store.record_if_new(_payment("A", "10.00", processed_at=NOW - timedelta(hours=1)))
        store.record_if_new(_payment("B", "20.00", processed_at=NOW - timedelta(days=3)))
        store.record_if_new(_payment("C", "30.00", processed_at=NOW - timedelta(days=20)))
        store.record_if_new(_payment("D", "40.00", processed_at=NOW - timedelta(days=40)))

        stats = store.stats("USD", now=NOW)

        assert stats["payments24h"] == 1
        assert stats["sumamounts24h"] == Decimal("10.00")
        assert stats["payments7d"] == 2
        assert stats["sumamounts7d"] == Decimal("30.00")
        assert stats["payments28d"] == 3
        assert stats["sumamounts28d"] == Decimal("60.00")

    def test_other_currencies_excluded(self, db_session):
        store = PaymentStore()
        store.record_if_new(_payment("A", "10.00", "USD", processed_at=NOW))
        store.record_if_new(_payment("B", "99.00", "EUR", processed_at=NOW))

        stats = store.stats("EUR", now=NOW + timedelta(minutes=1))
        assert stats["payments24h"] == 1
        assert stats["sumamounts24h"] == Decimal("99.00")

    def test_empty(self, db_session):
        stats = PaymentStore().stats("USD", now=NOW)
        assert stats["payments28d"] == 0
        assert stats["sumamounts28d"] == Decimal("0.00")


class TestPrune:
    """Operator-driven retention."""

    def test_deletes_only_old_records(self, db_session):
        store = PaymentStore()
        store.record_if_new(_payment("OLD", processed_at=NOW - timedelta(days=61)))
        store.record_if_new(_payment("NEW", processed_at=NOW - timedelta(days=59)))

        assert store.prune(60, now=NOW) == 1
        assert store.find_by_payment_id("OLD") is None
        assert store.find_by_payment_id("NEW") is not None
