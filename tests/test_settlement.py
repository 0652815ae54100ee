import json
import time
from datetime import timedelta
from decimal import Decimal
from functools import partial

import pytest

from hall_booking.core.exceptions import InvalidState, NotFound, PolicyViolation, UpstreamFailure
from hall_booking.models.enums import BookingStatus, PaymentMethod, PaymentStatus, TicketStatus
from hall_booking.models.payment import Payment, PaymentWebhookEvent
from hall_booking.services import hooks
from hall_booking.services import settlement
from hall_booking.services.reservations import cancel_booking, create_booking
from hall_booking.utils.payment_gateway import MockGateway, WebhookRejected, call_gateway

from conftest import MONDAY_18, NOW, WEBHOOK_SECRET

PAID_AT = NOW + timedelta(minutes=5)


class SlowGateway(MockGateway):
    def create_session(self, payment):
        time.sleep(0.5)
        return super().create_session(payment)


@pytest.fixture
def booking(db, branch, hall):
    return create_booking(
        db, user_id=1, branch_id=branch.id, start_time=MONDAY_18, duration_hours=3,
        persons=20, hall_id=hall.id, now=NOW,
    ).booking


@pytest.fixture
def intent(db, booking, gateway):
    return settlement.create_intent(db, 1, booking.id, PaymentMethod.CREDIT_CARD, gateway)


def confirm(db, booking, intent, gateway, payload=None):
    payload = payload if payload is not None else {"clientSecret": intent["client_secret"]}
    return settlement.confirm_payment(db, 1, booking.id, intent["payment_id"], payload, gateway, now=PAID_AT)


def webhook_body(payment_id, event_type="payment.succeeded", event_id="evt_1", **data):
    return json.dumps({
        "id": event_id,
        "eventType": event_type,
        "data": {"paymentId": payment_id, **data},
    }).encode()


SIGNED = {"x-webhook-secret": WEBHOOK_SECRET}


class TestCreateIntent:
    def test_creates_processing_payment(self, db, booking, intent):
        assert intent["status"] == PaymentStatus.PROCESSING
        assert intent["amount"] == Decimal("350.00")
        assert intent["currency"] == "SAR"
        assert intent["client_secret"].startswith(f"mock_secret_{intent['payment_id']}_")

    def test_repeated_call_returns_same_intent(self, db, booking, intent, gateway):
        again = settlement.create_intent(db, 1, booking.id, PaymentMethod.CREDIT_CARD, gateway)

        assert again["payment_id"] == intent["payment_id"]
        assert again["client_secret"] == intent["client_secret"]
        assert db.query(Payment).count() == 1

    def test_other_method_is_a_separate_intent(self, db, booking, intent, gateway):
        wallet = settlement.create_intent(db, 1, booking.id, PaymentMethod.WALLET, gateway)
        assert wallet["payment_id"] != intent["payment_id"]

    def test_only_owner(self, db, booking, gateway):
        with pytest.raises(NotFound):
            settlement.create_intent(db, 2, booking.id, PaymentMethod.CREDIT_CARD, gateway)

    def test_cancelled_booking_is_not_payable(self, db, booking, gateway):
        cancel_booking(db, booking.id, user_id=1, now=NOW)
        with pytest.raises(InvalidState):
            settlement.create_intent(db, 1, booking.id, PaymentMethod.CREDIT_CARD, gateway)

    def test_gateway_timeout_leaves_payment_pending(self, db, booking, gateway, monkeypatch):
        monkeypatch.setattr(settlement, "call_gateway", partial(call_gateway, timeout=0.05))

        with pytest.raises(UpstreamFailure):
            settlement.create_intent(db, 1, booking.id, PaymentMethod.CASH, SlowGateway(WEBHOOK_SECRET))

        payment = db.query(Payment).one()
        assert payment.status == PaymentStatus.PENDING
        assert payment.gateway_ref is None

        # Retry reuses the same payment and opens the session this time
        monkeypatch.setattr(settlement, "call_gateway", call_gateway)
        retried = settlement.create_intent(db, 1, booking.id, PaymentMethod.CASH, gateway)
        assert retried["payment_id"] == payment.id
        assert retried["status"] == PaymentStatus.PROCESSING
        assert db.query(Payment).count() == 1

    def test_insert_race_returns_the_winning_intent(self, db, booking, intent, gateway, monkeypatch):
        real_open_intent = settlement._open_intent
        calls = []

        def not_visible_yet(session, booking_id, method):
            # First read misses the row another request just committed
            calls.append(method)
            return None if len(calls) == 1 else real_open_intent(session, booking_id, method)

        monkeypatch.setattr(settlement, "_open_intent", not_visible_yet)

        again = settlement.create_intent(db, 1, booking.id, PaymentMethod.CREDIT_CARD, gateway)

        assert len(calls) == 2
        assert again["payment_id"] == intent["payment_id"]
        assert again["client_secret"] == intent["client_secret"]
        assert db.query(Payment).count() == 1


class TestConfirm:
    def test_confirm_completes_payment_and_booking(self, db, booking, intent, gateway):
        events, points = [], []
        hooks.register_notifier(lambda event, user_id, data: events.append(event))
        hooks.register_loyalty(lambda user_id, amount, booking_id: points.append((user_id, amount, booking_id)))

        result = confirm(db, booking, intent, gateway)
        hooks.flush()

        assert result == {"success": True, "payment_id": intent["payment_id"], "status": PaymentStatus.COMPLETED}
        payment = db.get(Payment, intent["payment_id"])
        db.refresh(booking)
        assert payment.paid_at == PAID_AT
        assert payment.transaction_id == f"txn_{payment.id}"
        assert booking.status == BookingStatus.CONFIRMED
        assert hooks.PAYMENT_SUCCESS in events
        assert hooks.BOOKING_CONFIRMED in events
        assert points == [(1, Decimal("350.00"), booking.id)]

    def test_confirm_is_idempotent(self, db, booking, intent, gateway):
        confirm(db, booking, intent, gateway)
        again = confirm(db, booking, intent, gateway, payload={})

        assert again["success"] is True
        assert again["status"] == PaymentStatus.COMPLETED

    def test_bad_payload_changes_nothing(self, db, booking, intent, gateway):
        with pytest.raises(PolicyViolation):
            confirm(db, booking, intent, gateway, payload={"clientSecret": "forged"})

        payment = db.get(Payment, intent["payment_id"])
        db.refresh(booking)
        assert payment.status == PaymentStatus.PROCESSING
        assert booking.status == BookingStatus.PENDING

    def test_confirm_after_cancellation_does_not_resurrect(self, db, booking, intent, gateway):
        cancel_booking(db, booking.id, user_id=1, now=NOW)

        with pytest.raises(InvalidState):
            confirm(db, booking, intent, gateway)

        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED
        assert db.get(Payment, intent["payment_id"]).status == PaymentStatus.PROCESSING

    def test_confirm_needs_matching_booking(self, db, booking, intent, gateway):
        with pytest.raises(NotFound):
            settlement.confirm_payment(db, 2, booking.id, intent["payment_id"], {}, gateway)


class TestWebhook:
    def test_succeeded_event_confirms_booking(self, db, booking, intent, gateway):
        body = webhook_body(intent["payment_id"], transactionId="tx_42")

        assert settlement.handle_webhook(db, body, SIGNED, gateway, now=PAID_AT) == {"received": True}

        payment = db.get(Payment, intent["payment_id"])
        db.refresh(booking)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.transaction_id == "tx_42"
        assert booking.status == BookingStatus.CONFIRMED

    def test_duplicate_event_is_a_no_op(self, db, booking, intent, gateway):
        body = webhook_body(intent["payment_id"])
        settlement.handle_webhook(db, body, SIGNED, gateway, now=PAID_AT)

        again = settlement.handle_webhook(db, body, SIGNED, gateway, now=PAID_AT)

        assert again == {"received": True, "idempotent": True}
        assert db.query(PaymentWebhookEvent).count() == 1

    def test_success_after_confirm_short_circuits(self, db, booking, intent, gateway):
        confirm(db, booking, intent, gateway)
        result = settlement.handle_webhook(db, webhook_body(intent["payment_id"]), SIGNED, gateway)
        assert result == {"received": True, "idempotent": True}

    def test_bad_signature(self, db, booking, intent, gateway):
        with pytest.raises(WebhookRejected) as exc:
            settlement.handle_webhook(db, webhook_body(intent["payment_id"]), {"x-webhook-secret": "x"}, gateway)
        assert exc.value.status_code == 401

    def test_unknown_payment(self, db, booking, gateway):
        with pytest.raises(NotFound):
            settlement.handle_webhook(db, webhook_body(12345), SIGNED, gateway)

    def test_failed_event_frees_the_method(self, db, booking, intent, gateway):
        body = webhook_body(intent["payment_id"], event_type="payment.failed", event_id="evt_f", reason="declined")
        settlement.handle_webhook(db, body, SIGNED, gateway)

        payment = db.get(Payment, intent["payment_id"])
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "declined"

        fresh = settlement.create_intent(db, 1, booking.id, PaymentMethod.CREDIT_CARD, gateway)
        assert fresh["payment_id"] != intent["payment_id"]

    def test_success_without_gateway_session_is_ignored(self, db, booking, gateway, monkeypatch):
        monkeypatch.setattr(settlement, "call_gateway", partial(call_gateway, timeout=0.05))
        with pytest.raises(UpstreamFailure):
            settlement.create_intent(db, 1, booking.id, PaymentMethod.CASH, SlowGateway(WEBHOOK_SECRET))
        payment = db.query(Payment).one()

        result = settlement.handle_webhook(db, webhook_body(payment.id), SIGNED, gateway, now=PAID_AT)

        assert result == {"received": True, "ignored": True}
        db.refresh(payment)
        db.refresh(booking)
        assert payment.status == PaymentStatus.PENDING
        assert booking.status == BookingStatus.PENDING
        assert db.query(PaymentWebhookEvent).count() == 0

    def test_success_for_cancelled_booking_keeps_booking_cancelled(self, db, booking, intent, gateway):
        cancel_booking(db, booking.id, user_id=1, now=NOW)

        settlement.handle_webhook(db, webhook_body(intent["payment_id"]), SIGNED, gateway, now=PAID_AT)

        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED
        assert db.get(Payment, intent["payment_id"]).status == PaymentStatus.COMPLETED


class TestRefund:
    @pytest.fixture
    def paid(self, db, booking, intent, gateway):
        confirm(db, booking, intent, gateway)
        return intent["payment_id"]

    def test_partial_then_full_refund(self, db, booking, paid):
        first = settlement.refund_payment(db, paid, Decimal("100.00"), now=NOW)
        assert first["status"] == PaymentStatus.PARTIALLY_REFUNDED
        assert first["refunded_amount"] == Decimal("100.00")
        assert first["booking_cancelled"] is False

        second = settlement.refund_payment(db, paid, now=NOW)
        assert second["status"] == PaymentStatus.REFUNDED
        assert second["refunded_amount"] == Decimal("350.00")
        assert second["booking_cancelled"] is True

    def test_full_refund_cancels_booking_and_tickets(self, db, booking, paid):
        settlement.refund_payment(db, paid, now=NOW)

        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED
        assert all(t.status == TicketStatus.CANCELLED for t in booking.tickets)

    def test_refund_beyond_remaining(self, db, paid):
        settlement.refund_payment(db, paid, Decimal("300.00"), now=NOW)

        with pytest.raises(PolicyViolation):
            settlement.refund_payment(db, paid, Decimal("50.01"), now=NOW)

        payment = db.get(Payment, paid)
        assert payment.refunded_amount == Decimal("300.00")
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED

    def test_zero_refund(self, db, paid):
        with pytest.raises(PolicyViolation):
            settlement.refund_payment(db, paid, Decimal("0"), now=NOW)

    def test_refund_of_unsettled_payment(self, db, intent):
        with pytest.raises(InvalidState):
            settlement.refund_payment(db, intent["payment_id"], now=NOW)

    def test_fully_refunded_cannot_be_refunded_again(self, db, paid):
        settlement.refund_payment(db, paid, now=NOW)
        with pytest.raises(InvalidState):
            settlement.refund_payment(db, paid, Decimal("1.00"), now=NOW)


class TestReadPayment:
    def test_owner_only(self, db, intent):
        assert settlement.get_payment(db, 1, intent["payment_id"]).id == intent["payment_id"]
        with pytest.raises(NotFound):
            settlement.get_payment(db, 2, intent["payment_id"])
