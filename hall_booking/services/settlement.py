"""
Settlement engine: the payment state machine.

    PENDING -> PROCESSING -> COMPLETED -> PARTIALLY_REFUNDED / REFUNDED
    PENDING / PROCESSING -> FAILED

Idempotency keys:
  * intents: (booking_id, method) among PENDING/PROCESSING payments, backed by a
    partial unique index
  * webhooks: gateway event id (or "<payment id>:<event type>"), backed by a
    unique key in payment_webhook_events

Gateway round trips never happen while a row lock is held; the booking
transaction and the payment transactions are separate and only meet through
explicit status checks.
"""
from datetime import datetime
from types import SimpleNamespace

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hall_booking.core.config import PAYMENT_CURRENCY
from hall_booking.core.exceptions import InvalidState, NotFound, PolicyViolation
from hall_booking.core.logging_config import get_logger
from hall_booking.core.redis import invalidate_user_bookings
from hall_booking.models.booking import Booking
from hall_booking.models.enums import BookingStatus, OPEN_PAYMENT_STATUSES, PaymentMethod, PaymentStatus
from hall_booking.models.payment import Payment, PaymentWebhookEvent
from hall_booking.services import hooks
from hall_booking.services.reservations import apply_cancellation
from hall_booking.services.state_machine import ensure_payment_transition
from hall_booking.utils.payment_gateway import (
    EVENT_FAILED,
    EVENT_SUCCEEDED,
    PaymentGateway,
    call_gateway,
)
from hall_booking.utils.pricing import money
from hall_booking.utils.timeutils import utcnow

logger = get_logger("payment")

SETTLED_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)
REFUNDABLE_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)
FULL_REFUND_REASON = "Payment fully refunded"


def intent_view(payment: Payment) -> dict:
    return {
        "payment_id": payment.id,
        "client_secret": payment.gateway_ref,
        "amount": money(payment.amount),
        "currency": payment.currency,
        "status": payment.status,
    }


def _snapshot(payment: Payment):
    # Detached copy handed to the gateway thread; ORM instances stay on this thread
    return SimpleNamespace(
        id=payment.id,
        amount=money(payment.amount),
        currency=payment.currency,
        method=payment.method,
        gateway_ref=payment.gateway_ref,
    )


def _open_intent(db: Session, booking_id: int, method: PaymentMethod):
    return (
        db.query(Payment)
        .filter(
            Payment.booking_id == booking_id,
            Payment.method == method,
            Payment.status.in_(OPEN_PAYMENT_STATUSES),
        )
        .first()
    )


# ---------------------------------------------------------------------
# CREATE INTENT
# ---------------------------------------------------------------------
def create_intent(
    db: Session,
    user_id: int,
    booking_id: int,
    method: PaymentMethod,
    gateway: PaymentGateway,
) -> dict:
    try:
        booking = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.user_id == user_id)
            .with_for_update()
            .first()
        )
        if not booking:
            raise NotFound("Booking not found")
        if booking.status != BookingStatus.PENDING:
            raise InvalidState("Booking not payable")

        payment = _open_intent(db, booking.id, method)
        if payment and payment.gateway_ref:
            db.commit()
            logger.info(f"Intent reused | Payment={payment.id} | Booking={booking_id} | Method={method.value}")
            return intent_view(payment)

        if payment is None:
            payment = Payment(
                booking_id=booking.id,
                amount=booking.total_price,
                currency=PAYMENT_CURRENCY,
                method=method,
                status=PaymentStatus.PENDING,
                refunded_amount=0,
            )
            db.add(payment)
            db.flush()
        db.commit()
    except IntegrityError:
        # A concurrent retry inserted the open intent first
        db.rollback()
        payment = _open_intent(db, booking_id, method)
        if payment is None:
            raise
        if payment.gateway_ref:
            return intent_view(payment)
    except Exception:
        db.rollback()
        raise

    # Outside any transaction. A timeout leaves the payment PENDING without a
    # gateway reference, so a retry lands back in the branch above.
    session = call_gateway(gateway.create_session, _snapshot(payment))

    try:
        updated = (
            db.query(Payment)
            .filter(
                Payment.id == payment.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.gateway_ref == None,  # noqa: E711
            )
            .update(
                {
                    Payment.gateway_ref: session.reference,
                    Payment.gateway_response: session.raw,
                    Payment.status: PaymentStatus.PROCESSING,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    if updated:
        logger.info(
            f"Intent created | Payment={payment.id} | Booking={booking_id} | Method={method.value} "
            f"| Amount={payment.amount} {payment.currency}"
        )
    return intent_view(payment)


# ---------------------------------------------------------------------
# SETTLEMENT (shared by confirm and webhook)
# ---------------------------------------------------------------------
def _complete_payment(payment: Payment, transaction_id: str | None, now: datetime, raw: dict | None = None):
    ensure_payment_transition(payment.status, PaymentStatus.COMPLETED)
    payment.status = PaymentStatus.COMPLETED
    payment.paid_at = now
    payment.transaction_id = transaction_id or f"txn_{payment.id}"
    if raw is not None:
        payment.gateway_response = raw


def _confirm_booking(db: Session, booking_id: int) -> bool:
    updated = (
        db.query(Booking)
        .filter(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
        .update({Booking.status: BookingStatus.CONFIRMED}, synchronize_session=False)
    )
    return updated == 1


def _after_settlement(payment_id: int, amount, booking_id: int, user_id: int, booking_confirmed: bool):
    invalidate_user_bookings(user_id)
    hooks.notify(hooks.PAYMENT_SUCCESS, user_id, {"payment_id": payment_id, "amount": str(amount)})
    if booking_confirmed:
        hooks.notify(hooks.BOOKING_CONFIRMED, user_id, {"booking_id": booking_id})
    hooks.award_points(user_id, amount, booking_id)


# ---------------------------------------------------------------------
# CONFIRM
# ---------------------------------------------------------------------
def confirm_payment(
    db: Session,
    user_id: int,
    booking_id: int,
    payment_id: int,
    gateway_payload: dict,
    gateway: PaymentGateway,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()

    booking = db.query(Booking).filter(Booking.id == booking_id, Booking.user_id == user_id).first()
    if not booking:
        raise NotFound("Booking not found")
    payment = db.query(Payment).filter(Payment.id == payment_id, Payment.booking_id == booking.id).first()
    if not payment:
        raise NotFound("Payment not found")

    if payment.status in SETTLED_STATUSES:
        return {"success": True, "payment_id": payment.id, "status": payment.status}
    if payment.status == PaymentStatus.FAILED:
        raise InvalidState("Payment has failed, create a new payment intent")
    if not payment.gateway_ref:
        raise InvalidState("Payment has no gateway session yet")

    snapshot = _snapshot(payment)
    db.rollback()  # end the read transaction before the gateway round trip
    transaction_id = call_gateway(gateway.verify_payload, snapshot, gateway_payload or {})
    if transaction_id is None:
        raise PolicyViolation("Invalid gateway payload")

    try:
        payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
        booking = db.query(Booking).filter(Booking.id == booking_id).with_for_update().first()

        if payment.status in SETTLED_STATUSES:
            db.commit()
            return {"success": True, "payment_id": payment.id, "status": payment.status}
        if booking.status != BookingStatus.PENDING:
            # Lost the race against a cancellation: never resurrect the booking
            raise InvalidState("Booking is no longer payable")

        _complete_payment(payment, transaction_id, now)
        _confirm_booking(db, booking.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(
        f"Payment confirmed | Payment={payment.id} | Booking={booking_id} | Txn={payment.transaction_id} "
        f"| Amount={payment.amount}"
    )
    _after_settlement(payment.id, payment.amount, booking_id, user_id, booking_confirmed=True)
    return {"success": True, "payment_id": payment.id, "status": payment.status}


# ---------------------------------------------------------------------
# WEBHOOK
# ---------------------------------------------------------------------
def _find_event_payment(db: Session, event) -> Payment | None:
    if event.payment_id is not None:
        return db.query(Payment).filter(Payment.id == event.payment_id).first()
    if event.gateway_ref:
        return db.query(Payment).filter(Payment.gateway_ref == event.gateway_ref).first()
    return None


def handle_webhook(
    db: Session,
    body: bytes,
    headers: dict,
    gateway: PaymentGateway,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    event = gateway.parse_webhook_event(body, headers)

    payment = _find_event_payment(db, event)
    if not payment:
        raise NotFound("Payment not found")

    event_key = event.event_id or f"{payment.id}:{event.event_type}"
    settled = None

    try:
        db.add(PaymentWebhookEvent(
            event_key=event_key,
            event_type=event.event_type,
            payment_id=payment.id,
            payload=event.payload,
            received_at=now,
        ))
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(f"Webhook duplicate | Key={event_key}")
        return {"received": True, "idempotent": True}

    try:
        payment = db.query(Payment).filter(Payment.id == payment.id).with_for_update().first()

        if event.event_type == EVENT_SUCCEEDED:
            if payment.status in SETTLED_STATUSES:
                db.commit()
                return {"received": True, "idempotent": True}
            if payment.status == PaymentStatus.FAILED:
                logger.error(f"Webhook success for failed payment ignored | Payment={payment.id}")
                db.commit()
                return {"received": True, "ignored": True}
            if payment.status == PaymentStatus.PENDING:
                # No gateway session was ever opened; the event key stays unused
                db.rollback()
                logger.warning(f"Webhook success for payment without session ignored | Payment={payment.id}")
                return {"received": True, "ignored": True}

            booking = db.query(Booking).filter(Booking.id == payment.booking_id).with_for_update().first()
            _complete_payment(payment, event.transaction_id, now, event.payload)
            confirmed = _confirm_booking(db, booking.id)
            if not confirmed:
                # Money was captured, keep it recorded and refundable
                logger.warning(
                    f"Payment completed for non-payable booking | Payment={payment.id} "
                    f"| Booking={booking.id} | BookingStatus={booking.status.value}"
                )
            settled = (payment.id, payment.amount, booking.id, booking.user_id, confirmed)

        elif event.event_type == EVENT_FAILED:
            if payment.status not in OPEN_PAYMENT_STATUSES:
                db.commit()
                return {"received": True, "idempotent": True}
            ensure_payment_transition(payment.status, PaymentStatus.FAILED)
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = event.failure_reason
            payment.gateway_response = event.payload

        else:
            logger.info(f"Webhook ignored | Type={event.event_type} | Payment={payment.id}")

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Webhook applied | Key={event_key} | Type={event.event_type} | Payment={payment.id}")
    if settled:
        _after_settlement(*settled[:4], booking_confirmed=settled[4])
    return {"received": True}


# ---------------------------------------------------------------------
# REFUND
# ---------------------------------------------------------------------
def refund_payment(db: Session, payment_id: int, amount=None, now: datetime | None = None) -> dict:
    """
    Partial or full refund. A full refund of a CONFIRMED booking cancels the
    booking and its VALID tickets through the same cascade as CancelBooking.
    """
    now = now or utcnow()
    booking_cancelled = False

    try:
        payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
        if not payment:
            raise NotFound("Payment not found")
        if payment.status not in REFUNDABLE_STATUSES:
            raise InvalidState("Only completed payments can be refunded")

        total = money(payment.amount)
        already = money(payment.refunded_amount)
        remaining = total - already
        to_refund = remaining if amount is None else money(amount)
        if to_refund <= 0 or to_refund > remaining:
            raise PolicyViolation(f"Invalid refund amount, refundable balance is {remaining}")

        refunded = already + to_refund
        target = PaymentStatus.REFUNDED if refunded == total else PaymentStatus.PARTIALLY_REFUNDED
        ensure_payment_transition(payment.status, target)

        payment.refunded_amount = refunded
        payment.refunded_at = now
        payment.status = target

        booking = db.query(Booking).filter(Booking.id == payment.booking_id).with_for_update().first()
        if target == PaymentStatus.REFUNDED and booking.status == BookingStatus.CONFIRMED:
            booking_cancelled = apply_cancellation(db, booking.id, FULL_REFUND_REASON, now)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(
        f"Refund | Payment={payment.id} | Amount={to_refund} | Refunded={payment.refunded_amount}/{payment.amount} "
        f"| Status={payment.status.value} | BookingCancelled={booking_cancelled}"
    )

    user_id = payment.booking.user_id
    invalidate_user_bookings(user_id)
    hooks.notify(hooks.PAYMENT_REFUNDED, user_id, {"payment_id": payment.id, "amount": str(to_refund)})
    if booking_cancelled:
        hooks.notify(hooks.BOOKING_CANCELLED, user_id, {"booking_id": payment.booking_id, "reason": FULL_REFUND_REASON})

    return {
        "success": True,
        "payment_id": payment.id,
        "status": payment.status,
        "refunded_amount": money(payment.refunded_amount),
        "booking_cancelled": booking_cancelled,
    }


# ---------------------------------------------------------------------
# READ
# ---------------------------------------------------------------------
def get_payment(db: Session, user_id: int, payment_id: int) -> Payment:
    payment = (
        db.query(Payment)
        .join(Booking, Booking.id == Payment.booking_id)
        .filter(Payment.id == payment_id, Booking.user_id == user_id)
        .first()
    )
    if not payment:
        raise NotFound("Payment not found")
    return payment
