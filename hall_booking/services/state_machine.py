"""Allowed status transitions for bookings, tickets and payments."""
from hall_booking.core.exceptions import InvalidState
from hall_booking.models.enums import BookingStatus, TicketStatus, PaymentStatus

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

TICKET_TRANSITIONS = {
    TicketStatus.VALID: {TicketStatus.USED, TicketStatus.CANCELLED, TicketStatus.EXPIRED},
    TicketStatus.USED: set(),
    TicketStatus.EXPIRED: set(),
    TicketStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    # No gateway session yet, so nothing can have been captured
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, set())


def sources_for(table: dict, target) -> list:
    """Every status that may move to ``target`` (used in conditional updates)."""
    return [status for status, targets in table.items() if target in targets]


def ensure_booking_transition(current: BookingStatus, target: BookingStatus):
    if not can_transition(BOOKING_TRANSITIONS, current, target):
        raise InvalidState(f"Booking cannot move from {current.value} to {target.value}")


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus):
    if not can_transition(PAYMENT_TRANSITIONS, current, target):
        raise InvalidState(f"Payment cannot move from {current.value} to {target.value}")
