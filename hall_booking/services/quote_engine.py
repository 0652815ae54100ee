"""
Quote engine: availability verdict and price breakdown for a hall window.

Pure reads. Calling ``get_quote`` twice with the same input and no booking
committed in between yields the same numbers, which is what lets the
reservation manager re-quote inside its transaction.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from hall_booking.core.config import BOOKING_SLOT_MINUTES, COUPON_ENFORCEMENT
from hall_booking.core.exceptions import NotFound, PolicyViolation
from hall_booking.core.logging_config import get_logger
from hall_booking.models.addon import Addon
from hall_booking.models.booking import Booking
from hall_booking.models.enums import ACTIVE_BOOKING_STATUSES
from hall_booking.models.hall import Hall
from hall_booking.models.holiday import Holiday
from hall_booking.services.coupons import get_coupon_resolver
from hall_booking.utils.pricing import calculate_hall_price, day_type_for, money, ZERO
from hall_booking.utils.timeutils import (
    is_slot_aligned,
    to_naive_utc,
    utcnow,
    window_end,
    within_operating_hours,
)

logger = get_logger("booking")

HALL_UNAVAILABLE = "Hall not available for the selected time"
NO_HALL_AVAILABLE = "No hall available for the selected time"


@dataclass
class Quote:
    branch_id: int
    start_time: datetime
    end_time: datetime
    duration_hours: int
    persons: int
    hall: Hall | None = None
    pricing: dict | None = None
    add_ons: list[dict] = field(default_factory=list)
    add_ons_cost: Decimal = ZERO
    coupon_code: str | None = None
    coupon_reason: str | None = None
    discount: Decimal = ZERO
    total_price: Decimal = ZERO
    available: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "hall_id": self.hall.id if self.hall else None,
            "hall_name": self.hall.name if self.hall else None,
            "branch_id": self.branch_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_hours": self.duration_hours,
            "persons": self.persons,
            "pricing": self.pricing,
            "add_ons": self.add_ons,
            "add_ons_cost": self.add_ons_cost,
            "coupon_code": self.coupon_code,
            "coupon_reason": self.coupon_reason,
            "discount": self.discount,
            "total_price": self.total_price,
            "available": self.available,
            "reason": self.reason,
        }


# ---------------------------------------------------------------------
# VALIDATION
# ---------------------------------------------------------------------
def validate_window(start_time: datetime, now: datetime):
    if start_time <= now:
        raise PolicyViolation("Cannot book in the past")
    if not is_slot_aligned(start_time, BOOKING_SLOT_MINUTES):
        raise PolicyViolation(
            f"Start time must align with {BOOKING_SLOT_MINUTES}-minute slots (e.g. 17:00, 18:00)."
        )


# ---------------------------------------------------------------------
# AVAILABILITY
# ---------------------------------------------------------------------
def find_overlapping(db: Session, hall_id: int, start_time: datetime, end_time: datetime):
    return (
        db.query(Booking)
        .filter(
            Booking.hall_id == hall_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        .order_by(Booking.start_time)
        .all()
    )


def check_hall_availability(db: Session, hall: Hall, start_time: datetime, end_time: datetime, persons: int):
    """Return (available, reason)."""
    if hall.deleted:
        return False, "Hall is not bookable"
    if hall.capacity < persons:
        return False, f"Hall capacity ({hall.capacity}) is below the requested persons"
    if not within_operating_hours(hall, start_time, end_time):
        return False, "Selected time is outside the hall's operating hours"
    if find_overlapping(db, hall.id, start_time, end_time):
        return False, HALL_UNAVAILABLE
    return True, None


def candidate_halls_query(db: Session, branch_id: int, persons: int):
    return (
        db.query(Hall)
        .filter(
            Hall.branch_id == branch_id,
            Hall.deleted == False,  # noqa: E712
            Hall.capacity >= persons,
        )
        .order_by(Hall.capacity.asc(), Hall.id.asc())
    )


def select_hall(db: Session, branch_id: int, start_time: datetime, end_time: datetime, persons: int):
    """Smallest hall that fits and is free; ties go to the lowest id."""
    for hall in candidate_halls_query(db, branch_id, persons).all():
        available, _ = check_hall_availability(db, hall, start_time, end_time, persons)
        if available:
            return hall
    return None


def load_hall(db: Session, hall_id: int, branch_id: int | None = None) -> Hall:
    hall = db.query(Hall).filter(Hall.id == hall_id).first()
    if not hall or (branch_id is not None and hall.branch_id != branch_id):
        raise NotFound("Hall not found")
    return hall


# ---------------------------------------------------------------------
# PRICING INPUTS
# ---------------------------------------------------------------------
def holidays_for(db: Session, branch_id: int, start_time: datetime) -> set:
    rows = (
        db.query(Holiday.date)
        .filter(
            Holiday.date == start_time.date(),
            or_(Holiday.branch_id == None, Holiday.branch_id == branch_id),  # noqa: E711
        )
        .all()
    )
    return {row[0] for row in rows}


def price_add_ons(db: Session, hall: Hall, requested: list[dict]):
    """Unit prices come from the catalog, never from the client."""
    if not requested:
        return [], ZERO

    ids = {int(item["id"]) for item in requested}
    catalog = (
        db.query(Addon)
        .filter(
            Addon.id.in_(ids),
            Addon.is_active == True,  # noqa: E712
            or_(
                Addon.hall_id == hall.id,
                and_(Addon.hall_id == None, Addon.branch_id == hall.branch_id),  # noqa: E711
                and_(Addon.hall_id == None, Addon.branch_id == None),  # noqa: E711
            ),
        )
        .all()
    )
    by_id = {addon.id: addon for addon in catalog}

    lines = []
    total = ZERO
    for item in requested:
        addon = by_id.get(int(item["id"]))
        quantity = int(item.get("quantity", 1))
        unit_price = money(addon.price) if addon else ZERO
        line_total = money(unit_price * quantity)
        total += line_total
        lines.append({
            "id": int(item["id"]),
            "name": addon.name if addon else None,
            "quantity": quantity,
            "unit_price": unit_price,
            "total": line_total,
        })
    return lines, money(total)


def resolve_discount(db: Session, code: str | None, amount: Decimal, branch_id: int, at: datetime, enforce: bool):
    """Return (discount, reason). Invalid codes give zero unless enforcement is on."""
    if not code:
        return ZERO, None

    preview = get_coupon_resolver().resolve(db, code, amount, branch_id, at)
    if preview.valid:
        return min(money(preview.discount), amount), None

    logger.warning(f"Coupon rejected | Code={code} | Amount={amount} | Reason={preview.reason}")
    if enforce:
        raise PolicyViolation(f"Coupon {code} cannot be applied ({preview.reason})")
    return ZERO, preview.reason


# ---------------------------------------------------------------------
# QUOTE
# ---------------------------------------------------------------------
def get_quote(
    db: Session,
    *,
    branch_id: int,
    start_time: datetime,
    duration_hours: int,
    persons: int,
    hall_id: int | None = None,
    add_ons: list[dict] | None = None,
    coupon_code: str | None = None,
    enforce_coupon: bool | None = None,
    now: datetime | None = None,
) -> Quote:
    now = now or utcnow()
    start_time = to_naive_utc(start_time)
    end_time = window_end(start_time, duration_hours)
    validate_window(start_time, now)

    quote = Quote(
        branch_id=branch_id,
        start_time=start_time,
        end_time=end_time,
        duration_hours=duration_hours,
        persons=persons,
        coupon_code=coupon_code,
    )

    if hall_id is not None:
        hall = load_hall(db, hall_id, branch_id)
        available, reason = check_hall_availability(db, hall, start_time, end_time, persons)
    else:
        hall = select_hall(db, branch_id, start_time, end_time, persons)
        available, reason = (True, None) if hall else (False, NO_HALL_AVAILABLE)

    quote.available = available
    quote.reason = reason
    if hall is None:
        return quote

    quote.hall = hall
    day_type = day_type_for(start_time, holidays_for(db, hall.branch_id, start_time))
    quote.pricing = calculate_hall_price(hall, start_time, duration_hours, persons, day_type)
    quote.add_ons, quote.add_ons_cost = price_add_ons(db, hall, add_ons or [])

    subtotal = quote.pricing["total"] + quote.add_ons_cost
    enforce = COUPON_ENFORCEMENT if enforce_coupon is None else enforce_coupon
    quote.discount, quote.coupon_reason = resolve_discount(
        db, coupon_code, subtotal, hall.branch_id, now, enforce
    )
    quote.total_price = money(max(ZERO, subtotal - quote.discount))

    logger.info(
        f"Quote | Hall={hall.id} | Start={start_time.isoformat()} | Hours={duration_hours} "
        f"| Persons={persons} | Total={quote.total_price} | Available={available}"
    )
    return quote
