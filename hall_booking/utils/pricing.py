from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

from hall_booking.core.config import WEEKEND_DAYS, PERSON_PRICE_THRESHOLD
from hall_booking.models.enums import DayType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """Normalise any numeric input to a 2-decimal Decimal (half-up)."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def day_type_for(start_time: datetime, holidays: set[date] | None = None) -> DayType:
    if holidays and start_time.date() in holidays:
        return DayType.HOLIDAY
    if start_time.weekday() in WEEKEND_DAYS:
        return DayType.WEEKEND
    return DayType.WEEKDAY


def multiplier_for(hall, day_type: DayType) -> Decimal:
    table = hall.day_multipliers or {}
    value = table.get(day_type.value)
    if value is None:
        return Decimal("1")
    return Decimal(str(value))


def person_threshold(hall) -> int:
    if hall.included_persons is not None:
        return hall.included_persons
    return PERSON_PRICE_THRESHOLD


def calculate_hall_price(hall, start_time: datetime, duration_hours: int, persons: int, day_type: DayType) -> dict:
    """
    (base + hourly * hours + per_person * extra_persons) * day multiplier

    Returns the full breakdown so the quote can show where the number came from.
    """
    base_price = money(hall.base_price)
    hourly_price = money(money(hall.hourly_price) * duration_hours)
    price_per_person = money(hall.price_per_person)
    chargeable_persons = max(0, persons - person_threshold(hall))
    persons_price = money(price_per_person * chargeable_persons)

    multiplier = multiplier_for(hall, day_type)
    subtotal = base_price + hourly_price + persons_price
    total = money(subtotal * multiplier)

    return {
        "base_price": base_price,
        "hourly_price": hourly_price,
        "price_per_person": price_per_person,
        "chargeable_persons": chargeable_persons,
        "persons_price": persons_price,
        "day_type": day_type,
        "multiplier": multiplier,
        "subtotal": money(subtotal),
        "total": total,
    }
