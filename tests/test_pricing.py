from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from hall_booking.models.enums import DayType
from hall_booking.utils.pricing import calculate_hall_price, day_type_for, money, multiplier_for, person_threshold


def make_hall(**overrides):
    values = dict(
        base_price=Decimal("100.00"),
        hourly_price=Decimal("50.00"),
        price_per_person=Decimal("10.00"),
        included_persons=10,
        day_multipliers={"weekday": 1.0, "weekend": 1.5, "holiday": 2.0},
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestMoney:
    def test_rounds_half_up(self):
        assert money("2.005") == Decimal("2.01")
        assert money(Decimal("2.004")) == Decimal("2.00")

    def test_none_is_zero(self):
        assert money(None) == Decimal("0.00")

    def test_float_input_goes_through_str(self):
        assert money(0.1 + 0.2) == Decimal("0.30")


class TestDayType:
    def test_weekday(self):
        assert day_type_for(datetime(2030, 1, 7, 18)) == DayType.WEEKDAY

    def test_friday_and_saturday_are_weekend(self):
        assert day_type_for(datetime(2030, 1, 11, 18)) == DayType.WEEKEND
        assert day_type_for(datetime(2030, 1, 12, 18)) == DayType.WEEKEND

    def test_holiday_wins_over_weekend(self):
        friday = datetime(2030, 1, 11, 18)
        assert day_type_for(friday, {date(2030, 1, 11)}) == DayType.HOLIDAY


class TestHallPrice:
    def test_weekday_breakdown(self):
        price = calculate_hall_price(make_hall(), datetime(2030, 1, 7, 18), 3, 20, DayType.WEEKDAY)

        assert price["base_price"] == Decimal("100.00")
        assert price["hourly_price"] == Decimal("150.00")
        assert price["chargeable_persons"] == 10
        assert price["persons_price"] == Decimal("100.00")
        assert price["subtotal"] == Decimal("350.00")
        assert price["total"] == Decimal("350.00")

    def test_weekend_multiplier(self):
        price = calculate_hall_price(make_hall(), datetime(2030, 1, 11, 18), 3, 20, DayType.WEEKEND)
        assert price["total"] == Decimal("525.00")

    def test_persons_under_threshold_are_free(self):
        price = calculate_hall_price(make_hall(), datetime(2030, 1, 7, 18), 2, 5, DayType.WEEKDAY)
        assert price["chargeable_persons"] == 0
        assert price["total"] == Decimal("200.00")

    def test_missing_multiplier_defaults_to_one(self):
        hall = make_hall(day_multipliers=None)
        assert multiplier_for(hall, DayType.HOLIDAY) == Decimal("1")

    def test_threshold_falls_back_to_config(self):
        assert person_threshold(make_hall(included_persons=None)) == 0

    def test_multiplier_result_is_rounded(self):
        hall = make_hall(base_price=Decimal("33.33"), hourly_price=Decimal("0"), price_per_person=Decimal("0"),
                         day_multipliers={"weekend": 1.25})
        price = calculate_hall_price(hall, datetime(2030, 1, 11, 18), 1, 1, DayType.WEEKEND)
        # 33.33 * 1.25 = 41.6625
        assert price["total"] == Decimal("41.66")
