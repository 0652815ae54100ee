import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from hall_booking.core.exceptions import Conflict
from hall_booking.db.session import Base, serialize_sqlite_writers
from hall_booking.models.booking import Booking
from hall_booking.models.branch import Branch
from hall_booking.models.enums import ACTIVE_BOOKING_STATUSES, PaymentMethod, PaymentStatus, TicketStatus
from hall_booking.models.hall import Hall
from hall_booking.models.payment import Payment
from hall_booking.models.ticket import Ticket
from hall_booking.services import settlement
from hall_booking.services.reservations import create_booking
from hall_booking.services.tickets import MSG_OK, MSG_USED, scan_ticket

from conftest import MONDAY_18, NOW

DURING = MONDAY_18 + timedelta(hours=1)


# ---------------------------------------------------------------------
# FILE-BACKED DATABASE (real connections, one per thread)
# ---------------------------------------------------------------------
@pytest.fixture
def file_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reservations.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    serialize_sqlite_writers(engine)
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def shared_hall(file_sessions):
    session = file_sessions()
    try:
        branch = Branch(name="Riyadh North")
        session.add(branch)
        session.flush()
        hall = Hall(
            branch_id=branch.id,
            name="Grand Hall",
            capacity=50,
            base_price=Decimal("100.00"),
            hourly_price=Decimal("50.00"),
            price_per_person=Decimal("0.00"),
        )
        session.add(hall)
        session.commit()
        return {"branch_id": branch.id, "hall_id": hall.id}
    finally:
        session.close()


def book(file_sessions, shared_hall, user_id=1, persons=2):
    session = file_sessions()
    try:
        result = create_booking(
            session, user_id=user_id, branch_id=shared_hall["branch_id"], start_time=MONDAY_18,
            duration_hours=3, persons=persons, hall_id=shared_hall["hall_id"], now=NOW,
        )
        return result.booking.id, [issued.token for issued in result.tickets]
    finally:
        session.close()


def run_together(file_sessions, work, count=2):
    """Start ``count`` workers at the same instant, each with its own session."""
    barrier = threading.Barrier(count)
    outcomes = [None] * count

    def worker(index):
        session = file_sessions()
        try:
            barrier.wait()
            outcomes[index] = ("ok", work(session, index))
        except Exception as e:
            outcomes[index] = ("error", e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestConcurrentCreateBooking:
    def test_overlapping_bookings_on_one_hall(self, file_sessions, shared_hall):
        def attempt(session, index):
            return create_booking(
                session, user_id=index + 1, branch_id=shared_hall["branch_id"], start_time=MONDAY_18,
                duration_hours=3, persons=10, hall_id=shared_hall["hall_id"], now=NOW,
            ).booking.id

        outcomes = run_together(file_sessions, attempt)

        kinds = sorted(kind for kind, _ in outcomes)
        assert kinds == ["error", "ok"]
        error = next(value for kind, value in outcomes if kind == "error")
        assert isinstance(error, Conflict)

        session = file_sessions()
        try:
            active = (
                session.query(Booking)
                .filter(Booking.hall_id == shared_hall["hall_id"], Booking.status.in_(ACTIVE_BOOKING_STATUSES))
                .count()
            )
            assert active == 1
        finally:
            session.close()

    def test_many_contenders_one_winner(self, file_sessions, shared_hall):
        def attempt(session, index):
            return create_booking(
                session, user_id=index + 1, branch_id=shared_hall["branch_id"],
                start_time=MONDAY_18 + timedelta(hours=index % 2), duration_hours=3, persons=5,
                hall_id=shared_hall["hall_id"], now=NOW,
            ).booking.id

        outcomes = run_together(file_sessions, attempt, count=4)

        assert [kind for kind, _ in outcomes].count("ok") == 1
        assert all(isinstance(value, Conflict) for kind, value in outcomes if kind == "error")


class TestConcurrentCreateIntent:
    def test_retries_share_one_intent(self, file_sessions, shared_hall, gateway):
        booking_id, _ = book(file_sessions, shared_hall)

        def attempt(session, index):
            return settlement.create_intent(session, 1, booking_id, PaymentMethod.CREDIT_CARD, gateway)

        outcomes = run_together(file_sessions, attempt)

        assert [kind for kind, _ in outcomes] == ["ok", "ok"]
        first, second = (value for _, value in outcomes)
        assert first["payment_id"] == second["payment_id"]
        assert first["client_secret"] == second["client_secret"]

        session = file_sessions()
        try:
            payments = session.query(Payment).all()
            assert len(payments) == 1
            assert payments[0].status == PaymentStatus.PROCESSING
        finally:
            session.close()


class TestConcurrentScan:
    def test_two_gates_one_admission(self, file_sessions, shared_hall):
        _, tokens = book(file_sessions, shared_hall, persons=1)

        def attempt(session, index):
            result = scan_ticket(session, 70 + index, tokens[0], now=DURING)
            return result.success, result.message

        outcomes = run_together(file_sessions, attempt)

        assert [kind for kind, _ in outcomes] == ["ok", "ok"]
        results = sorted(value for _, value in outcomes)
        assert results == [(False, MSG_USED), (True, MSG_OK)]

        session = file_sessions()
        try:
            ticket = session.query(Ticket).one()
            assert ticket.status == TicketStatus.USED
            assert ticket.staff_id in (70, 71)
        finally:
            session.close()
