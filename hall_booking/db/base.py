# Import every model so Base.metadata knows all tables (Alembic, create_all)
from hall_booking.db.session import Base  # noqa: F401
from hall_booking.models.branch import Branch  # noqa: F401
from hall_booking.models.hall import Hall  # noqa: F401
from hall_booking.models.addon import Addon  # noqa: F401
from hall_booking.models.coupon import Coupon  # noqa: F401
from hall_booking.models.holiday import Holiday  # noqa: F401
from hall_booking.models.booking import Booking  # noqa: F401
from hall_booking.models.ticket import Ticket  # noqa: F401
from hall_booking.models.payment import Payment, PaymentWebhookEvent  # noqa: F401
