"""initial reservation schema

Revision ID: 3b1f9c2a7d40
Revises:
Create Date: 2026-10-19 10:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "3b1f9c2a7d40"
down_revision = None
branch_labels = None
depends_on = None


booking_status = postgresql.ENUM("pending", "confirmed", "cancelled", "completed", name="bookingstatus", create_type=False)
ticket_status = postgresql.ENUM("valid", "used", "expired", "cancelled", name="ticketstatus", create_type=False)
payment_status = postgresql.ENUM(
    "pending", "processing", "completed", "failed", "refunded", "partially_refunded",
    name="paymentstatus", create_type=False,
)
payment_method = postgresql.ENUM(
    "credit_card", "debit_card", "wallet", "bank_transfer", "cash",
    name="paymentmethod", create_type=False,
)
discount_type = postgresql.ENUM("percentage", "fixed", name="discounttype", create_type=False)


def upgrade():
    bind = op.get_bind()

    # 1️⃣ ENUM types
    for enum in (booking_status, ticket_status, payment_status, payment_method, discount_type):
        enum.create(bind, checkfirst=True)

    # 2️⃣ Inventory
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String()),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_branches_id", "branches", ["id"])

    op.create_table(
        "halls",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String()),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("hourly_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("price_per_person", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("included_persons", sa.Integer(), nullable=True),
        sa.Column("day_multipliers", sa.JSON(), nullable=True),
        sa.Column("opening_time", sa.Time(), nullable=True),
        sa.Column("closing_time", sa.Time(), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_halls_id", "halls", ["id"])
    op.create_index("ix_halls_branch_id", "halls", ["branch_id"])

    op.create_table(
        "addons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("hall_id", sa.Integer(), sa.ForeignKey("halls.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_addons_id", "addons", ["id"])
    op.create_index("ix_addons_branch_id", "addons", ["branch_id"])
    op.create_index("ix_addons_hall_id", "addons", ["hall_id"])

    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_coupons_id", "coupons", ["id"])
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("name", sa.String()),
        sa.UniqueConstraint("date", "branch_id", name="uq_holiday_date_branch"),
    )
    op.create_index("ix_holidays_id", "holidays", ["id"])
    op.create_index("ix_holidays_date", "holidays", ["date"])

    # 3️⃣ Bookings + tickets
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("hall_id", sa.Integer(), sa.ForeignKey("halls.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("persons", sa.Integer(), nullable=False),
        sa.Column("status", booking_status, nullable=False, server_default="pending"),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("coupon_code", sa.String(50), nullable=True),
        sa.Column("add_ons", sa.JSON(), nullable=True),
        sa.Column("contact_name", sa.String(100), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_branch_id", "bookings", ["branch_id"])
    op.create_index("ix_bookings_hall_window", "bookings", ["hall_id", "start_time", "end_time"])

    # No two active bookings of a hall may overlap; [start, end) so back-to-back is fine
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_hall_window
        EXCLUDE USING gist (
            hall_id WITH =,
            tsrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed'))
        """
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticket_index", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("status", ticket_status, nullable=False, server_default="valid"),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_until", sa.DateTime(), nullable=False),
        sa.Column("scanned_at", sa.DateTime(), nullable=True),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("holder_name", sa.String(100), nullable=True),
        sa.Column("holder_phone", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", "ticket_index", name="uq_ticket_booking_index"),
    )
    op.create_index("ix_tickets_id", "tickets", ["id"])
    op.create_index("ix_tickets_booking_id", "tickets", ["booking_id"])
    op.create_index("ix_tickets_token_hash", "tickets", ["token_hash"], unique=True)

    # 4️⃣ Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("status", payment_status, nullable=False, server_default="pending"),
        sa.Column("gateway_ref", sa.String(255), nullable=True),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_gateway_ref", "payments", ["gateway_ref"])
    op.create_index(
        "uq_payments_open_intent",
        "payments",
        ["booking_id", "method"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_key", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_key", name="uq_payment_webhook_events_event_key"),
    )
    op.create_index("ix_payment_webhook_events_id", "payment_webhook_events", ["id"])


def downgrade():
    op.drop_table("payment_webhook_events")
    op.drop_table("payments")
    op.drop_table("tickets")
    op.drop_table("bookings")
    op.drop_table("holidays")
    op.drop_table("coupons")
    op.drop_table("addons")
    op.drop_table("halls")
    op.drop_table("branches")

    bind = op.get_bind()
    for enum in (discount_type, payment_method, payment_status, ticket_status, booking_status):
        enum.drop(bind, checkfirst=True)
