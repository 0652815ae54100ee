from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, JSON, Index, Text, text
from sqlalchemy.orm import relationship
from hall_booking.db.session import Base
from hall_booking.models.enums import PaymentStatus, PaymentMethod, db_enum

OPEN_INTENT_WHERE = text("status IN ('pending', 'processing')")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(db_enum(PaymentMethod, "paymentmethod"), nullable=False)
    status = Column(db_enum(PaymentStatus, "paymentstatus"), nullable=False, default=PaymentStatus.PENDING)

    gateway_ref = Column(String(255), nullable=True, index=True)
    transaction_id = Column(String(255), nullable=True)
    gateway_response = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    refunded_amount = Column(Numeric(10, 2), nullable=False, default=0)
    refunded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    booking = relationship("Booking", back_populates="payments")

    __table_args__ = (
        # Idempotency key: one live intent per (booking, method)
        Index(
            "uq_payments_open_intent",
            "booking_id",
            "method",
            unique=True,
            postgresql_where=OPEN_INTENT_WHERE,
            sqlite_where=OPEN_INTENT_WHERE,
        ),
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    # Gateway event id, or "<payment id>:<event type>" when the gateway sends none
    event_key = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(50), nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
