from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, JSON, Index, Text
from sqlalchemy.orm import relationship
from hall_booking.db.session import Base
from hall_booking.models.enums import BookingStatus, db_enum


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    hall_id = Column(Integer, ForeignKey("halls.id"), nullable=False)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)

    # Half-open window [start_time, end_time); end_time is derived from duration_hours
    start_time = Column(DateTime, nullable=False)
    duration_hours = Column(Integer, nullable=False)
    end_time = Column(DateTime, nullable=False)
    persons = Column(Integer, nullable=False)

    status = Column(db_enum(BookingStatus, "bookingstatus"), nullable=False, default=BookingStatus.PENDING)
    total_price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    coupon_code = Column(String(50), nullable=True)
    # [{"id": 1, "name": "...", "quantity": 2, "unit_price": "15.00"}]
    add_ons = Column(JSON, nullable=True)

    # CONTACT
    contact_name = Column(String(100), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    contact_email = Column(String, nullable=True)
    special_requests = Column(Text, nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    hall = relationship("Hall", back_populates="bookings")
    tickets = relationship("Ticket", back_populates="booking", order_by="Ticket.ticket_index")
    payments = relationship("Payment", back_populates="booking")

    __table_args__ = (
        Index("ix_bookings_hall_window", "hall_id", "start_time", "end_time"),
    )
