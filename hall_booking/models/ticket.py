from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from hall_booking.db.session import Base
from hall_booking.models.enums import TicketStatus, db_enum
from hall_booking.utils.timeutils import utcnow


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket_index = Column(Integer, nullable=False)

    # sha256 of the raw token; the token itself is never stored
    token_hash = Column(String(64), unique=True, nullable=False, index=True)

    status = Column(db_enum(TicketStatus, "ticketstatus"), nullable=False, default=TicketStatus.VALID)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)

    scanned_at = Column(DateTime, nullable=True)
    staff_id = Column(Integer, nullable=True)

    # Gifted tickets
    holder_name = Column(String(100), nullable=True)
    holder_phone = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    booking = relationship("Booking", back_populates="tickets")

    __table_args__ = (UniqueConstraint("booking_id", "ticket_index", name="uq_ticket_booking_index"),)

    def effective_status(self, now: datetime) -> TicketStatus:
        """VALID tickets past their window read as EXPIRED without a write."""
        if self.status == TicketStatus.VALID and now > self.valid_until:
            return TicketStatus.EXPIRED
        return self.status

    @property
    def current_status(self) -> TicketStatus:
        return self.effective_status(utcnow())
