from sqlalchemy import Column, Integer, String, Boolean, Numeric, ForeignKey, JSON, Time
from sqlalchemy.orm import relationship
from hall_booking.db.session import Base


class Hall(Base):
    __tablename__ = "halls"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(String)
    capacity = Column(Integer, nullable=False)

    # Pricing fields
    base_price = Column(Numeric(10, 2), nullable=False, default=0)
    hourly_price = Column(Numeric(10, 2), nullable=False, default=0)
    price_per_person = Column(Numeric(10, 2), nullable=False, default=0)
    # Persons covered by the base price; NULL falls back to PERSON_PRICE_THRESHOLD
    included_persons = Column(Integer, nullable=True)
    # {"weekday": 1.0, "weekend": 1.25, "holiday": 1.5}
    day_multipliers = Column(JSON, nullable=True)

    # Operating hours, NULL = open around the clock
    opening_time = Column(Time, nullable=True)
    closing_time = Column(Time, nullable=True)

    deleted = Column(Boolean, default=False, nullable=False)

    # RELATIONSHIPS -------------------------------------
    branch = relationship("Branch", back_populates="halls")
    bookings = relationship("Booking", back_populates="hall")
