from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship
from hall_booking.db.session import Base


class Branch(Base):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String)
    deleted = Column(Boolean, default=False, nullable=False)

    halls = relationship("Hall", back_populates="branch")
