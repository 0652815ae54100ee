from sqlalchemy import Column, Integer, String, Boolean, Numeric, ForeignKey
from hall_booking.db.session import Base


class Addon(Base):
    __tablename__ = "addons"

    id = Column(Integer, primary_key=True, index=True)
    # Scope: branch-wide when hall_id is NULL
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    hall_id = Column(Integer, ForeignKey("halls.id"), nullable=True, index=True)

    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
