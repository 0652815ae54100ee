from sqlalchemy import Column, Integer, String, Date, ForeignKey, UniqueConstraint
from hall_booking.db.session import Base


class Holiday(Base):
    __tablename__ = "holidays"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    # NULL = applies to every branch
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True)
    name = Column(String)

    __table_args__ = (UniqueConstraint("date", "branch_id", name="uq_holiday_date_branch"),)
