from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hall_booking.db.session import get_db
from hall_booking.core.exceptions import NotFound
from hall_booking.models.hall import Hall
from hall_booking.schemas.hall import HallOut

router = APIRouter(prefix="/halls", tags=["Halls"])


# =====================================================================
# LIST HALLS OF A BRANCH
# =====================================================================
@router.get("/", response_model=list[HallOut])
def list_halls(branch_id: int, db: Session = Depends(get_db)):
    return (
        db.query(Hall)
        .filter(Hall.branch_id == branch_id, Hall.deleted == False)  # noqa: E712
        .order_by(Hall.capacity.asc(), Hall.id.asc())
        .all()
    )


# =====================================================================
# GET HALL
# =====================================================================
@router.get("/{hall_id}", response_model=HallOut)
def get_hall(hall_id: int, db: Session = Depends(get_db)):
    hall = db.query(Hall).filter(Hall.id == hall_id, Hall.deleted == False).first()  # noqa: E712
    if not hall:
        raise NotFound("Hall not found")
    return hall
