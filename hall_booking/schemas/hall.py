from pydantic import BaseModel
from datetime import time
from decimal import Decimal
from typing import Optional


class HallOut(BaseModel):
    id: int
    branch_id: int
    name: str
    description: Optional[str] = None
    capacity: int

    # Pricing fields
    base_price: Decimal
    hourly_price: Decimal
    price_per_person: Decimal
    included_persons: Optional[int] = None
    day_multipliers: Optional[dict] = None

    opening_time: Optional[time] = None
    closing_time: Optional[time] = None

    model_config = {
        "from_attributes": True
    }
