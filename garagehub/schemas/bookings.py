from datetime import date, time
from typing import Optional

from pydantic import BaseModel


class BookingCreate(BaseModel):
    # Required fields are checked by the intake service so missing values
    # surface as validation errors with a single shape
    owner_id: Optional[int] = None
    workshop_id: Optional[int] = None
    service_type: Optional[str] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    vehicle_id: Optional[int] = None
    description: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


class BookingStatusUpdate(BaseModel):
    booking_id: int
    status: str
