from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class JobFromBooking(BaseModel):
    booking_id: int
    priority: Optional[str] = None  # low|medium|high
    estimated_time: Optional[str] = None


class JobCreate(BaseModel):
    workshop_id: int
    owner_id: int
    service_type: str
    vehicle_id: Optional[int] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    scheduled_date: Optional[date] = None
    estimated_time: Optional[str] = None


class JobAssign(BaseModel):
    job_id: int
    mechanic_id: int


class JobStatusUpdate(BaseModel):
    job_id: int
    status: str


class JobPartCreate(BaseModel):
    job_id: int
    name: str
    quantity: int = 1
    unit_cost: Decimal = Decimal("0.00")


class JobPartDelete(BaseModel):
    part_id: int


class JobRepairCreate(BaseModel):
    job_id: int
    description: str


class JobNotesUpdate(BaseModel):
    job_id: int
    notes: Optional[str] = None
