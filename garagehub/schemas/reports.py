from typing import Optional

from pydantic import BaseModel


class ReportRequestCreate(BaseModel):
    workshop_id: int
    month: int
    year: int


class ReportRequestAction(BaseModel):
    request_id: int
    admin_notes: Optional[str] = None
