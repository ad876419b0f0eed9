"""
Vehicle Registry collaborator (read-only from the engine's side).
"""
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..models.models import Vehicle


class VehicleRegistry:
    def __init__(self, db: Session):
        self.db = db

    def get(self, vehicle_id: Optional[int]) -> Optional[Vehicle]:
        if vehicle_id is None:
            return None
        return self.db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()

    def belongs_to(self, vehicle_id: int, owner_id: int) -> bool:
        vehicle = self.get(vehicle_id)
        return vehicle is not None and vehicle.owner_id == owner_id

    def snapshot(self, vehicle_id: Optional[int]) -> Optional[Dict]:
        vehicle = self.get(vehicle_id)
        if vehicle is None:
            return None
        return {
            "id": vehicle.id,
            "make": vehicle.make,
            "model": vehicle.model,
            "year": vehicle.year,
            "plate_number": vehicle.plate_number,
            "color": vehicle.color,
        }
