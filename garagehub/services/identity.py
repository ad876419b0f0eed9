"""
Identity & Access collaborator.

Credential issuance lives elsewhere; the engine only resolves an actor id to
its current role and workshop membership, per request, from the directory.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.models import User, Workshop


ROLES = {"owner", "workshop", "mechanic", "admin"}


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    name: str
    workshop_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class IdentityDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_actor(self, actor_id: int) -> Optional[Actor]:
        user = self.db.query(User).filter(User.id == actor_id).first()
        if user is None or not user.is_active or user.role not in ROLES:
            return None
        return Actor(id=user.id, role=user.role, name=user.name, workshop_id=user.workshop_id)

    def get_user(self, user_id: int, role: Optional[str] = None) -> User:
        query = self.db.query(User).filter(User.id == user_id)
        if role:
            query = query.filter(User.role == role)
        user = query.first()
        if user is None:
            label = role.capitalize() if role else "User"
            raise NotFoundError(f"{label} not found", context={"user_id": user_id})
        return user

    def get_workshop(self, workshop_id: int) -> Workshop:
        workshop = self.db.query(Workshop).filter(Workshop.id == workshop_id).first()
        if workshop is None:
            raise NotFoundError("Workshop not found", context={"workshop_id": workshop_id})
        return workshop

    def get_mechanic(self, mechanic_id: int) -> User:
        return self.get_user(mechanic_id, role="mechanic")

    def is_mechanic_of(self, mechanic_id: int, workshop_id: int) -> bool:
        mechanic = self.get_mechanic(mechanic_id)
        return mechanic.is_active and mechanic.workshop_id == workshop_id

    def list_mechanics(self, workshop_id: int) -> list:
        return (
            self.db.query(User)
            .filter(User.role == "mechanic", User.workshop_id == workshop_id, User.is_active.is_(True))
            .order_by(User.name)
            .all()
        )

    def list_admins(self) -> list:
        return (
            self.db.query(User)
            .filter(User.role == "admin", User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )

    def is_staff_of(self, user_id: int, workshop_id: int) -> bool:
        actor = self.get_actor(user_id)
        return actor is not None and actor.role in {"workshop", "mechanic"} and actor.workshop_id == workshop_id
