from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from db.models import UserAccount

from .errors import NotFoundError


@dataclass(frozen=True)
class Actor:
    """Caller identity handed explicitly to every core operation."""

    user_id: UUID
    role: str = "student"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def owns(self, owner_id: UUID) -> bool:
        return self.user_id == owner_id


def resolve_actor(session: Session, user_id: UUID) -> Actor:
    user = session.get(UserAccount, user_id)
    if user is None:
        raise NotFoundError("user_not_found")
    return Actor(user_id=user.id, role=user.role)


def get_user(session: Session, user_id: UUID) -> UserAccount:
    user = session.get(UserAccount, user_id)
    if user is None:
        raise NotFoundError("user_not_found")
    return user


def set_profile_media(session: Session, user_id: UUID, field: str, url: str) -> UserAccount:
    if field not in {"avatar_url", "banner_url"}:
        raise ValueError(f"unsupported profile field: {field}")
    user = get_user(session, user_id)
    setattr(user, field, url)
    session.add(user)
    session.flush()
    return user
