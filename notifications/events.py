from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class PortfolioTransitioned:
    portfolio_id: UUID
    owner_id: UUID
    title: str
    slug: str
    from_status: str
    to_status: str
    actor_id: UUID
    note: str | None = None


@dataclass(frozen=True)
class FollowCreated:
    follower_id: UUID
    followee_id: UUID


@dataclass(frozen=True)
class PortfolioLiked:
    user_id: UUID
    portfolio_id: UUID
    owner_id: UUID
    title: str
    slug: str


FanoutEvent = PortfolioTransitioned | FollowCreated | PortfolioLiked
