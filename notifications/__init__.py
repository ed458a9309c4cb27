from .events import FanoutEvent, FollowCreated, PortfolioLiked, PortfolioTransitioned
from .fanout import NOTIFICATION_TYPES, dispatch

__all__ = [
    "FanoutEvent",
    "FollowCreated",
    "PortfolioLiked",
    "PortfolioTransitioned",
    "NOTIFICATION_TYPES",
    "dispatch",
]
