from .graph import (
    FollowState,
    LikeState,
    list_followers,
    list_following,
    set_follow,
    set_like,
    toggle_follow,
    toggle_like,
)

__all__ = [
    "FollowState",
    "LikeState",
    "list_followers",
    "list_following",
    "set_follow",
    "set_like",
    "toggle_follow",
    "toggle_like",
]
