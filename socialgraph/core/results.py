from __future__ import annotations

from enum import Enum


class GraphResult(str, Enum):
    APPLIED = "applied"
    ALREADY_FOLLOWING = "already_following"
    NOT_FOLLOWING = "not_following"
    NOT_BLOCKED = "not_blocked"
    SELF_FOLLOW = "self_follow"
    SELF_BLOCK = "self_block"
    BLOCKED = "blocked"
    ERROR = "error"


class LikeResult(str, Enum):
    LIKED = "liked"
    UNLIKED = "unliked"


class NotifyResult(str, Enum):
    CREATED = "created"
    SUPPRESSED_SELF = "suppressed_self"
    SUPPRESSED_DUPLICATE = "suppressed_duplicate"
    SUPPRESSED_PREFERENCE = "suppressed_preference"
