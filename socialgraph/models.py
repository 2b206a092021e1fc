from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

class GraphActionResp(BaseModel):
    result: str
    actor_id: str
    target_id: str

class RelationshipResp(BaseModel):
    is_following: bool
    is_followed_by: bool
    is_blocked: bool
    is_blocked_by: bool

class GraphCountsResp(BaseModel):
    followers: int
    following: int
    blocked: int

class LikeResp(BaseModel):
    result: str
    content_id: str

class ViewResp(BaseModel):
    content_id: str
    views_count: int

class ViewAnalyticsResp(BaseModel):
    content_id: str
    total_views: int
    unique_viewers: int
    repeat_viewers: int
    recent_views_count: int
    views_by_day: Dict[str, int] = Field(default_factory=dict)
    likes: int
    comments: int
    shares: int
    engagement_rate: float

class NotificationOut(BaseModel):
    notification_id: str
    sender_id: Optional[str] = None
    type: Optional[str] = None
    related_content_id: Optional[str] = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[int] = None
    read: bool = False
    read_at: int = 0

class NotificationListResp(BaseModel):
    notifications: List[NotificationOut] = Field(default_factory=list)
    next_cursor: Optional[str] = None

class MarkReadReq(BaseModel):
    # omit to mark every unread notification
    notification_ids: Optional[List[str]] = Field(default=None, max_length=200)

class NotificationStatsResp(BaseModel):
    total: int
    unread: int
    read: int

class ConsistencyCheckReq(BaseModel):
    repair: bool = False
