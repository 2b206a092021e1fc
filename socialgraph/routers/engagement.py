from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from socialgraph.auth.deps import get_actor_id
from socialgraph.core.normalize import normalize_id
from socialgraph.core.settings import S
from socialgraph.models import LikeResp, ViewAnalyticsResp, ViewResp
from socialgraph.routers.common import translate_errors
from socialgraph.services import engagement
from socialgraph.services.retry import Deadline

router = APIRouter(prefix="/content", tags=["engagement"])


@router.post("/{content_id}/like", response_model=LikeResp)
async def like_content(content_id: str, actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        content_id = normalize_id(content_id, what="content id")
        result = engagement.toggle_like(content_id, actor_id, deadline=Deadline.after(S.request_deadline_seconds))
    return LikeResp(result=result.value, content_id=content_id)


@router.post("/{content_id}/view", response_model=ViewResp)
async def view_content(content_id: str, actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        content_id = normalize_id(content_id, what="content id")
        count = engagement.record_view(content_id, actor_id, deadline=Deadline.after(S.request_deadline_seconds))
    return ViewResp(content_id=content_id, views_count=count)


@router.get("/{content_id}/analytics", response_model=ViewAnalyticsResp)
async def content_analytics(
    content_id: str,
    days: int = Query(30, ge=1, le=365),
    actor_id: str = Depends(get_actor_id),
):
    with translate_errors():
        return ViewAnalyticsResp(**engagement.view_analytics(normalize_id(content_id, what="content id"), days=days))
