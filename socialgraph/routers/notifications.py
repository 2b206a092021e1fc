from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from socialgraph.auth.deps import get_actor_id
from socialgraph.models import MarkReadReq, NotificationListResp, NotificationStatsResp
from socialgraph.routers.common import translate_errors
from socialgraph.services import notifications
from socialgraph.services.delivery import sse_subscribe, sse_unsubscribe

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResp)
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    unread_only: int = 0,
    actor_id: str = Depends(get_actor_id),
):
    with translate_errors():
        return notifications.list_notifications(actor_id, limit=limit, cursor=cursor, unread_only=bool(unread_only))


@router.get("/stats", response_model=NotificationStatsResp)
async def notification_stats(actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        return notifications.notification_stats(actor_id)


@router.post("/mark_read")
async def mark_read(body: MarkReadReq, actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        updated = notifications.mark_read(actor_id, body.notification_ids)
    return {"ok": True, "updated": updated}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        notifications.delete_notification(actor_id, notification_id)
    return {"ok": True}


@router.get("/stream")
async def notification_stream(actor_id: str = Depends(get_actor_id)):
    q = sse_subscribe(actor_id)

    async def gen():
        try:
            yield "event: hello\ndata: {}\n\n"
            while True:
                item = await q.get()
                yield "event: notification\ndata: " + json.dumps(item, separators=(",", ":"), default=str) + "\n\n"
        finally:
            sse_unsubscribe(actor_id, q)

    return StreamingResponse(gen(), media_type="text/event-stream")
