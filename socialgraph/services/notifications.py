from __future__ import annotations

import base64
import uuid
from typing import Any, Dict, List, Optional

from socialgraph.core.errors import PreconditionViolation
from socialgraph.core.inbox_store import notification_sort_key
from socialgraph.core.results import NotifyResult
from socialgraph.core.settings import S
from socialgraph.core.store import actor_key
from socialgraph.core.tables import T
from socialgraph.core.time import now_ts
from socialgraph.metrics import NOTIFICATIONS
from socialgraph.services.delivery import deliver

NOTIFICATION_TYPES = ("like", "comment", "follow", "mention", "story_like", "story_view", "message")

# notification type -> actor settings.notifications flag
PREFERENCE_FOR_TYPE = {
    "like": "likes",
    "story_like": "likes",
    "comment": "comments",
    "follow": "follows",
    "mention": "mentions",
    "message": "messages",
}


def _wants(recipient_id: str, notif_type: str) -> bool:
    flag = PREFERENCE_FOR_TYPE.get(notif_type)
    if flag is None:
        return True
    doc = T.documents.get(actor_key(recipient_id)).doc or {}
    prefs = (doc.get("settings") or {}).get("notifications") or {}
    return prefs.get(flag, True) is not False


def _same_event(rec: Dict[str, Any], sender_id: str, notif_type: str, related_content_id: Optional[str]) -> bool:
    return (
        rec.get("sender_id") == sender_id
        and rec.get("type") == notif_type
        and (rec.get("related_content_id") or None) == (related_content_id or None)
    )


def notify(
    recipient_id: str,
    sender_id: str,
    notif_type: str,
    related_content_id: Optional[str],
    message: str,
    *,
    metadata: Optional[Dict[str, Any]] = None,
) -> NotifyResult:
    if recipient_id == sender_id:
        NOTIFICATIONS.labels(result=NotifyResult.SUPPRESSED_SELF.value).inc()
        return NotifyResult.SUPPRESSED_SELF
    if notif_type not in NOTIFICATION_TYPES:
        raise PreconditionViolation(f"invalid notification type {notif_type!r}")
    text = (message or "").strip()
    if not text:
        raise PreconditionViolation("notification message required")
    if len(text) > S.notification_max_message_len:
        raise PreconditionViolation(f"notification message too long (max {S.notification_max_message_len})")

    if not _wants(recipient_id, notif_type):
        NOTIFICATIONS.labels(result=NotifyResult.SUPPRESSED_PREFERENCE.value).inc()
        return NotifyResult.SUPPRESSED_PREFERENCE

    # read-then-write: two racing callers can both pass this check
    ts = now_ts()
    recent = T.notifications.created_since(recipient_id, ts - S.notification_dedup_window_seconds)
    if any(_same_event(r, sender_id, notif_type, related_content_id) for r in recent):
        NOTIFICATIONS.labels(result=NotifyResult.SUPPRESSED_DUPLICATE.value).inc()
        return NotifyResult.SUPPRESSED_DUPLICATE

    record = {
        "recipient_id": recipient_id,
        "notification_id": notification_sort_key(ts, uuid.uuid4().hex),
        "sender_id": sender_id,
        "type": notif_type,
        "related_content_id": related_content_id,
        "message": text,
        "metadata": {k: v for k, v in (metadata or {}).items() if v is not None},
        "created_at": ts,
        "read": False,
        "read_at": 0,
    }
    T.notifications.insert(record)
    NOTIFICATIONS.labels(result=NotifyResult.CREATED.value).inc()
    deliver(record)
    return NotifyResult.CREATED


def encode_cursor(notification_id: Optional[str]) -> Optional[str]:
    if not notification_id:
        return None
    return base64.urlsafe_b64encode(notification_id.encode("utf-8")).decode("utf-8").rstrip("=")


def decode_cursor(cursor: Optional[str]) -> Optional[str]:
    if not cursor:
        return None
    s = cursor.strip()
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        return base64.urlsafe_b64decode((s + pad).encode("utf-8")).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise PreconditionViolation("Invalid cursor") from exc


def _public(rec: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "notification_id": rec["notification_id"],
        "sender_id": rec.get("sender_id"),
        "type": rec.get("type"),
        "related_content_id": rec.get("related_content_id"),
        "message": rec.get("message"),
        "metadata": rec.get("metadata") or {},
        "created_at": rec.get("created_at"),
        "read": bool(rec.get("read", False)),
        "read_at": rec.get("read_at") or 0,
    }


def list_notifications(
    recipient_id: str,
    *,
    limit: int = 20,
    cursor: Optional[str] = None,
    unread_only: bool = False,
) -> Dict[str, Any]:
    items, next_id = T.notifications.page(
        recipient_id,
        limit=max(1, min(int(limit), 100)),
        start_after=decode_cursor(cursor),
        unread_only=unread_only,
    )
    out = [_public(r) for r in items]
    return {"notifications": out, "next_cursor": encode_cursor(next_id)}


def mark_read(recipient_id: str, notification_ids: Optional[List[str]] = None) -> int:
    ts = now_ts()
    if notification_ids is None:
        notification_ids = [r["notification_id"] for r in T.notifications.all_for(recipient_id) if not r.get("read")]
    updated = 0
    for nid in notification_ids[:200]:
        if T.notifications.mark_read(recipient_id, nid, ts):
            updated += 1
    return updated


def notification_stats(recipient_id: str) -> Dict[str, int]:
    records = T.notifications.all_for(recipient_id)
    unread = sum(1 for r in records if not r.get("read"))
    return {"total": len(records), "unread": unread, "read": len(records) - unread}


def delete_notification(recipient_id: str, notification_id: str) -> None:
    T.notifications.delete(recipient_id, notification_id)
