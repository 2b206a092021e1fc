from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from socialgraph.core.errors import ConsistencyError
from socialgraph.core.results import LikeResult
from socialgraph.core.settings import S
from socialgraph.core.store import content_key
from socialgraph.core.time import day_of, now_ts
from socialgraph.metrics import VIEWS_PRUNED
from socialgraph.services.audit import audit_event
from socialgraph.services.notifications import notify
from socialgraph.services.retry import Deadline, cas_update, read_doc

LIKERS = "liker_ids"
VIEWS = "view_events"
LIKE_COUNT = "cached_like_count"
VIEW_COUNT = "cached_view_count"

CONTENT_KINDS = ("post", "reel", "story", "live")


def likers(doc: Dict[str, Any]) -> List[str]:
    return list(doc.get(LIKERS) or [])


def view_log(doc: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [dict(v) for v in (doc.get(VIEWS) or []) if v.get("viewer_id")]


def view_count_of(events: List[Dict[str, Any]]) -> int:
    # each log entry is one counted (viewer, dedup window) occurrence
    return len(events)


def unique_viewers_of(events: List[Dict[str, Any]]) -> int:
    return len({v["viewer_id"] for v in events})


def toggle_like(content_id: str, actor_id: str, *, deadline: Optional[Deadline] = None) -> LikeResult:
    state: Dict[str, Any] = {}

    def flip(doc: Dict[str, Any]) -> Tuple[LikeResult, bool]:
        state["owner_id"] = doc.get("owner_id")
        state["kind"] = doc.get("kind")
        members = set(likers(doc))
        if actor_id in members:
            members.discard(actor_id)
            result = LikeResult.UNLIKED
        else:
            members.add(actor_id)
            result = LikeResult.LIKED
        doc[LIKERS] = sorted(members)
        doc[LIKE_COUNT] = len(members)
        return result, True

    out = cas_update(content_key(content_id), flip, deadline=deadline)
    if out.value is LikeResult.LIKED and state.get("owner_id"):
        notif_type = "story_like" if state.get("kind") == "story" else "like"
        try:
            notify(
                state["owner_id"],
                actor_id,
                notif_type,
                content_id,
                f"{actor_id} liked your {state.get('kind') or 'post'}",
            )
        except ConsistencyError as exc:
            audit_event("notification_failed", actor_id, recipient_id=state["owner_id"], type=notif_type, error=exc)
    return out.value


def record_view(content_id: str, viewer_id: str, *, deadline: Optional[Deadline] = None) -> int:
    """Count a view unless the viewer already has one inside the trailing dedup window.

    A repeat inside the window only refreshes that entry's timestamp. The cached count
    is rebuilt from the whole log on every write, never incremented.
    """
    window = S.view_dedup_window_seconds

    def add_view(doc: Dict[str, Any]) -> Tuple[int, bool]:
        now = now_ts()
        events = view_log(doc)
        recent = None
        for i, ev in enumerate(events):
            if ev["viewer_id"] == viewer_id and int(ev.get("ts", 0)) > now - window:
                if recent is None or int(ev["ts"]) >= int(events[recent]["ts"]):
                    recent = i
        if recent is None:
            events.append({"viewer_id": viewer_id, "ts": now})
        else:
            events[recent]["ts"] = now
        doc[VIEWS] = events
        doc[VIEW_COUNT] = view_count_of(events)
        return doc[VIEW_COUNT], True

    return cas_update(content_key(content_id), add_view, deadline=deadline).value


def cleanup_old_views(content_id: str, retention_days: Optional[int] = None) -> Dict[str, int]:
    days = S.view_retention_days if retention_days is None else int(retention_days)

    def prune(doc: Dict[str, Any]) -> Tuple[Dict[str, int], bool]:
        now = now_ts()
        cutoff = now - days * 86400
        events = view_log(doc)
        kept = [ev for ev in events if int(ev.get("ts", 0)) > cutoff]
        removed = len(events) - len(kept)
        before = int(doc.get(VIEW_COUNT) or 0)
        after = view_count_of(kept)
        summary = {"removed": removed, "view_count_before": before, "view_count": after}
        if removed == 0 and before == after:
            return summary, False
        doc[VIEWS] = kept
        doc[VIEW_COUNT] = after
        if removed:
            doc["views_pruned_at"] = now
            doc["views_pruned_total"] = int(doc.get("views_pruned_total") or 0) + removed
        return summary, True

    out = cas_update(content_key(content_id), prune)
    summary = out.value
    if out.written and summary["removed"]:
        VIEWS_PRUNED.inc(summary["removed"])
        audit_event("view_log_pruned", "system", content_id=content_id, retention_days=days, **summary)
    return summary


def view_analytics(content_id: str, *, days: int = 30) -> Dict[str, Any]:
    doc = read_doc(content_key(content_id))
    events = view_log(doc)
    total = view_count_of(events)
    unique = unique_viewers_of(events)
    since = now_ts() - int(days) * 86400
    recent = [ev for ev in events if int(ev.get("ts", 0)) >= since]
    views_by_day: Dict[str, int] = {}
    for ev in recent:
        day = day_of(ev["ts"])
        views_by_day[day] = views_by_day.get(day, 0) + 1

    likes = len(set(likers(doc)))
    comments = int(doc.get("comments_count") or 0)
    shares = int(doc.get("shares") or 0)
    rate = round((likes + comments + shares) / total * 100, 2) if total else 0.0
    return {
        "content_id": content_id,
        "total_views": total,
        "unique_viewers": unique,
        "repeat_viewers": total - unique,
        "recent_views_count": len(recent),
        "views_by_day": dict(sorted(views_by_day.items())),
        "likes": likes,
        "comments": comments,
        "shares": shares,
        "engagement_rate": rate,
    }
