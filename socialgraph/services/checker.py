from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from socialgraph.core.errors import ConsistencyError
from socialgraph.core.settings import S
from socialgraph.core.store import actor_key, content_key
from socialgraph.core.tables import T
from socialgraph.metrics import CONSISTENCY_MISMATCHES
from socialgraph.services import engagement
from socialgraph.services.audit import audit_event
from socialgraph.services.graph import BLOCKED, BLOCKED_BY, FOLLOWERS, FOLLOWING, GRAPH_FIELDS, ids
from socialgraph.services.retry import cas_update, read_doc

ACTOR_PREFIX = "ACTOR#"
CONTENT_PREFIX = "CONTENT#"

# (key, field) -> mutate; applied only in repair mode
Fix = Tuple[str, str, Callable[[Dict[str, Any]], Tuple[bool, bool]]]


@dataclass
class Mismatch:
    key: str
    field: str
    expected: Any
    actual: Any
    detail: str = ""


@dataclass
class CheckReport:
    key: str
    mismatches: List[Mismatch] = field(default_factory=list)
    repaired: int = 0
    repair_errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "ok": self.ok,
            "mismatches": [asdict(m) for m in self.mismatches],
            "repaired": self.repaired,
            "repair_errors": list(self.repair_errors),
        }


def _set_member(fld: str, member: str, present: bool):
    def mutate(doc: Dict[str, Any]) -> Tuple[bool, bool]:
        members = ids(doc, fld)
        if (member in members) == present:
            return False, False
        if present:
            members.add(member)
        else:
            members.discard(member)
        doc[fld] = sorted(members)
        return True, True
    return mutate


def _apply_fixes(report: CheckReport, fixes: List[Fix]) -> None:
    for key, fld, mutate in fixes:
        try:
            if cas_update(key, mutate).written:
                report.repaired += 1
        except ConsistencyError as exc:
            report.repair_errors.append(f"{key}.{fld}: {exc}")
    audit_event(
        "consistency_repair",
        "system",
        key=report.key,
        repaired=report.repaired,
        errors=len(report.repair_errors),
    )


def _count(report: CheckReport, kind: str) -> None:
    for m in report.mismatches:
        CONSISTENCY_MISMATCHES.labels(kind=kind, field=m.field).inc()


def check_actor(actor_id: str, *, repair: bool = False) -> CheckReport:
    """Compare an actor's edge sets with the mirror fields on the other endpoints.

    Repair direction: half follow edges are dropped, a block recorded only by the
    blocker is completed, a blocked_by entry the blocker does not confirm is dropped, and
    follow edges inside a blocked pair are dropped.
    """
    akey = actor_key(actor_id)
    doc = read_doc(akey)
    report = CheckReport(akey)
    fixes: List[Fix] = []

    for fld in GRAPH_FIELDS:
        if actor_id in ids(doc, fld):
            report.mismatches.append(Mismatch(akey, fld, "no self edge", actor_id))
            fixes.append((akey, fld, _set_member(fld, actor_id, False)))

    # blocked_ids is owned by the blocker: a half block is completed from that side,
    # while a blocked_by_ids entry the other side does not confirm is dropped
    mirrors = (
        (FOLLOWING, FOLLOWERS, False),
        (FOLLOWERS, FOLLOWING, False),
        (BLOCKED, BLOCKED_BY, True),
        (BLOCKED_BY, BLOCKED, False),
    )
    others: Dict[str, Optional[Dict[str, Any]]] = {}
    unconfirmed_blocks: Set[str] = set()
    for fld, mirror, complete in mirrors:
        for other_id in sorted(ids(doc, fld) - {actor_id}):
            if other_id not in others:
                others[other_id] = T.documents.get(actor_key(other_id)).doc
            other = others[other_id]
            okey = actor_key(other_id)
            if other is None:
                report.mismatches.append(Mismatch(akey, fld, "existing actor", other_id, "dangling edge"))
                fixes.append((akey, fld, _set_member(fld, other_id, False)))
                continue
            if actor_id in ids(other, mirror):
                continue
            report.mismatches.append(Mismatch(okey, mirror, f"contains {actor_id}", sorted(ids(other, mirror))))
            if complete:
                fixes.append((okey, mirror, _set_member(mirror, actor_id, True)))
            else:
                fixes.append((akey, fld, _set_member(fld, other_id, False)))
                if fld == BLOCKED_BY:
                    unconfirmed_blocks.add(other_id)

    blocked_pairs = ids(doc, BLOCKED) | (ids(doc, BLOCKED_BY) - unconfirmed_blocks)
    for fld in (FOLLOWING, FOLLOWERS):
        for other_id in sorted(ids(doc, fld) & blocked_pairs):
            report.mismatches.append(Mismatch(akey, fld, f"no edge to blocked {other_id}", other_id))
            fixes.append((akey, fld, _set_member(fld, other_id, False)))
            mirror = FOLLOWERS if fld == FOLLOWING else FOLLOWING
            fixes.append((actor_key(other_id), mirror, _set_member(mirror, actor_id, False)))

    _count(report, "actor")
    if repair and fixes:
        _apply_fixes(report, fixes)
    return report


def _collapse_views(events: List[Dict[str, Any]], window: int) -> List[Dict[str, Any]]:
    by_viewer: Dict[str, List[Dict[str, Any]]] = {}
    for ev in sorted(events, key=lambda e: int(e.get("ts", 0))):
        kept = by_viewer.setdefault(ev["viewer_id"], [])
        if kept and int(ev["ts"]) - int(kept[-1]["ts"]) < window:
            kept[-1]["ts"] = int(ev["ts"])
        else:
            kept.append({"viewer_id": ev["viewer_id"], "ts": int(ev["ts"])})
    return sorted((ev for evs in by_viewer.values() for ev in evs), key=lambda e: e["ts"])


def _rebuild_content(doc: Dict[str, Any]) -> Tuple[bool, bool]:
    members = sorted(set(engagement.likers(doc)))
    events = _collapse_views(engagement.view_log(doc), S.view_dedup_window_seconds)
    before = (doc.get(engagement.LIKERS), doc.get(engagement.LIKE_COUNT), doc.get(engagement.VIEWS), doc.get(engagement.VIEW_COUNT))
    doc[engagement.LIKERS] = members
    doc[engagement.LIKE_COUNT] = len(members)
    doc[engagement.VIEWS] = events
    doc[engagement.VIEW_COUNT] = engagement.view_count_of(events)
    after = (doc[engagement.LIKERS], doc[engagement.LIKE_COUNT], doc[engagement.VIEWS], doc[engagement.VIEW_COUNT])
    changed = before != after
    return changed, changed


def check_content(content_id: str, *, repair: bool = False) -> CheckReport:
    ckey = content_key(content_id)
    doc = read_doc(ckey)
    report = CheckReport(ckey)

    raw_likers = engagement.likers(doc)
    members = set(raw_likers)
    if len(raw_likers) != len(members):
        report.mismatches.append(Mismatch(ckey, engagement.LIKERS, len(members), len(raw_likers), "duplicate likers"))
    cached_likes = doc.get(engagement.LIKE_COUNT)
    if cached_likes != len(members):
        report.mismatches.append(Mismatch(ckey, engagement.LIKE_COUNT, len(members), cached_likes))

    events = engagement.view_log(doc)
    collapsed = _collapse_views(events, S.view_dedup_window_seconds)
    if len(collapsed) != len(events):
        report.mismatches.append(
            Mismatch(ckey, engagement.VIEWS, len(collapsed), len(events), "repeat views inside one dedup window")
        )
    cached_views = doc.get(engagement.VIEW_COUNT)
    if cached_views != engagement.view_count_of(events):
        report.mismatches.append(Mismatch(ckey, engagement.VIEW_COUNT, engagement.view_count_of(events), cached_views))

    _count(report, "content")
    if repair and report.mismatches:
        _apply_fixes(report, [(ckey, "derived", _rebuild_content)])
    return report


def run_repair_job(kind: str, *, sample: Optional[int] = None, repair: bool = False) -> Dict[str, Any]:
    """Check every actor or content document (or a random sample) and summarise."""
    if kind not in ("actors", "content"):
        raise ValueError("kind must be 'actors' or 'content'")
    prefix = ACTOR_PREFIX if kind == "actors" else CONTENT_PREFIX
    keys = [key for key, _ in T.documents.scan(prefix)]
    if sample is not None and sample < len(keys):
        keys = random.sample(keys, sample)

    check = check_actor if kind == "actors" else check_content
    reports: List[Dict[str, Any]] = []
    errors: List[str] = []
    for key in sorted(keys):
        doc_id = key[len(prefix):]
        try:
            rep = check(doc_id, repair=repair)
        except ConsistencyError as exc:
            errors.append(f"{key}: {exc}")
            continue
        if not rep.ok:
            reports.append(rep.as_dict())

    summary = {
        "kind": kind,
        "scanned": len(keys),
        "mismatched_documents": len(reports),
        "mismatches": sum(len(r["mismatches"]) for r in reports),
        "repaired": sum(r["repaired"] for r in reports),
        "repair_mode": repair,
        "errors": errors,
        "reports": reports,
    }
    audit_event("consistency_scan", "system", kind=kind, scanned=summary["scanned"], mismatches=summary["mismatches"], repaired=summary["repaired"])
    return summary
