from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from socialgraph.core.errors import ConsistencyError, DeadlineExceeded, EdgeBlocked, RolledBack
from socialgraph.core.results import GraphResult
from socialgraph.core.store import actor_key
from socialgraph.metrics import CASCADE_FAILURES, EDGE_SETTLE_SECONDS
from socialgraph.services.audit import audit_event
from socialgraph.services.notifications import notify
from socialgraph.services.retry import CasOutcome, Deadline, cas_update, read_doc
from socialgraph.services.saga import Step, apply_with_compensation

FOLLOWING = "following_ids"
FOLLOWERS = "follower_ids"
BLOCKED = "blocked_ids"
BLOCKED_BY = "blocked_by_ids"

GRAPH_FIELDS = (FOLLOWING, FOLLOWERS, BLOCKED, BLOCKED_BY)


def ids(doc: Optional[Dict[str, Any]], field: str) -> Set[str]:
    return set((doc or {}).get(field) or [])


def blocked_between(doc: Dict[str, Any], other_id: str) -> bool:
    """True if the document's owner blocked other_id or was blocked by it."""
    return other_id in ids(doc, BLOCKED) or other_id in ids(doc, BLOCKED_BY)


def _adder(field: str, member: str, *, skip_if: Optional[Callable[[Dict[str, Any]], bool]] = None):
    def mutate(doc: Dict[str, Any]) -> Tuple[bool, bool]:
        if skip_if is not None and skip_if(doc):
            return False, False
        members = ids(doc, field)
        if member in members:
            return False, False
        members.add(member)
        doc[field] = sorted(members)
        return True, True
    return mutate


def _remover(field: str, member: str):
    def mutate(doc: Dict[str, Any]) -> Tuple[bool, bool]:
        members = ids(doc, field)
        if member not in members:
            return False, False
        members.discard(member)
        doc[field] = sorted(members)
        return True, True
    return mutate


def _contains(key: str, field: str, member: str) -> Callable[[], bool]:
    return lambda: member in ids(read_doc(key), field)


def _lacks(key: str, field: str, member: str) -> Callable[[], bool]:
    return lambda: member not in ids(read_doc(key), field)


def _wrote(phase1: Optional[CasOutcome]) -> bool:
    # None: the write raised StoreUnavailable but a re-read showed it committed
    return phase1 is None or phase1.written


def _settled(operation: str, phase1: Optional[CasOutcome], started: float) -> None:
    if _wrote(phase1):
        EDGE_SETTLE_SECONDS.labels(operation=operation).observe(time.monotonic() - started)


def _failed(operation: str, actor_id: str, target_id: str, exc: RolledBack) -> GraphResult:
    if isinstance(exc.cause, DeadlineExceeded):
        raise exc.cause
    if isinstance(exc.cause, EdgeBlocked):
        return GraphResult.BLOCKED
    audit_event(f"{operation}_failed", actor_id, target_id=target_id, outcome="error", step=exc.step, cause=exc.cause)
    return GraphResult.ERROR


def follow(actor_id: str, target_id: str, *, deadline: Optional[Deadline] = None) -> GraphResult:
    if actor_id == target_id:
        return GraphResult.SELF_FOLLOW
    akey, tkey = actor_key(actor_id), actor_key(target_id)
    if blocked_between(read_doc(tkey), actor_id):
        return GraphResult.BLOCKED

    state: Dict[str, Any] = {"phase1": None, "username": None}

    def check_and_add(doc: Dict[str, Any]) -> Tuple[GraphResult, bool]:
        state["username"] = doc.get("username")
        if blocked_between(doc, target_id):
            return GraphResult.BLOCKED, False
        following = ids(doc, FOLLOWING)
        if target_id in following:
            return GraphResult.ALREADY_FOLLOWING, False
        following.add(target_id)
        doc[FOLLOWING] = sorted(following)
        return GraphResult.APPLIED, True

    def add_follower(doc: Dict[str, Any]) -> Tuple[bool, bool]:
        if blocked_between(doc, actor_id):
            raise EdgeBlocked(f"{target_id} and {actor_id} are blocked")
        return _adder(FOLLOWERS, actor_id)(doc)

    def phase1() -> GraphResult:
        state["phase1"] = cas_update(akey, check_and_add, deadline=deadline)
        return state["phase1"].value

    def phase2() -> None:
        if state["phase1"] is not None and state["phase1"].value is GraphResult.BLOCKED:
            return
        cas_update(tkey, add_follower, deadline=deadline)

    def undo_phase1() -> None:
        if _wrote(state["phase1"]):
            cas_update(akey, _remover(FOLLOWING, target_id))

    started = time.monotonic()
    try:
        result = apply_with_compensation(
            [
                Step("actor.following_ids", phase1, compensate=undo_phase1, landed=_contains(akey, FOLLOWING, target_id)),
                Step("target.follower_ids", phase2, landed=_contains(tkey, FOLLOWERS, actor_id)),
            ],
            operation="follow",
            actor_id=actor_id,
            deadline=deadline,
        )[0] or GraphResult.APPLIED
    except RolledBack as exc:
        return _failed("follow", actor_id, target_id, exc)
    _settled("follow", state["phase1"], started)

    if result is GraphResult.APPLIED:
        audit_event("follow", actor_id, target_id=target_id, outcome="success")
        _notify_follow(target_id, actor_id, state["username"])
    return result


def _notify_follow(target_id: str, actor_id: str, username: Optional[str]) -> None:
    try:
        notify(target_id, actor_id, "follow", None, f"{username or actor_id} started following you")
    except ConsistencyError as exc:
        audit_event("notification_failed", actor_id, recipient_id=target_id, type="follow", error=exc)


def unfollow(actor_id: str, target_id: str, *, deadline: Optional[Deadline] = None) -> GraphResult:
    if actor_id == target_id:
        return GraphResult.SELF_FOLLOW
    akey, tkey = actor_key(actor_id), actor_key(target_id)
    read_doc(tkey)

    state: Dict[str, Any] = {"phase1": None}

    def remove_following(doc: Dict[str, Any]) -> Tuple[GraphResult, bool]:
        following = ids(doc, FOLLOWING)
        if target_id not in following:
            return GraphResult.NOT_FOLLOWING, False
        following.discard(target_id)
        doc[FOLLOWING] = sorted(following)
        return GraphResult.APPLIED, True

    def phase1() -> GraphResult:
        state["phase1"] = cas_update(akey, remove_following, deadline=deadline)
        return state["phase1"].value

    def phase2() -> None:
        cas_update(tkey, _remover(FOLLOWERS, actor_id), deadline=deadline)

    def undo_phase1() -> None:
        # a block that landed meanwhile wins over restoring the edge
        if _wrote(state["phase1"]):
            cas_update(akey, _adder(FOLLOWING, target_id, skip_if=lambda d: blocked_between(d, target_id)))

    started = time.monotonic()
    try:
        result = apply_with_compensation(
            [
                Step("actor.following_ids", phase1, compensate=undo_phase1, landed=_lacks(akey, FOLLOWING, target_id)),
                Step("target.follower_ids", phase2, landed=_lacks(tkey, FOLLOWERS, actor_id)),
            ],
            operation="unfollow",
            actor_id=actor_id,
            deadline=deadline,
        )[0] or GraphResult.APPLIED
    except RolledBack as exc:
        return _failed("unfollow", actor_id, target_id, exc)
    _settled("unfollow", state["phase1"], started)

    if result is GraphResult.APPLIED:
        audit_event("unfollow", actor_id, target_id=target_id, outcome="success")
    return result


def block(actor_id: str, target_id: str, *, deadline: Optional[Deadline] = None) -> GraphResult:
    if actor_id == target_id:
        return GraphResult.SELF_BLOCK
    akey, tkey = actor_key(actor_id), actor_key(target_id)
    read_doc(tkey)

    state: Dict[str, Any] = {"phase1": None}

    def phase1() -> bool:
        state["phase1"] = cas_update(akey, _adder(BLOCKED, target_id), deadline=deadline)
        return state["phase1"].written

    def phase2() -> None:
        cas_update(tkey, _adder(BLOCKED_BY, actor_id), deadline=deadline)

    def undo_phase1() -> None:
        if _wrote(state["phase1"]):
            cas_update(akey, _remover(BLOCKED, target_id))

    started = time.monotonic()
    try:
        apply_with_compensation(
            [
                Step("actor.blocked_ids", phase1, compensate=undo_phase1, landed=_contains(akey, BLOCKED, target_id)),
                Step("target.blocked_by_ids", phase2, landed=_contains(tkey, BLOCKED_BY, actor_id)),
            ],
            operation="block",
            actor_id=actor_id,
            deadline=deadline,
        )
    except RolledBack as exc:
        return _failed("block", actor_id, target_id, exc)
    _settled("block", state["phase1"], started)

    leftovers = _cascade_unfollow(actor_id, target_id) + _cascade_unfollow(target_id, actor_id)
    audit_event("block", actor_id, target_id=target_id, outcome="success", leftover_edges=leftovers)
    return GraphResult.APPLIED


def _cascade_unfollow(follower_id: str, followee_id: str) -> List[str]:
    """Best-effort edge removal after a block; failures are left for the repair job."""
    edge = f"{follower_id}->{followee_id}"
    try:
        result = unfollow(follower_id, followee_id)
    except ConsistencyError as exc:
        result = GraphResult.ERROR
        audit_event("block_cascade_failed", follower_id, target_id=followee_id, error=exc)
    if result is GraphResult.ERROR:
        CASCADE_FAILURES.inc()
        return [edge]
    return []


def unblock(actor_id: str, target_id: str, *, deadline: Optional[Deadline] = None) -> GraphResult:
    if actor_id == target_id:
        return GraphResult.SELF_BLOCK
    akey, tkey = actor_key(actor_id), actor_key(target_id)
    read_doc(tkey)

    state: Dict[str, Any] = {"phase1": None}

    def phase1() -> GraphResult:
        state["phase1"] = cas_update(akey, _remover(BLOCKED, target_id), deadline=deadline)
        return GraphResult.APPLIED if state["phase1"].written else GraphResult.NOT_BLOCKED

    def phase2() -> None:
        cas_update(tkey, _remover(BLOCKED_BY, actor_id), deadline=deadline)

    def undo_phase1() -> None:
        if _wrote(state["phase1"]):
            cas_update(akey, _adder(BLOCKED, target_id))

    started = time.monotonic()
    try:
        result = apply_with_compensation(
            [
                Step("actor.blocked_ids", phase1, compensate=undo_phase1, landed=_lacks(akey, BLOCKED, target_id)),
                Step("target.blocked_by_ids", phase2, landed=_lacks(tkey, BLOCKED_BY, actor_id)),
            ],
            operation="unblock",
            actor_id=actor_id,
            deadline=deadline,
        )[0] or GraphResult.APPLIED
    except RolledBack as exc:
        return _failed("unblock", actor_id, target_id, exc)
    _settled("unblock", state["phase1"], started)

    if result is GraphResult.APPLIED:
        audit_event("unblock", actor_id, target_id=target_id, outcome="success")
    return result


def relationship(actor_id: str, target_id: str) -> Dict[str, bool]:
    actor = read_doc(actor_key(actor_id))
    target = read_doc(actor_key(target_id))
    return {
        "is_following": target_id in ids(actor, FOLLOWING),
        "is_followed_by": actor_id in ids(target, FOLLOWING),
        "is_blocked": target_id in ids(actor, BLOCKED),
        "is_blocked_by": actor_id in ids(target, BLOCKED),
    }


def graph_counts(actor_id: str) -> Dict[str, int]:
    doc = read_doc(actor_key(actor_id))
    return {
        "followers": len(ids(doc, FOLLOWERS)),
        "following": len(ids(doc, FOLLOWING)),
        "blocked": len(ids(doc, BLOCKED)),
    }
