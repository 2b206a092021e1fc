from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from socialgraph.auth.deps import get_actor_id
from socialgraph.core.normalize import normalize_id
from socialgraph.core.settings import S
from socialgraph.models import ConsistencyCheckReq
from socialgraph.routers.common import translate_errors
from socialgraph.services.audit import audit_event
from socialgraph.services.checker import check_actor, check_content

router = APIRouter(prefix="/admin", tags=["admin"])

CHECKS = {"actor": check_actor, "content": check_content}


@router.post("/consistency/{kind}/{doc_id}")
async def consistency_check(
    kind: str,
    doc_id: str,
    body: Optional[ConsistencyCheckReq] = None,
    actor_id: str = Depends(get_actor_id),
):
    check = CHECKS.get(kind)
    if check is None:
        raise HTTPException(404, "Unknown document kind")
    repair = bool(body and body.repair)
    if repair and not S.repair_mode_enabled:
        raise HTTPException(403, "Repair mode is disabled")
    with translate_errors():
        report = check(normalize_id(doc_id, what=f"{kind} id"), repair=repair)
    audit_event("consistency_check", actor_id, kind=kind, key=report.key, ok=report.ok, repair=repair)
    return report.as_dict()
