from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends

from socialgraph.auth.deps import get_actor_id
from socialgraph.core.normalize import normalize_id
from socialgraph.core.results import GraphResult
from socialgraph.core.settings import S
from socialgraph.models import GraphActionResp, GraphCountsResp, RelationshipResp
from socialgraph.routers.common import raise_for_graph_result, translate_errors
from socialgraph.services import graph
from socialgraph.services.retry import Deadline

router = APIRouter(prefix="/social", tags=["social"])


def _run(op: Callable[..., GraphResult], actor_id: str, target_id: str) -> GraphActionResp:
    with translate_errors():
        target_id = normalize_id(target_id, what="user id")
        result = op(actor_id, target_id, deadline=Deadline.after(S.request_deadline_seconds))
    raise_for_graph_result(result)
    return GraphActionResp(result=result.value, actor_id=actor_id, target_id=target_id)


@router.post("/follow/{target_id}", response_model=GraphActionResp)
async def follow_user(target_id: str, actor_id: str = Depends(get_actor_id)):
    return _run(graph.follow, actor_id, target_id)


@router.post("/unfollow/{target_id}", response_model=GraphActionResp)
async def unfollow_user(target_id: str, actor_id: str = Depends(get_actor_id)):
    return _run(graph.unfollow, actor_id, target_id)


@router.post("/block/{target_id}", response_model=GraphActionResp)
async def block_user(target_id: str, actor_id: str = Depends(get_actor_id)):
    return _run(graph.block, actor_id, target_id)


@router.post("/unblock/{target_id}", response_model=GraphActionResp)
async def unblock_user(target_id: str, actor_id: str = Depends(get_actor_id)):
    return _run(graph.unblock, actor_id, target_id)


@router.get("/relationship/{target_id}", response_model=RelationshipResp)
async def get_relationship(target_id: str, actor_id: str = Depends(get_actor_id)):
    with translate_errors():
        return RelationshipResp(**graph.relationship(actor_id, normalize_id(target_id, what="user id")))


@router.get("/counts/{user_id}", response_model=GraphCountsResp)
async def get_counts(user_id: str, _: str = Depends(get_actor_id)):
    with translate_errors():
        return GraphCountsResp(**graph.graph_counts(normalize_id(user_id, what="user id")))
