from __future__ import annotations

import json
from typing import Any, Dict

from socialgraph.core.normalize import client_ip_from_request
from socialgraph.core.settings import S
from socialgraph.core.time import now_ts

def audit_event(event: str, actor_id: str, request=None, **fields: Any) -> None:
    if not S.audit_log_enabled:
        return
    payload: Dict[str, Any] = {"event": event, "actor_id": actor_id, "ts": now_ts(), **fields}
    if request is not None:
        payload["ip"] = client_ip_from_request(request)
        payload["user_agent"] = (request.headers.get("user-agent", "")[:256])
    for k, v in list(payload.items()):
        if isinstance(v, BaseException):
            payload[k] = repr(v)[:512]
    try:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
    except (TypeError, ValueError):
        print(json.dumps({"event": event, "actor_id": actor_id, "ts": payload["ts"], "unserializable": True}))
