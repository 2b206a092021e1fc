from __future__ import annotations

import re

from socialgraph.core.errors import PreconditionViolation

_ID_RE = re.compile(r"^[A-Za-z0-9_\-:.]{1,128}$")

def client_ip_from_request(req) -> str:
    xff = req.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return req.client.host if getattr(req, "client", None) else "0.0.0.0"

def normalize_id(value: str, *, what: str = "id") -> str:
    s = (value or "").strip()
    if not _ID_RE.match(s):
        raise PreconditionViolation(f"Invalid {what}")
    return s
