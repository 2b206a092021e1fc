from __future__ import annotations

import base64
import json
from functools import lru_cache
from typing import Any, Dict, Optional

import jwt
import requests
from fastapi import HTTPException, Request

from socialgraph.core.errors import PreconditionViolation
from socialgraph.core.normalize import normalize_id
from socialgraph.core.settings import S


def _cognito_enabled() -> bool:
    return bool(S.cognito_user_pool_id and S.cognito_app_client_id)


def _cognito_issuer() -> str:
    region = S.cognito_region or S.aws_region
    return f"https://cognito-idp.{region}.amazonaws.com/{S.cognito_user_pool_id}"


@lru_cache(maxsize=1)
def _cognito_jwks() -> Dict[str, Any]:
    resp = requests.get(f"{_cognito_issuer()}/.well-known/jwks.json", timeout=10)
    resp.raise_for_status()
    return resp.json()


def _verified_claims(token: str) -> Dict[str, Any]:
    try:
        kid = jwt.get_unverified_header(token).get("kid", "")
    except jwt.PyJWTError as exc:
        raise HTTPException(401, "Invalid token header") from exc
    key = next((k for k in _cognito_jwks().get("keys", []) if k.get("kid") == kid), None)
    if key is None:
        raise HTTPException(401, "Unknown Cognito key id")
    try:
        claims = jwt.decode(
            token,
            jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(key)),
            algorithms=["RS256"],
            audience=S.cognito_app_client_id,
            issuer=_cognito_issuer(),
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(401, "Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(401, "Invalid token") from exc
    if S.cognito_expected_token_use and claims.get("token_use") != S.cognito_expected_token_use:
        raise HTTPException(401, "Unexpected token use")
    return claims


def _unverified_sub(token: str) -> Optional[str]:
    if token.count(".") != 2:
        return None
    payload = token.split(".")[1]
    try:
        data = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    sub = data.get("sub") if isinstance(data, dict) else None
    return sub if isinstance(sub, str) and sub.strip() else None


def bearer_token(auth_header: Optional[str]) -> str:
    scheme, _, token = (auth_header or "").partition(" ")
    if not auth_header:
        raise HTTPException(401, "Missing Authorization header")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(401, "Invalid Authorization header")
    return token.strip()


def _as_actor_id(raw: str) -> str:
    try:
        return normalize_id(raw, what="actor id")
    except PreconditionViolation as exc:
        raise HTTPException(401, str(exc)) from exc


async def get_actor_id(request: Request) -> str:
    """Resolve the calling actor.

    Cognito access tokens are verified when a pool is configured. Otherwise (dev)
    X-Actor-Id or ``Authorization: Bearer <actor id | unsigned JWT>`` is trusted.
    """
    if _cognito_enabled():
        claims = _verified_claims(bearer_token(request.headers.get("authorization")))
        sub = claims.get("sub") or claims.get("cognito:username") or claims.get("username")
        if not sub:
            raise HTTPException(401, "Token missing subject")
        return _as_actor_id(str(sub))

    header_actor = request.headers.get("x-actor-id")
    if header_actor:
        return _as_actor_id(header_actor)

    token = bearer_token(request.headers.get("authorization"))
    return _as_actor_id(_unverified_sub(token) or token)
