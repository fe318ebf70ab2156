"""Shared API dependencies: database session and bearer-token checks.

Tokens are issued elsewhere; this service only verifies them. ``sub`` is
the partner id and ``roles`` may contain ``admin``.
"""

from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt

from app.config import settings
from app.db import SessionLocal

ADMIN_ROLE = "admin"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Unauthorized")
    roles_value = payload.get("roles")
    roles = [str(role) for role in roles_value] if isinstance(roles_value, list) else []
    return {"subject": str(subject), "roles": roles}


def require_auth(
    authorization: str | None = Header(default=None),
    request: Request = None,
) -> dict:
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    auth = decode_access_token(token)
    if request is not None:
        request.state.actor_id = auth["subject"]
    return auth


def is_admin(auth: dict) -> bool:
    return ADMIN_ROLE in auth.get("roles", [])


def ensure_partner_access(auth: dict, partner_id: UUID | str) -> None:
    if is_admin(auth) or auth["subject"] == str(partner_id):
        return
    raise HTTPException(status_code=403, detail="Forbidden")


def require_admin(auth: dict = Depends(require_auth)) -> dict:
    if not is_admin(auth):
        raise HTTPException(status_code=403, detail="Forbidden")
    return auth


def require_partner_access(partner_id: UUID, auth: dict = Depends(require_auth)) -> dict:
    ensure_partner_access(auth, partner_id)
    return auth
