import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from app.core.config import get_settings
from app.schemas.service_request import UserRole

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {role.value for role in UserRole}


@dataclass(frozen=True)
class ActingUser:
    user_id: str
    role: str
    name: Optional[str] = None
    phone: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.phone or self.user_id


def _extract_role(payload: dict) -> Optional[str]:
    raw = payload.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode_options(settings):
    audience = (settings.jwt_audience or "").strip()
    decode_kwargs = {}
    options = {}
    if audience:
        decode_kwargs["audience"] = audience
        options["verify_aud"] = True
    else:
        options["verify_aud"] = False
    return decode_kwargs, options


def decode_token(token: str) -> dict:
    settings = get_settings()
    if not settings.jwt_secret:
        raise HTTPException(500, "JWT_SECRET is not configured")

    decode_kwargs, options = _decode_options(settings)
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("Token verification failed: %s", exc)
        raise HTTPException(401, "Invalid or expired token") from exc


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> ActingUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    payload = decode_token(token)

    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise HTTPException(401, "Invalid or expired token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    return ActingUser(
        user_id=str(user_id),
        role=role,
        name=payload.get("name"),
        phone=payload.get("phone"),
    )


def require_roles(*roles: str):
    allowed = {role.value if isinstance(role, UserRole) else role for role in roles}

    def _dependency(user: ActingUser = Depends(get_current_user)) -> ActingUser:
        if user.role not in allowed:
            raise HTTPException(403, "You do not have permission to access this resource")
        return user

    return _dependency
