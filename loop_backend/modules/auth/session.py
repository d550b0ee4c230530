from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Header
from jose import JWTError, jwt

from loop_backend.config import settings
from loop_backend.db import session as db_session
from loop_backend.db.models import ROLE_ADMIN, ROLE_CREATOR, User
from loop_backend.errors import ForbiddenError, UnauthorizedError

JWT_ALGORITHM = "HS256"
JWT_LEEWAY_SECONDS = 60


@dataclass(frozen=True)
class SessionActor:
    id: uuid.UUID
    role: str
    username: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_author(self) -> bool:
        return self.role in {ROLE_CREATOR, ROLE_ADMIN}

    @classmethod
    def from_user(cls, user: User) -> "SessionActor":
        return cls(id=user.id, role=user.role, username=user.username, email=user.email)


def create_access_token(user_id: uuid.UUID, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email or "",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False, "verify_exp": False, "verify_iat": False},
        )
        now_ts = int(datetime.now(timezone.utc).timestamp())
        exp = int(payload.get("exp", 0))
        if exp and now_ts > exp + JWT_LEEWAY_SECONDS:
            raise UnauthorizedError("Session expired.", code="INVALID_TOKEN")
        return uuid.UUID(str(payload.get("sub", "")))
    except (JWTError, ValueError) as exc:
        raise UnauthorizedError("Invalid session token.", code="INVALID_TOKEN") from exc


def get_current_actor(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> SessionActor | None:
    """Resolve the bearer token to the acting user, or None for anonymous callers."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    user_id = decode_access_token(authorization.split(" ", 1)[1].strip())

    with db_session.SessionLocal() as db:
        user = db.get(User, user_id)
        if user is None:
            raise UnauthorizedError("Session user no longer exists.", code="USER_NOT_FOUND")
        return SessionActor.from_user(user)


def require_actor(actor: SessionActor | None) -> SessionActor:
    if actor is None:
        raise UnauthorizedError("Unauthorized")
    return actor


def require_author(actor: SessionActor | None) -> SessionActor:
    actor = require_actor(actor)
    if not actor.can_author:
        raise ForbiddenError("Creator access required.")
    return actor


def require_admin(actor: SessionActor | None) -> SessionActor:
    if actor is None or not actor.is_admin:
        raise ForbiddenError("Admin access required.")
    return actor
