from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from loop_backend.config import settings
from loop_backend.db.models import ROLE_ADMIN, ROLE_PLAYER
from loop_backend.errors import ForbiddenError, UnauthorizedError
from loop_backend.modules.auth.session import (
    JWT_ALGORITHM,
    create_access_token,
    decode_access_token,
    get_current_actor,
    require_admin,
    require_author,
)
from tests.support.story_seed import create_user


def test_access_token_round_trip() -> None:
    user_id = uuid.uuid4()
    assert decode_access_token(create_access_token(user_id, "a@loop.test")) == user_id


def test_expired_token_is_rejected_after_leeway() -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "exp": int(past.timestamp())},
        settings.jwt_secret,
        algorithm=JWT_ALGORITHM,
    )
    with pytest.raises(UnauthorizedError) as exc:
        decode_access_token(token)
    assert exc.value.message == "Session expired."


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = jwt.encode({"sub": str(uuid.uuid4())}, "someone-else", algorithm=JWT_ALGORITHM)
    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_current_actor_resolution() -> None:
    assert get_current_actor(None) is None
    assert get_current_actor("Basic abc") is None

    creator = create_user("mira")
    actor = get_current_actor(f"Bearer {create_access_token(creator.id)}")
    assert actor == creator
    assert actor.can_author and not actor.is_admin

    with pytest.raises(UnauthorizedError) as exc:
        get_current_actor(f"Bearer {create_access_token(uuid.uuid4())}")
    assert exc.value.code == "USER_NOT_FOUND"


def test_role_guards() -> None:
    player = create_user("pat", role=ROLE_PLAYER)
    admin = create_user("root", role=ROLE_ADMIN)

    with pytest.raises(UnauthorizedError):
        require_author(None)
    with pytest.raises(ForbiddenError):
        require_author(player)
    assert require_author(admin) is admin
    with pytest.raises(ForbiddenError):
        require_admin(player)
    assert require_admin(admin) is admin
