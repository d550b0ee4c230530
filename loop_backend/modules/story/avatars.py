from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from loop_backend.db.models import AvatarProfile
from loop_backend.modules.story.schemas import StoryPayload

logger = logging.getLogger(__name__)

BACKGROUND_MAX_CHARS = 240
DEFAULT_AVATAR_NAME = "Story Protagonist"
STARTER_RESOURCES = {"empathy": 60, "resilience": 55, "communitySupport": 50}
STARTER_PALETTE = ["#3b82f6", "#a855f7", "#22d3ee"]


def maybe_attach_avatar(
    db: Session,
    story_id: uuid.UUID,
    payload: StoryPayload,
    *,
    story_name: str | None = None,
) -> AvatarProfile | None:
    """Seed one starter avatar from the opening node of a freshly imported story.

    Skipped when the story already has an avatar or the first node has no text.
    The avatar stays unplayable until the story is approved. Expects an open
    transaction.
    """
    if not payload.nodes:
        return None
    first = payload.nodes[0]
    content = first.content if isinstance(first.content, dict) else {}
    background = content.get("text")
    if not isinstance(background, str) or not background.strip():
        return None

    existing = db.execute(select(AvatarProfile.id).where(AvatarProfile.story_id == story_id)).first()
    if existing is not None:
        return None
    avatar = AvatarProfile(
        story_id=story_id,
        name=first.title or story_name or DEFAULT_AVATAR_NAME,
        background=background[:BACKGROUND_MAX_CHARS],
        initial_resources=dict(STARTER_RESOURCES),
        social_context={"derivedFromImport": True},
        appearance={"suggestedPalette": list(STARTER_PALETTE)},
        is_playable=False,
    )
    db.add(avatar)
    db.flush()
    logger.info("starter avatar attached story=%s avatar=%s", story_id, avatar.id)
    return avatar


def activate_story_avatars(db: Session, story_id: uuid.UUID) -> int:
    """Flip every avatar of the story to playable; expects an open transaction."""
    result = db.execute(
        update(AvatarProfile)
        .where(AvatarProfile.story_id == story_id)
        .values(is_playable=True)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
