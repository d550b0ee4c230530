from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from loop_backend.db.models import (
    NODE_NARRATIVE,
    OWNERSHIP_CREATOR_DRAFT,
    OWNERSHIP_PLATFORM_OWNED,
    VERSION_APPROVED,
    VERSION_PENDING,
    VERSION_REJECTED,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
    CreatorProfile,
    Story,
    StoryNode,
    StoryPath,
    StoryTransition,
    StoryVersion,
    User,
    UserProfile,
)
from loop_backend.errors import ConflictError, ForbiddenError, NotFoundError
from loop_backend.modules.auth.session import SessionActor
from loop_backend.modules.story.avatars import maybe_attach_avatar
from loop_backend.modules.story.schemas import StoryPayload
from loop_backend.utils.time import iso_utc

logger = logging.getLogger(__name__)

FALLBACK_CREDIT_NAME = "Loop creator"


@dataclass(frozen=True)
class GraphSaveResult:
    story: Story
    node_count: int
    path_count: int
    transition_count: int
    dropped_transitions: int


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_credit_text(db: Session, owner_id: uuid.UUID) -> tuple[str, CreatorProfile | None]:
    """Pen name, then display name, then username, then email."""
    creator_profile = db.execute(
        select(CreatorProfile).where(CreatorProfile.user_id == owner_id)
    ).scalar_one_or_none()
    user_profile = db.execute(select(UserProfile).where(UserProfile.user_id == owner_id)).scalar_one_or_none()
    owner = db.get(User, owner_id)

    name = _first_text(
        creator_profile.pen_name if creator_profile else None,
        user_profile.display_name if user_profile else None,
        owner.username if owner else None,
        owner.email if owner else None,
    )
    return f"Created by {name or FALLBACK_CREDIT_NAME}", creator_profile


def lock_story(db: Session, *conditions) -> Story | None:
    stmt = select(Story).where(*conditions).with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def _replace_graph(db: Session, story: Story, payload: StoryPayload) -> tuple[int, int, int, int]:
    db.execute(delete(StoryTransition).where(StoryTransition.story_id == story.id))
    db.execute(delete(StoryPath).where(StoryPath.story_id == story.id))
    db.execute(delete(StoryNode).where(StoryNode.story_id == story.id))

    node_ids: dict[str, uuid.UUID] = {}
    for position, node in enumerate(payload.nodes):
        row = StoryNode(
            id=uuid.uuid4(),
            story_id=story.id,
            key=node.key,
            title=node.title,
            synopsis=node.synopsis,
            type=node.type or NODE_NARRATIVE,
            content=node.content,
            media=node.media,
            position=position,
        )
        db.add(row)
        node_ids[node.key] = row.id

    path_ids: dict[str, uuid.UUID] = {}
    for position, path in enumerate(payload.paths):
        row = StoryPath(
            id=uuid.uuid4(),
            story_id=story.id,
            key=path.key,
            label=path.label or path.key,
            summary=path.summary,
            path_metadata=path.metadata,
            position=position,
        )
        db.add(row)
        path_ids[path.key] = row.id
    db.flush()

    stored = 0
    dropped = 0
    for position, transition in enumerate(payload.transitions):
        from_id = node_ids.get(transition.from_)
        path_id = path_ids.get(transition.path)
        if from_id is None or path_id is None:
            dropped += 1
            continue
        db.add(
            StoryTransition(
                story_id=story.id,
                from_node_id=from_id,
                to_node_id=node_ids.get(transition.to) if transition.to else None,
                path_id=path_id,
                ordering=transition.ordering,
                condition=transition.condition,
                effect=transition.effect,
                position=position,
            )
        )
        stored += 1
    db.flush()

    if dropped:
        logger.warning(
            "dropped %s transition(s) with unresolved node or path keys story=%s slug=%s",
            dropped,
            story.id,
            story.slug,
        )
    return len(node_ids), len(path_ids), stored, dropped


def _write_story_graph(
    db: Session,
    owner_id: uuid.UUID,
    payload: StoryPayload,
    *,
    story_id: uuid.UUID | None = None,
    enforce_visibility: str | None = None,
) -> GraphSaveResult:
    credit_text, creator_profile = resolve_credit_text(db, owner_id)
    visibility = enforce_visibility or payload.visibility or VISIBILITY_PRIVATE
    tags = list(payload.tags or [])

    if story_id is not None:
        story = lock_story(db, Story.id == story_id)
        if story is None:
            raise NotFoundError("Story not found.")
        story.slug = payload.slug
        story.title = payload.title
        story.summary = payload.summary
        story.tags = tags
        story.visibility = visibility
        story.credit_text = credit_text
    else:
        story = lock_story(db, Story.slug == payload.slug)
        if story is None:
            story = Story(
                id=uuid.uuid4(),
                slug=payload.slug,
                owner_id=owner_id,
                original_creator_id=owner_id,
                original_creator_profile_id=creator_profile.id if creator_profile else None,
                ownership_status=OWNERSHIP_CREATOR_DRAFT,
            )
            db.add(story)
        story.title = payload.title
        story.summary = payload.summary
        story.tags = tags
        story.visibility = visibility
        story.owner_id = owner_id
        story.credit_text = credit_text
    db.flush()

    nodes, paths, transitions, dropped = _replace_graph(db, story, payload)
    return GraphSaveResult(
        story=story,
        node_count=nodes,
        path_count=paths,
        transition_count=transitions,
        dropped_transitions=dropped,
    )


def upsert_story_graph(
    db: Session,
    owner_id: uuid.UUID,
    payload: StoryPayload,
    *,
    story_id: uuid.UUID | None = None,
    enforce_visibility: str | None = None,
) -> GraphSaveResult:
    """Write story metadata and replace its whole node/path/transition set.

    With ``story_id`` the existing story is updated in place; otherwise the
    story is upserted by slug. ``enforce_visibility`` overrides the payload.
    Everything runs in one transaction with the story row locked, so readers
    never observe a half-replaced graph. Transitions whose ``from`` or
    ``path`` key does not resolve are skipped and counted.
    """
    with db.begin():
        return _write_story_graph(
            db,
            owner_id,
            payload,
            story_id=story_id,
            enforce_visibility=enforce_visibility,
        )


def _is_platform_story(story: Story | None) -> bool:
    return bool(story and (story.approved_at or story.ownership_status == OWNERSHIP_PLATFORM_OWNED))


def _visibility_guard(actor: SessionActor, story: Story | None, payload: StoryPayload) -> str | None:
    if _is_platform_story(story):
        return VISIBILITY_PUBLIC
    if not actor.is_admin and payload.visibility == VISIBILITY_PUBLIC:
        return VISIBILITY_PRIVATE
    return None


def _ensure_title_free(db: Session, title: str, *, exclude_story_id: uuid.UUID | None) -> None:
    stmt = select(Story.id).where(Story.title == title)
    if exclude_story_id is not None:
        stmt = stmt.where(Story.id != exclude_story_id)
    if db.execute(stmt).first() is not None:
        raise ConflictError(
            "A story with this title already exists. Please choose a different title.",
            code="STORY_TITLE_TAKEN",
        )


def create_or_replace_story(db: Session, actor: SessionActor, payload: StoryPayload) -> GraphSaveResult:
    """Save a story graph addressed by slug on behalf of ``actor``."""
    with db.begin():
        existing = lock_story(db, Story.slug == payload.slug)
        if existing and existing.owner_id and existing.owner_id != actor.id and not actor.is_admin:
            raise ConflictError("Story code already in use by another creator.", code="STORY_SLUG_TAKEN")
        _ensure_title_free(db, payload.title, exclude_story_id=existing.id if existing else None)
        return _write_story_graph(
            db,
            actor.id,
            payload,
            enforce_visibility=_visibility_guard(actor, existing, payload),
        )


def update_story(
    db: Session,
    actor: SessionActor,
    story_id: uuid.UUID,
    payload: StoryPayload,
) -> GraphSaveResult:
    with db.begin():
        existing = lock_story(db, Story.id == story_id)
        if existing is None:
            raise NotFoundError("Story not found.")
        if not actor.is_admin and existing.owner_id != actor.id:
            raise ForbiddenError("You do not have permission to edit this story.")
        if payload.slug != existing.slug:
            clash = db.execute(select(Story.id).where(Story.slug == payload.slug)).first()
            if clash is not None:
                raise ConflictError("Story code already in use by another story.", code="STORY_SLUG_TAKEN")
        _ensure_title_free(db, payload.title, exclude_story_id=existing.id)
        return _write_story_graph(
            db,
            existing.owner_id or actor.id,
            payload,
            story_id=existing.id,
            enforce_visibility=_visibility_guard(actor, existing, payload),
        )


def delete_story(db: Session, actor: SessionActor, slug: str) -> None:
    with db.begin():
        story = lock_story(db, Story.slug == slug)
        if story is None:
            raise NotFoundError("Story not found.")
        if not actor.is_admin and story.owner_id != actor.id:
            raise ForbiddenError("You do not have permission to delete this story.")
        db.delete(story)
    logger.info("story deleted slug=%s actor=%s", slug, actor.id)


def set_story_private(db: Session, slug: str) -> Story:
    with db.begin():
        story = lock_story(db, Story.slug == slug)
        if story is None:
            raise NotFoundError("Story not found.")
        story.visibility = VISIBILITY_PRIVATE
    return story


def story_summary(story: Story) -> dict[str, Any]:
    return {
        "id": str(story.id),
        "slug": story.slug,
        "title": story.title,
        "summary": story.summary,
        "tags": list(story.tags or []),
        "visibility": story.visibility,
        "ownershipStatus": story.ownership_status,
        "creditText": story.credit_text,
        "createdAt": iso_utc(story.created_at),
        "updatedAt": iso_utc(story.updated_at),
    }


def graph_snapshot(db: Session, story: Story) -> dict[str, Any]:
    """Ordered key-based view of the current graph; expects an open transaction."""
    nodes = db.execute(
        select(StoryNode).where(StoryNode.story_id == story.id).order_by(StoryNode.position.asc())
    ).scalars().all()
    paths = db.execute(
        select(StoryPath).where(StoryPath.story_id == story.id).order_by(StoryPath.position.asc())
    ).scalars().all()
    transitions = db.execute(
        select(StoryTransition)
        .where(StoryTransition.story_id == story.id)
        .order_by(StoryTransition.position.asc())
    ).scalars().all()

    node_keys = {node.id: node.key for node in nodes}
    path_keys = {path.id: path.key for path in paths}
    return {
        "story": story_summary(story),
        "nodes": [
            {
                "key": node.key,
                "title": node.title,
                "synopsis": node.synopsis,
                "type": node.type,
                "content": node.content,
                "media": node.media,
            }
            for node in nodes
        ],
        "paths": [
            {"key": path.key, "label": path.label, "summary": path.summary, "metadata": path.path_metadata}
            for path in paths
        ],
        "transitions": [
            {
                "from": node_keys.get(transition.from_node_id),
                "to": node_keys.get(transition.to_node_id) if transition.to_node_id else None,
                "path": path_keys.get(transition.path_id),
                "ordering": transition.ordering,
                "condition": transition.condition,
                "effect": transition.effect,
            }
            for transition in transitions
        ],
    }


def load_graph_snapshot(db: Session, slug: str) -> dict[str, Any]:
    with db.begin():
        story = db.execute(select(Story).where(Story.slug == slug)).scalar_one_or_none()
        if story is None:
            raise NotFoundError("Story not found.")
        return graph_snapshot(db, story)


def _review_status(story: Story, versions: list[StoryVersion]) -> tuple[str, int | None]:
    pending = next((v for v in versions if v.status == VERSION_PENDING), None)
    if pending is not None:
        return "PENDING", pending.version_number
    latest = next((v for v in versions if v.id == story.latest_version_id), None)
    if latest is not None and latest.status == VERSION_APPROVED:
        return "APPROVED", latest.version_number
    rejected = next((v for v in versions if v.status == VERSION_REJECTED), None)
    if rejected is not None:
        return "REJECTED", rejected.version_number
    if story.visibility == VISIBILITY_PUBLIC:
        return "APPROVED", None
    return "DRAFT", None


def list_owner_stories(db: Session, owner_id: uuid.UUID) -> list[dict[str, Any]]:
    with db.begin():
        stories = db.execute(
            select(Story).where(Story.owner_id == owner_id).order_by(Story.updated_at.desc())
        ).scalars().all()
        listed: list[dict[str, Any]] = []
        for story in stories:
            versions = db.execute(
                select(StoryVersion)
                .where(StoryVersion.story_id == story.id)
                .order_by(StoryVersion.version_number.desc())
            ).scalars().all()
            status, number = _review_status(story, list(versions))
            snapshot = graph_snapshot(db, story)
            listed.append(
                {
                    **snapshot["story"],
                    "reviewStatus": status,
                    "reviewVersionNumber": number,
                    "nodes": snapshot["nodes"],
                    "paths": snapshot["paths"],
                    "transitions": snapshot["transitions"],
                }
            )
        return listed


def import_story_graph(
    db: Session,
    actor: SessionActor,
    payload: StoryPayload,
    *,
    story_name: str | None = None,
) -> GraphSaveResult:
    """Store a freshly converted import as a new private draft.

    Both the story code and the title must be unused. The check, the graph
    write and the starter avatar share one transaction.
    """
    with db.begin():
        if db.execute(select(Story.id).where(Story.slug == payload.slug)).first() is not None:
            raise ConflictError(
                f"Story code '{payload.slug}' is already in use. Please choose a different code in the import form.",
                code="STORY_SLUG_TAKEN",
            )
        if db.execute(select(Story.id).where(Story.title == payload.title)).first() is not None:
            raise ConflictError(
                f"A story titled '{payload.title}' already exists. Provide a unique title in Twine or via override.",
                code="STORY_TITLE_TAKEN",
            )
        saved = _write_story_graph(db, actor.id, payload, enforce_visibility=VISIBILITY_PRIVATE)
        maybe_attach_avatar(db, saved.story.id, payload, story_name=story_name)
    return saved
