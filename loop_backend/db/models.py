import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from loop_backend.db.base import Base
from loop_backend.db.types import GUID, JSONType
from loop_backend.utils.time import utc_now_naive

ROLE_PLAYER = "PLAYER"
ROLE_CREATOR = "CREATOR"
ROLE_ADMIN = "ADMIN"

VISIBILITY_PRIVATE = "PRIVATE"
VISIBILITY_UNLISTED = "UNLISTED"
VISIBILITY_PUBLIC = "PUBLIC"

OWNERSHIP_CREATOR_DRAFT = "CREATOR_DRAFT"
OWNERSHIP_PENDING_TRANSFER = "PENDING_TRANSFER"
OWNERSHIP_PLATFORM_OWNED = "PLATFORM_OWNED"
OWNERSHIP_RETURNED = "RETURNED"

VERSION_PENDING = "PENDING"
VERSION_APPROVED = "APPROVED"
VERSION_REJECTED = "REJECTED"
VERSION_TERMINAL_STATUSES = frozenset({VERSION_APPROVED, VERSION_REJECTED})

NODE_NARRATIVE = "NARRATIVE"
NODE_DECISION = "DECISION"
NODE_RESOLUTION = "RESOLUTION"

CREATOR_PROFILE_ACTIVE = "ACTIVE"
CREATOR_PROFILE_SUSPENDED = "SUSPENDED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(16), default=ROLE_PLAYER, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class CreatorProfile(Base):
    __tablename__ = "creator_profiles"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    pen_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=CREATOR_PROFILE_ACTIVE, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Story(Base):
    __tablename__ = "stories"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(255), index=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    visibility: Mapped[str] = mapped_column(String(16), default=VISIBILITY_PRIVATE, index=True)
    ownership_status: Mapped[str] = mapped_column(String(32), default=OWNERSHIP_CREATOR_DRAFT, index=True)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True, index=True)
    original_creator_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)
    original_creator_profile_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("creator_profiles.id"), nullable=True
    )
    credit_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approval_token: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    approval_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    transfer_consent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    transfer_consent_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transfer_consent_user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    latest_version_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)
    review_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive, index=True)


class StoryNode(Base):
    __tablename__ = "story_nodes"
    __table_args__ = (UniqueConstraint("story_id", "key", name="uq_story_nodes_story_key"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    key: Mapped[str] = mapped_column(String(191))
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    synopsis: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), default=NODE_NARRATIVE)
    content: Mapped[Any] = mapped_column(JSONType, nullable=True)
    media: Mapped[Any] = mapped_column(JSONType, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class StoryPath(Base):
    __tablename__ = "story_paths"
    __table_args__ = (UniqueConstraint("story_id", "key", name="uq_story_paths_story_key"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    key: Mapped[str] = mapped_column(String(191))
    label: Mapped[str] = mapped_column(String(255))
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_metadata: Mapped[Any] = mapped_column("metadata", JSONType, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class StoryTransition(Base):
    __tablename__ = "story_transitions"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    from_node_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("story_nodes.id", ondelete="CASCADE"), index=True)
    to_node_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("story_nodes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    path_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("story_paths.id", ondelete="CASCADE"), index=True)
    ordering: Mapped[int | None] = mapped_column(Integer, nullable=True)
    condition: Mapped[Any] = mapped_column(JSONType, nullable=True)
    effect: Mapped[Any] = mapped_column(JSONType, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)


class StoryVersion(Base):
    __tablename__ = "story_versions"
    __table_args__ = (
        UniqueConstraint("story_id", "version_number", name="uq_story_versions_story_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    author_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)
    version_number: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[str] = mapped_column(String(16), default=VERSION_PENDING, index=True)
    ownership_status: Mapped[str] = mapped_column(String(32), default=OWNERSHIP_PENDING_TRANSFER)
    changelog: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[dict] = mapped_column(JSONType, default=dict)
    version_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    consent_snapshot: Mapped[dict] = mapped_column(JSONType, default=dict)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    reviewer_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class StoryAuditLog(Base):
    __tablename__ = "story_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class AvatarProfile(Base):
    __tablename__ = "avatar_profiles"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("stories.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    background: Mapped[str | None] = mapped_column(Text, nullable=True)
    initial_resources: Mapped[dict] = mapped_column(JSONType, default=dict)
    social_context: Mapped[dict] = mapped_column(JSONType, default=dict)
    appearance: Mapped[dict] = mapped_column(JSONType, default=dict)
    is_playable: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)
