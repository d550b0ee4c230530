from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator

Visibility = Literal["PRIVATE", "UNLISTED", "PUBLIC"]
NodeType = Literal["NARRATIVE", "DECISION", "RESOLUTION"]
Decision = Literal["approve", "reject"]

SLUG_PATTERN = r"(?i)^[a-z0-9-]+$"


class StoryNodeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1)
    title: str | None = None
    synopsis: str | None = None
    type: NodeType | None = None
    content: JsonValue = None
    media: JsonValue = None


class StoryPathIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1)
    label: str | None = Field(default=None, min_length=1)
    summary: str | None = None
    metadata: JsonValue = None


class StoryTransitionIn(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    from_: str = Field(alias="from", min_length=1)
    path: str = Field(min_length=1)
    to: str | None = None
    ordering: int | None = None
    condition: JsonValue = None
    effect: JsonValue = None


class StoryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slug: str = Field(min_length=1, pattern=SLUG_PATTERN)
    title: str = Field(min_length=1)
    summary: str | None = None
    tags: list[str] | None = None
    visibility: Visibility | None = None
    nodes: list[StoryNodeIn] = Field(min_length=1)
    paths: list[StoryPathIn] = Field(default_factory=list)
    transitions: list[StoryTransitionIn] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class StoryUpdatePayload(StoryPayload):
    story_id: uuid.UUID = Field(alias="storyId")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def graph_payload(self) -> StoryPayload:
        data = self.model_dump(by_alias=True, exclude={"story_id"})
        return StoryPayload.model_validate(data)


class ImportOverrides(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slug: str | None = Field(default=None, min_length=1, pattern=SLUG_PATTERN)
    title: str | None = Field(default=None, min_length=1)
    summary: str | None = None
    tags: list[str] | None = None
    visibility: Visibility | None = None


class OwnershipAcknowledgement(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transfer: bool
    contact: bool


class PublishRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slug: str = Field(min_length=1)
    ownership_acknowledgement: OwnershipAcknowledgement = Field(alias="ownershipAcknowledgement")


class DecisionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version_id: uuid.UUID = Field(alias="versionId")
    decision: Decision
    notes: str | None = None
    token: str | None = None


class AdminApproveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slug: str | None = Field(default=None, min_length=1)
    version_id: uuid.UUID | None = Field(default=None, alias="versionId")
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def require_target(self):
        if not self.slug and self.version_id is None:
            raise ValueError("Provide either a story code or versionId.")
        return self


class StorySlugRequest(BaseModel):
    slug: str = Field(min_length=1)


class EmailStatus(BaseModel):
    delivered: bool
    message: str | None = None


class ImportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: uuid.UUID = Field(alias="storyId")
    slug: str
    title: str
    nodes: int
    paths: int
    dropped_transitions: int = Field(alias="droppedTransitions")


class StorySaveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: uuid.UUID = Field(alias="storyId")
    dropped_transitions: int = Field(alias="droppedTransitions")
    pending_update_email: EmailStatus | None = Field(default=None, alias="pendingUpdateEmail")


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version_id: uuid.UUID = Field(alias="versionId")
    version_number: int = Field(alias="versionNumber")
    status: str
    email: EmailStatus


class DecisionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    version_id: uuid.UUID = Field(alias="versionId")
    story_id: uuid.UUID = Field(alias="storyId")
    slug: str
    status: str
    version_number: int = Field(alias="versionNumber")
    reviewed_at: datetime = Field(alias="reviewedAt")
    message: str
