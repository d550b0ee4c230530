"""Story version review lifecycle.

A submission snapshots the current graph into a PENDING ``StoryVersion`` and
mints a single-use approval token. A decision moves that version to APPROVED
or REJECTED exactly once; the caller is either an admin session or the holder
of the emailed token. Approval hands the story to the platform and makes it
public, rejection returns it to the creator.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loop_backend.config import settings
from loop_backend.db.models import (
    CREATOR_PROFILE_SUSPENDED,
    OWNERSHIP_PENDING_TRANSFER,
    OWNERSHIP_PLATFORM_OWNED,
    OWNERSHIP_RETURNED,
    ROLE_CREATOR,
    VERSION_APPROVED,
    VERSION_PENDING,
    VERSION_REJECTED,
    VERSION_TERMINAL_STATUSES,
    VISIBILITY_PUBLIC,
    CreatorProfile,
    Story,
    StoryAuditLog,
    StoryVersion,
    User,
)
from loop_backend.errors import (
    ConflictError,
    ForbiddenError,
    InvalidApprovalLinkError,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from loop_backend.modules.auth.session import SessionActor
from loop_backend.modules.notify.mailer import (
    MAILER_MISSING_MESSAGE,
    ApprovalLinks,
    Mailer,
    SubmissionContext,
    build_story_approval_links,
    compose_decision_email,
    compose_pending_update_email,
    compose_submission_email,
)
from loop_backend.modules.story.avatars import activate_story_avatars
from loop_backend.modules.story.graph_store import graph_snapshot, lock_story, resolve_credit_text
from loop_backend.modules.story.schemas import OwnershipAcknowledgement
from loop_backend.utils.time import is_past, iso_utc, utc_after_days, utc_now_naive

logger = logging.getLogger(__name__)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"
DECISION_STATUS = {DECISION_APPROVE: VERSION_APPROVED, DECISION_REJECT: VERSION_REJECTED}

AUDIT_SUBMITTED = "SUBMITTED_FOR_APPROVAL"
AUDIT_UPDATED_PENDING = "UPDATED_PENDING_SUBMISSION"
AUDIT_APPROVED = "APPROVED"
AUDIT_REJECTED = "REJECTED"

VIA_SESSION = "SESSION"
VIA_TOKEN = "TOKEN"

APPROVAL_TOKEN_BYTES = 32
PENDING_UPDATE_FAILED_MESSAGE = "Pending update email could not be sent. Check SMTP configuration and logs."


@dataclass(frozen=True)
class EmailDelivery:
    delivered: bool
    message: str | None = None


@dataclass(frozen=True)
class SubmissionResult:
    version_id: uuid.UUID
    version_number: int
    status: str
    story_id: uuid.UUID
    slug: str
    email: EmailDelivery


@dataclass(frozen=True)
class DecisionResult:
    version_id: uuid.UUID
    story_id: uuid.UUID
    story_slug: str
    status: str
    version_number: int
    reviewed_at: datetime
    via: str

    @property
    def message(self) -> str:
        verb = "approved" if self.status == VERSION_APPROVED else "rejected"
        return f"Story “{self.story_slug}” version {self.version_number} is now {verb}."


def _metadata_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def extract_approval_token(metadata: Any) -> str | None:
    token = _metadata_dict(metadata).get("approvalToken")
    return token if isinstance(token, str) and token else None


def _token_matches(provided: str | None, *stored: str | None) -> bool:
    if not provided:
        return False
    return any(candidate and hmac.compare_digest(provided, candidate) for candidate in stored)


def _token_expired(story: Story) -> bool:
    return settings.approval_token_enforce_expiry and is_past(story.approval_token_expires_at)


def _version_for_update(db: Session, version_id: uuid.UUID) -> tuple[StoryVersion, Story]:
    version = db.get(StoryVersion, version_id, populate_existing=True)
    if version is None:
        raise NotFoundError("Story version not found.")
    story = lock_story(db, Story.id == version.story_id)
    if story is None:
        raise NotFoundError("Story not found.")
    return version, story


def _creator_profile(db: Session, user_id: uuid.UUID) -> CreatorProfile | None:
    return db.execute(select(CreatorProfile).where(CreatorProfile.user_id == user_id)).scalar_one_or_none()


def _next_version_number(db: Session, story_id: uuid.UUID) -> int:
    current = db.execute(
        select(func.max(StoryVersion.version_number)).where(StoryVersion.story_id == story_id)
    ).scalar_one_or_none()
    return int(current or 0) + 1


def _notify_submission(
    mailer: Mailer,
    *,
    story: Story,
    version: StoryVersion,
    actor: SessionActor,
    token: str,
) -> EmailDelivery:
    if not mailer.is_configured:
        logger.warning("approval email skipped story=%s: %s", story.slug, MAILER_MISSING_MESSAGE)
        return EmailDelivery(delivered=False, message=MAILER_MISSING_MESSAGE)

    context = SubmissionContext(
        story_title=story.title,
        story_slug=story.slug,
        version_id=str(version.id),
        version_number=version.version_number,
        submitter_username=actor.username,
        submitter_email=actor.email,
        links=build_story_approval_links(str(version.id), token),
    )
    try:
        mailer.send(compose_submission_email(mailer.admin_address, context))
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "approval email failed story=%s version=%s error=%s",
            story.id,
            version.id,
            exc,
        )
        raise NotificationError(
            "Approval email could not be sent, so the submission was not recorded. "
            "Please verify SMTP configuration and try again."
        ) from exc
    return EmailDelivery(delivered=True)


def _submit_once(
    db: Session,
    actor: SessionActor,
    slug: str,
    acknowledgement: dict[str, bool],
    *,
    mailer: Mailer,
    client_ip: str | None,
    user_agent: str | None,
) -> SubmissionResult:
    with db.begin():
        creator_profile = _creator_profile(db, actor.id)
        if not actor.is_admin and (
            creator_profile is None
            or creator_profile.completed_at is None
            or creator_profile.status == CREATOR_PROFILE_SUSPENDED
        ):
            raise ForbiddenError(
                "Complete your creator profile before submitting stories for approval.",
                code="CREATOR_PROFILE_INCOMPLETE",
            )

        story = lock_story(db, Story.slug == slug)
        if story is None:
            raise NotFoundError("Story not found.")
        if not actor.is_admin and story.owner_id != actor.id:
            raise ForbiddenError("You do not have access to this story.")

        now = utc_now_naive()
        token = secrets.token_urlsafe(APPROVAL_TOKEN_BYTES)
        version = StoryVersion(
            id=uuid.uuid4(),
            story_id=story.id,
            author_id=actor.id,
            version_number=_next_version_number(db, story.id),
            status=VERSION_PENDING,
            ownership_status=OWNERSHIP_PENDING_TRANSFER,
            changelog="Submitted for approval",
            content=graph_snapshot(db, story),
            version_metadata={
                "approvalToken": token,
                "approvalRequestedAt": iso_utc(now),
                "ownershipAcknowledgement": acknowledgement,
            },
            consent_snapshot={
                "ownershipAcknowledgement": acknowledgement,
                "ip": client_ip,
                "userAgent": user_agent,
                "acceptedAt": iso_utc(now),
            },
            submitted_at=now,
        )
        db.add(version)
        db.flush()

        credit_text, _ = resolve_credit_text(db, actor.id)
        previous_status = story.ownership_status
        story.approval_token = token
        story.approval_token_expires_at = utc_after_days(settings.approval_token_ttl_days, now=now)
        story.ownership_status = OWNERSHIP_PENDING_TRANSFER
        story.original_creator_id = story.original_creator_id or actor.id
        if story.original_creator_profile_id is None and creator_profile is not None:
            story.original_creator_profile_id = creator_profile.id
        story.submitted_at = now
        story.transfer_consent_at = now
        story.transfer_consent_ip = client_ip
        story.transfer_consent_user_agent = user_agent
        story.credit_text = credit_text

        db.add(
            StoryAuditLog(
                story_id=story.id,
                actor_id=actor.id,
                action=AUDIT_SUBMITTED,
                log_metadata={
                    "versionId": str(version.id),
                    "versionNumber": version.version_number,
                    "ownershipAcknowledgement": acknowledgement,
                    "previousOwnershipStatus": previous_status,
                },
            )
        )
        db.flush()

        # a failed send raises here and rolls the whole submission back
        email = _notify_submission(mailer, story=story, version=version, actor=actor, token=token)
        result = SubmissionResult(
            version_id=version.id,
            version_number=version.version_number,
            status=version.status,
            story_id=story.id,
            slug=story.slug,
            email=email,
        )

    logger.info(
        "story submitted for approval slug=%s version=%s number=%s delivered=%s",
        result.slug,
        result.version_id,
        result.version_number,
        result.email.delivered,
    )
    return result


def submit_for_approval(
    db: Session,
    actor: SessionActor,
    slug: str,
    acknowledgement: OwnershipAcknowledgement,
    *,
    mailer: Mailer,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> SubmissionResult:
    """Capture a PENDING version of the story and notify the reviewer.

    Version numbers are ``max + 1`` per story; the per-story unique
    constraint turns a lost race into an ``IntegrityError`` which is retried
    with a fresh number.
    """
    if not actor.can_author:
        raise ForbiddenError("Creator access required.")
    if not (acknowledgement.transfer and acknowledgement.contact):
        raise ValidationError(
            "Ownership acknowledgement is required before submitting for approval.",
            code="OWNERSHIP_ACK_REQUIRED",
        )

    ack = {"transfer": True, "contact": True}
    attempts = max(1, int(settings.version_submit_max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return _submit_once(
                db,
                actor,
                slug,
                ack,
                mailer=mailer,
                client_ip=client_ip,
                user_agent=user_agent,
            )
        except IntegrityError as exc:
            if attempt >= attempts:
                raise ConflictError(
                    "Another submission for this story is in progress. Please retry.",
                    code="VERSION_NUMBER_CONFLICT",
                ) from exc
            logger.warning("version number collision slug=%s attempt=%s; retrying", slug, attempt)
    raise AssertionError("unreachable")


def authorize_decision(
    actor: SessionActor | None,
    version: StoryVersion,
    story: Story,
    token: str | None,
) -> str:
    """Admin sessions always pass; otherwise a matching, unexpired token is required."""
    if actor is not None and actor.is_admin:
        return VIA_SESSION
    if not _token_matches(token, extract_approval_token(version.version_metadata)):
        raise InvalidApprovalLinkError()
    if _token_expired(story):
        raise InvalidApprovalLinkError()
    return VIA_TOKEN


def _creator_address(db: Session, story: Story) -> str | None:
    if story.original_creator_profile_id is not None:
        profile = db.get(CreatorProfile, story.original_creator_profile_id)
        if profile is not None and profile.contact_email:
            return profile.contact_email
    if story.original_creator_id is not None:
        user = db.get(User, story.original_creator_id)
        if user is not None and user.email:
            return user.email
    return None


def _notify_creator(mailer: Mailer | None, address: str | None, *, title: str, slug: str, approved: bool) -> None:
    if mailer is None or not address:
        return
    if not mailer.is_configured:
        logger.warning("mailer not configured; skipping creator notification story=%s", slug)
        return
    try:
        mailer.send(compose_decision_email(address, story_title=title, story_slug=slug, approved=approved))
    except Exception:  # noqa: BLE001
        logger.exception("creator notification failed story=%s", slug)


def apply_decision(
    db: Session,
    version_id: uuid.UUID,
    decision: str,
    *,
    actor: SessionActor | None = None,
    token: str | None = None,
    notes: str | None = None,
    mailer: Mailer | None = None,
) -> DecisionResult:
    if decision not in DECISION_STATUS:
        raise ValidationError("Decision must be 'approve' or 'reject'.", code="INVALID_DECISION")
    new_status = DECISION_STATUS[decision]
    approved = new_status == VERSION_APPROVED

    with db.begin():
        version, story = _version_for_update(db, version_id)
        via = authorize_decision(actor, version, story, token)
        if version.status in VERSION_TERMINAL_STATUSES:
            raise ConflictError(
                f"Version already {version.status.lower()}.",
                code="VERSION_ALREADY_REVIEWED",
                status=version.status,
            )

        reviewed_at = utc_now_naive()
        reviewer_id = actor.id if via == VIA_SESSION and actor is not None else None
        metadata = _metadata_dict(version.version_metadata)
        metadata.update(
            {
                "approvalToken": None,
                "approvalDecision": new_status,
                "approvalDecisionAt": iso_utc(reviewed_at),
                "approvalNotes": notes,
                "approvalReviewedVia": via,
            }
        )
        if reviewer_id is not None:
            metadata["approvalReviewerId"] = str(reviewer_id)
        if via == VIA_TOKEN:
            metadata["approvalTokenUsedAt"] = iso_utc(reviewed_at)

        default_changelog = "Approved via admin action" if approved else "Rejected via admin action"
        outcome = db.execute(
            update(StoryVersion)
            .where(StoryVersion.id == version.id, StoryVersion.status == VERSION_PENDING)
            .values(
                {
                    StoryVersion.status: new_status,
                    StoryVersion.reviewer_id: reviewer_id,
                    StoryVersion.reviewed_at: reviewed_at,
                    StoryVersion.version_metadata: metadata,
                    StoryVersion.changelog: version.changelog or default_changelog,
                    StoryVersion.ownership_status: OWNERSHIP_PLATFORM_OWNED if approved else OWNERSHIP_RETURNED,
                }
            )
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            current = db.execute(select(StoryVersion.status).where(StoryVersion.id == version.id)).scalar_one()
            raise ConflictError(
                f"Version already {str(current).lower()}.",
                code="VERSION_ALREADY_REVIEWED",
                status=current,
            )

        story.approval_token = None
        story.approval_token_expires_at = None
        story.review_comment = notes if notes is not None else story.review_comment
        if approved:
            story.latest_version_id = version.id
            story.ownership_status = OWNERSHIP_PLATFORM_OWNED
            story.approved_at = reviewed_at
            story.approved_by_id = reviewer_id or story.owner_id
            story.visibility = VISIBILITY_PUBLIC
            activate_story_avatars(db, story.id)
        else:
            story.ownership_status = OWNERSHIP_RETURNED

        db.add(
            StoryAuditLog(
                story_id=story.id,
                actor_id=reviewer_id,
                action=AUDIT_APPROVED if approved else AUDIT_REJECTED,
                note=notes,
                log_metadata={"versionId": str(version.id), "via": via},
            )
        )
        creator_address = _creator_address(db, story)
        result = DecisionResult(
            version_id=version.id,
            story_id=story.id,
            story_slug=story.slug,
            status=new_status,
            version_number=version.version_number,
            reviewed_at=reviewed_at,
            via=via,
        )
        story_title = story.title

    logger.info(
        "review decision applied slug=%s version=%s status=%s via=%s",
        result.story_slug,
        result.version_id,
        result.status,
        result.via,
    )
    _notify_creator(mailer, creator_address, title=story_title, slug=result.story_slug, approved=approved)
    return result


def approve_pending_for_story(
    db: Session,
    actor: SessionActor,
    *,
    slug: str | None = None,
    version_id: uuid.UUID | None = None,
    notes: str | None = None,
    mailer: Mailer | None = None,
) -> DecisionResult:
    """Admin shortcut: approve by version id, or the newest pending version of ``slug``."""
    if not actor.is_admin:
        raise ForbiddenError("Admin access required.")

    with db.begin():
        if version_id is not None:
            target = db.execute(select(StoryVersion.id).where(StoryVersion.id == version_id)).scalar_one_or_none()
        else:
            target = db.execute(
                select(StoryVersion.id)
                .join(Story, Story.id == StoryVersion.story_id)
                .where(Story.slug == slug, StoryVersion.status == VERSION_PENDING)
                .order_by(StoryVersion.version_number.desc())
                .limit(1)
            ).scalar_one_or_none()
    if target is None:
        raise NotFoundError("Pending story version not found.")

    return apply_decision(db, target, DECISION_APPROVE, actor=actor, notes=notes, mailer=mailer)


def refresh_pending_submission(
    db: Session,
    story_id: uuid.UUID,
    actor: SessionActor,
    *,
    mailer: Mailer,
) -> EmailDelivery | None:
    """Re-snapshot a pending version after its creator edits the graph.

    The version keeps its number and token; the reviewer gets a fresh email.
    Returns None when the story has no pending version.
    """
    if actor.role != ROLE_CREATOR:
        return None

    with db.begin():
        story = lock_story(db, Story.id == story_id)
        if story is None:
            return None
        pending = db.execute(
            select(StoryVersion)
            .where(StoryVersion.story_id == story.id, StoryVersion.status == VERSION_PENDING)
            .order_by(StoryVersion.version_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if pending is None:
            return None

        now = utc_now_naive()
        metadata = _metadata_dict(pending.version_metadata)
        metadata["lastUpdatedAt"] = iso_utc(now)
        metadata["lastUpdatedByUserId"] = str(actor.id)
        pending.version_metadata = metadata
        pending.content = graph_snapshot(db, story)
        pending.changelog = "Creator updated story while pending review"

        db.add(
            StoryAuditLog(
                story_id=story.id,
                actor_id=actor.id,
                action=AUDIT_UPDATED_PENDING,
                log_metadata={"versionId": str(pending.id), "versionNumber": pending.version_number},
            )
        )
        token = extract_approval_token(metadata) or story.approval_token
        context = SubmissionContext(
            story_title=story.title,
            story_slug=story.slug,
            version_id=str(pending.id),
            version_number=pending.version_number,
            submitter_username=actor.username,
            submitter_email=actor.email,
            links=build_story_approval_links(str(pending.id), token) if token else ApprovalLinks(),
        )

    if not mailer.is_configured:
        logger.warning("pending update email skipped story=%s: mailer not configured", context.story_slug)
        return EmailDelivery(delivered=False, message=MAILER_MISSING_MESSAGE)
    try:
        mailer.send(compose_pending_update_email(mailer.admin_address, context))
    except Exception:  # noqa: BLE001
        logger.exception("pending update email failed story=%s version=%s", context.story_slug, context.version_id)
        return EmailDelivery(delivered=False, message=PENDING_UPDATE_FAILED_MESSAGE)
    return EmailDelivery(delivered=True)


def _user_card(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": str(user.id), "username": user.username, "email": user.email}


def load_review_preview(
    db: Session,
    version_id: uuid.UUID,
    *,
    actor: SessionActor | None = None,
    token: str | None = None,
) -> dict[str, Any]:
    """Version snapshot for reviewers; tokens are never echoed back."""
    with db.begin():
        version = db.get(StoryVersion, version_id)
        if version is None:
            raise NotFoundError("Version not found.")
        story = db.get(Story, version.story_id)
        if story is None:
            raise NotFoundError("Story not found.")

        is_admin = actor is not None and actor.is_admin
        if not is_admin:
            if not _token_matches(token, extract_approval_token(version.version_metadata), story.approval_token):
                raise InvalidApprovalLinkError()
            if _token_expired(story):
                raise InvalidApprovalLinkError()

        metadata = _metadata_dict(version.version_metadata)
        metadata.pop("approvalToken", None)
        creator_profile = (
            db.get(CreatorProfile, story.original_creator_profile_id) if story.original_creator_profile_id else None
        )
        return {
            "version": {
                "id": str(version.id),
                "status": version.status,
                "versionNumber": version.version_number,
                "ownershipStatus": version.ownership_status,
                "submittedAt": iso_utc(version.submitted_at),
                "reviewedAt": iso_utc(version.reviewed_at),
                "changelog": version.changelog,
                "consentSnapshot": version.consent_snapshot,
                "metadata": metadata,
                "content": version.content,
            },
            "story": {
                "id": str(story.id),
                "slug": story.slug,
                "title": story.title,
                "summary": story.summary,
                "tags": list(story.tags or []),
                "visibility": story.visibility,
                "creditText": story.credit_text,
                "ownershipStatus": story.ownership_status,
                "submittedAt": iso_utc(story.submitted_at),
                "approvalTokenExpiresAt": iso_utc(story.approval_token_expires_at),
                "transferConsentAt": iso_utc(story.transfer_consent_at),
                "owner": _user_card(db.get(User, story.owner_id) if story.owner_id else None),
                "originalCreator": _user_card(
                    db.get(User, story.original_creator_id) if story.original_creator_id else None
                ),
                "originalCreatorProfile": (
                    {
                        "id": str(creator_profile.id),
                        "penName": creator_profile.pen_name,
                        "status": creator_profile.status,
                        "contactEmail": creator_profile.contact_email,
                    }
                    if creator_profile
                    else None
                ),
            },
            "author": _user_card(db.get(User, version.author_id) if version.author_id else None),
            "permissions": {"canModerate": True},
        }
