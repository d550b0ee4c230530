from __future__ import annotations

import html
import json
import uuid
from dataclasses import asdict

from fastapi import APIRouter, Body, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import HTMLResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from loop_backend.config import settings
from loop_backend.db.session import get_db
from loop_backend.errors import LoopError, ValidationError
from loop_backend.modules.auth.session import (
    SessionActor,
    get_current_actor,
    require_actor,
    require_admin,
    require_author,
)
from loop_backend.modules.notify.mailer import Mailer, get_mailer
from loop_backend.modules.story import approval, graph_store
from loop_backend.modules.story.schemas import (
    AdminApproveRequest,
    DecisionRequest,
    DecisionResponse,
    ImportOverrides,
    ImportResponse,
    PublishRequest,
    StoryPayload,
    StorySaveResponse,
    StorySlugRequest,
    StoryUpdatePayload,
    SubmissionResponse,
)
from loop_backend.modules.twine.convert import convert_twison_to_story_payload
from loop_backend.modules.twine.loader import load_twison_from_bytes
from loop_backend.modules.twine.twison import ensure_valid_twison, repair_twison_story

router = APIRouter(prefix="", tags=["stories"])

_PANEL_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Story Review</title>
    <style>
      body {{ font-family: system-ui, -apple-system, "Segoe UI", sans-serif; background: #0f172a; color: #e2e8f0;
        display: flex; align-items: center; justify-content: center; min-height: 100vh; padding: 2rem; }}
      .panel {{ max-width: 36rem; background: rgba(15, 23, 42, 0.8); border-radius: 1.5rem;
        border: 1px solid rgba(148, 163, 184, 0.4); padding: 2.5rem; text-align: center; }}
      h1 {{ font-size: 1.5rem; margin-bottom: 1rem; }}
      p {{ margin: 0; line-height: 1.6; }}
    </style>
  </head>
  <body>
    <div class="panel">
      <h1>Story Review Update</h1>
      <p>{message}</p>
    </div>
  </body>
</html>"""


def _review_panel(message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        _PANEL_TEMPLATE.format(message=html.escape(message)),
        status_code=status_code,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


def _client_ip(request: Request) -> str | None:
    for header in ("x-forwarded-for", "x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _parse_overrides(raw: str | None) -> ImportOverrides | None:
    if raw is None or not raw.strip():
        return None
    try:
        return ImportOverrides.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise ValidationError("Invalid overrides payload.", code="INVALID_OVERRIDES") from exc


def _slug_from(body: StorySlugRequest | None, slug: str | None) -> str:
    chosen = (body.slug if body else None) or slug
    if not chosen:
        raise ValidationError("Missing story code.", code="MISSING_SLUG")
    return chosen


@router.post("/creator/import", status_code=201, response_model=ImportResponse)
def import_twine_story(
    twine_file: UploadFile = File(alias="twineFile"),
    overrides: str | None = Form(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
):
    actor = require_author(actor)
    chosen = _parse_overrides(overrides)

    data = twine_file.file.read(settings.import_max_bytes + 1)
    if len(data) > settings.import_max_bytes:
        raise ValidationError("The uploaded Twine export is too large.", code="IMPORT_TOO_LARGE")

    twison = repair_twison_story(load_twison_from_bytes(twine_file.filename, data))
    ensure_valid_twison(twison)
    payload = convert_twison_to_story_payload(twison, chosen)

    saved = graph_store.import_story_graph(db, actor, payload, story_name=twison.get("name"))
    return ImportResponse(
        story_id=saved.story.id,
        slug=saved.story.slug,
        title=saved.story.title,
        nodes=saved.node_count,
        paths=saved.path_count,
        dropped_transitions=saved.dropped_transitions,
    )


@router.get("/creator/stories")
def list_creator_stories(
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
):
    actor = require_actor(actor)
    return {"stories": graph_store.list_owner_stories(db, actor.id)}


@router.post("/creator/stories", status_code=201, response_model=StorySaveResponse)
def create_creator_story(
    payload: StoryPayload,
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    actor = require_author(actor)
    saved = graph_store.create_or_replace_story(db, actor, payload)
    email = approval.refresh_pending_submission(db, saved.story.id, actor, mailer=mailer)
    return StorySaveResponse(
        story_id=saved.story.id,
        dropped_transitions=saved.dropped_transitions,
        pending_update_email=asdict(email) if email else None,
    )


@router.put("/creator/stories", response_model=StorySaveResponse)
def update_creator_story(
    payload: StoryUpdatePayload,
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    actor = require_author(actor)
    saved = graph_store.update_story(db, actor, payload.story_id, payload.graph_payload())
    email = approval.refresh_pending_submission(db, saved.story.id, actor, mailer=mailer)
    return StorySaveResponse(
        story_id=saved.story.id,
        dropped_transitions=saved.dropped_transitions,
        pending_update_email=asdict(email) if email else None,
    )


@router.delete("/creator/stories", status_code=204)
def delete_creator_story(
    body: StorySlugRequest | None = Body(default=None),
    slug: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
):
    actor = require_actor(actor)
    graph_store.delete_story(db, actor, _slug_from(body, slug))
    return Response(status_code=204)


@router.post("/creator/stories/publish", status_code=201, response_model=SubmissionResponse)
def publish_creator_story(
    body: PublishRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    actor = require_author(actor)
    result = approval.submit_for_approval(
        db,
        actor,
        body.slug,
        body.ownership_acknowledgement,
        mailer=mailer,
        client_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return SubmissionResponse(
        version_id=result.version_id,
        version_number=result.version_number,
        status=result.status,
        email=asdict(result.email),
    )


def _decision_response(result: approval.DecisionResult) -> DecisionResponse:
    return DecisionResponse(
        version_id=result.version_id,
        story_id=result.story_id,
        slug=result.story_slug,
        status=result.status,
        version_number=result.version_number,
        reviewed_at=result.reviewed_at,
        message=result.message,
    )


@router.post("/creator/stories/publish/decision", response_model=DecisionResponse)
def decide_story_version(
    body: DecisionRequest,
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    result = approval.apply_decision(
        db,
        body.version_id,
        body.decision,
        actor=actor,
        token=body.token,
        notes=body.notes,
        mailer=mailer,
    )
    return _decision_response(result)


@router.get("/creator/stories/publish/decision", response_class=HTMLResponse)
def decide_story_version_from_link(
    version_id: str = Query(default="", alias="versionId"),
    decision: str = Query(default=approval.DECISION_APPROVE),
    token: str | None = Query(default=None),
    notes: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        parsed_id = uuid.UUID(version_id)
    except ValueError:
        return _review_panel("Approval link is invalid.", 400)
    if decision not in approval.DECISION_STATUS:
        return _review_panel("Approval link is invalid.", 400)

    try:
        result = approval.apply_decision(
            db,
            parsed_id,
            decision,
            actor=actor,
            token=token,
            notes=notes,
            mailer=mailer,
        )
    except LoopError as exc:
        return _review_panel(exc.message, exc.status_code)
    return _review_panel(result.message, 200)


@router.get("/review/version/{version_id}")
def review_story_version(
    version_id: uuid.UUID,
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
):
    return approval.load_review_preview(db, version_id, actor=actor, token=token)


@router.patch("/admin/stories/approve", response_model=DecisionResponse)
def admin_approve_story(
    body: AdminApproveRequest | None = Body(default=None),
    slug: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
    mailer: Mailer = Depends(get_mailer),
):
    actor = require_admin(actor)
    if body is None:
        body = AdminApproveRequest(slug=_slug_from(None, slug))
    result = approval.approve_pending_for_story(
        db,
        actor,
        slug=body.slug,
        version_id=body.version_id,
        notes=body.notes,
        mailer=mailer,
    )
    return _decision_response(result)


@router.patch("/admin/stories/private")
def admin_make_story_private(
    body: StorySlugRequest | None = Body(default=None),
    slug: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: SessionActor | None = Depends(get_current_actor),
):
    require_admin(actor)
    story = graph_store.set_story_private(db, _slug_from(body, slug))
    return {"ok": True, "slug": story.slug, "visibility": story.visibility}


@router.get("/stories/{slug}/graph")
def get_story_graph(slug: str, db: Session = Depends(get_db)):
    return graph_store.load_graph_snapshot(db, slug)
