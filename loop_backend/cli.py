from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import httpx
import typer

from loop_backend.errors import LoopError
from loop_backend.modules.story.schemas import ImportOverrides
from loop_backend.modules.twine.convert import convert_twison_to_story_payload, derive_node_types
from loop_backend.modules.twine.loader import load_twison_from_bytes
from loop_backend.modules.twine.twison import repair_twison_story, validate_twison_story

app = typer.Typer(help="Twine import tools for the Loop backend")

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
TOKEN_ENV = "LOOP_TOKEN"


def backend_url() -> str:
    return os.getenv("BACKEND_URL", DEFAULT_BACKEND_URL).rstrip("/")


def _auth_headers() -> dict[str, str]:
    token = os.getenv(TOKEN_ENV, "").strip()
    if not token:
        raise typer.BadParameter(f"Set {TOKEN_ENV} to a session token before calling the backend.")
    return {"Authorization": f"Bearer {token}"}


def request(method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
    with httpx.Client(timeout=30.0) as client:
        return client.request(method, f"{backend_url()}{endpoint}", **kwargs)


def _handle_response(resp: httpx.Response, action: str) -> dict[str, Any]:
    if resp.status_code >= 400:
        typer.echo(f"{action} failed ({resp.status_code}): {resp.text}", err=True)
        raise typer.Exit(code=1)
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def _load(path: Path):
    if not path.exists():
        raise typer.BadParameter(f"file not found: {path}")
    return load_twison_from_bytes(path.name, path.read_bytes())


def _fail(exc: LoopError) -> None:
    typer.echo(json.dumps(exc.to_detail(), ensure_ascii=False, indent=2), err=True)
    raise typer.Exit(code=1)


@app.command()
def convert(
    file: Path = typer.Argument(..., help="Twine .html/.json/.zip export"),
    slug: str | None = typer.Option(None, help="Story code override"),
    title: str | None = typer.Option(None, help="Title override"),
) -> None:
    """Print the story graph payload converted from a Twine export."""
    try:
        story = repair_twison_story(_load(file))
        payload = convert_twison_to_story_payload(story, ImportOverrides(slug=slug, title=title))
    except LoopError as exc:
        _fail(exc)
        return
    _echo_json(payload.to_wire())


@app.command()
def validate(file: Path = typer.Argument(..., help="Twine .html/.json/.zip export")) -> None:
    """Repair and validate a Twine export without storing anything."""
    try:
        story = repair_twison_story(_load(file))
    except LoopError as exc:
        _fail(exc)
        return

    result = validate_twison_story(story)
    report: dict[str, Any] = {"ok": result.ok, "errors": result.errors, "passages": len(story["passages"])}
    if result.ok:
        try:
            payload = convert_twison_to_story_payload(story)
        except LoopError as exc:
            report.update(ok=False, errors=[exc.message])
        else:
            report["nodeTypes"] = derive_node_types(payload)
    _echo_json(report)
    if not report["ok"]:
        raise typer.Exit(code=1)


@app.command()
def ping() -> None:
    body = _handle_response(request("GET", "/health"), "ping")
    _echo_json(body)


@app.command()
def upload(
    file: Path = typer.Argument(..., help="Twine .html/.json/.zip export"),
    slug: str | None = typer.Option(None, help="Story code override"),
    title: str | None = typer.Option(None, help="Title override"),
) -> None:
    """Import a Twine export into the backend as a private draft."""
    if not file.exists():
        raise typer.BadParameter(f"file not found: {file}")
    overrides = ImportOverrides(slug=slug, title=title).model_dump(exclude_none=True)
    data = {"overrides": json.dumps(overrides)} if overrides else None
    resp = request(
        "POST",
        "/creator/import",
        headers=_auth_headers(),
        files={"twineFile": (file.name, file.read_bytes())},
        data=data,
    )
    _echo_json(_handle_response(resp, "upload"))


@app.command()
def submit(slug: str = typer.Argument(..., help="Story code to send for review")) -> None:
    """Submit a story for approval, acknowledging the ownership transfer."""
    resp = request(
        "POST",
        "/creator/stories/publish",
        headers=_auth_headers(),
        json={"slug": slug, "ownershipAcknowledgement": {"transfer": True, "contact": True}},
    )
    _echo_json(_handle_response(resp, "submit"))


if __name__ == "__main__":
    app()
