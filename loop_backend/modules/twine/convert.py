from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loop_backend.db.models import NODE_DECISION, NODE_NARRATIVE, NODE_RESOLUTION, VISIBILITY_PRIVATE
from loop_backend.errors import ValidationError
from loop_backend.modules.story.schemas import ImportOverrides, StoryPayload
from loop_backend.modules.twine.twison import repair_twison_story

DEFAULT_SLUG = "twine-story"
SYNOPSIS_MAX_CHARS = 160
SUMMARY_MAX_CHARS = 250

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: Any) -> str:
    return _NON_SLUG_RE.sub("-", str(value or "").lower()).strip("-")


def ensure_unique(existing: set[str], base: str, *, fallback: str = "node") -> str:
    base = base or fallback
    candidate = base
    suffix = 1
    while candidate in existing:
        candidate = f"{base}-{suffix}"
        suffix += 1
    existing.add(candidate)
    return candidate


def node_type_for_link_count(count: int) -> str:
    if count <= 0:
        return NODE_RESOLUTION
    if count == 1:
        return NODE_NARRATIVE
    return NODE_DECISION


def _synopsis(text: str) -> str | None:
    lines = text.split("\n")[:2]
    synopsis = " ".join(lines)[:SYNOPSIS_MAX_CHARS]
    return synopsis or None


def _link_label(link: dict) -> str:
    for key in ("text", "name", "link"):
        value = link.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return "Continue"


def _link_target(link: dict) -> str:
    for key in ("link", "name", "text"):
        value = link.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _coerce_overrides(overrides: ImportOverrides | dict | None) -> dict[str, Any]:
    if overrides is None:
        return {}
    if isinstance(overrides, ImportOverrides):
        return overrides.model_dump(exclude_none=True)
    return ImportOverrides.model_validate(overrides).model_dump(exclude_none=True)


def check_converted_payload(payload: dict) -> None:
    nodes = payload.get("nodes") or []
    if not nodes:
        raise ValidationError("Converted story has no nodes. Ensure at least one passage exists in Twine.")
    keys = [node.get("key") for node in nodes]
    if len(set(keys)) != len(keys):
        raise ValidationError(
            "Converted story contains duplicate node keys. Check for duplicate passage names in Twine."
        )


def render_payload_errors(exc: PydanticValidationError) -> list[str]:
    rendered: list[str] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        rendered.append(f"{location}: {item.get('msg') or 'validation error'}")
    return rendered


def convert_twison_to_story_payload(
    story: Any,
    overrides: ImportOverrides | dict | None = None,
) -> StoryPayload:
    """Map a Twison story onto the platform graph payload.

    Passages become nodes in order, distinct link labels become paths and
    every passage link becomes one transition. A link whose target names no
    passage keeps ``to=None``.
    """
    repaired = repair_twison_story(story)
    passages: list[dict] = repaired["passages"]
    if not passages:
        raise ValidationError("Twine story must include passages.")

    chosen = _coerce_overrides(overrides)

    node_keys: set[str] = set()
    key_by_name: dict[str, str] = {}
    nodes: list[dict] = []
    for passage in passages:
        key = ensure_unique(node_keys, slugify(passage["name"]))
        key_by_name[passage["name"]] = key

        text = passage["text"].strip()
        metadata = passage.get("metadata") if isinstance(passage.get("metadata"), dict) else {}
        nodes.append(
            {
                "key": key,
                "title": passage["name"],
                "synopsis": _synopsis(text),
                "type": node_type_for_link_count(len(passage["links"])),
                "content": {
                    "text": text,
                    "tags": list(passage["tags"]),
                    "metadata": {"pid": passage["pid"], "position": passage.get("position")},
                },
                "media": metadata.get("media"),
            }
        )

    path_keys: set[str] = set()
    path_key_by_label: dict[str, str] = {}
    paths: list[dict] = []
    transitions: list[dict] = []
    for passage in passages:
        from_key = key_by_name[passage["name"]]
        for index, link in enumerate(passage["links"]):
            label = _link_label(link)
            target = _link_target(link)
            path_key = path_key_by_label.get(label)
            if path_key is None:
                path_key = ensure_unique(path_keys, slugify(label), fallback="choice")
                path_key_by_label[label] = path_key
                paths.append({"key": path_key, "label": label, "metadata": {"sourceTag": target}})
            transitions.append(
                {
                    "from": from_key,
                    "path": path_key,
                    "to": key_by_name.get(target),
                    "ordering": index,
                }
            )

    name = repaired["name"]
    slug = chosen.get("slug") or slugify(name) or DEFAULT_SLUG

    story_tags = repaired.get("tags")
    inferred_tags = [str(tag) for tag in story_tags] if isinstance(story_tags, list) else []

    description = repaired.get("description")
    if isinstance(description, str) and description.strip():
        inferred_summary = description.strip()
    else:
        synopses = [node["synopsis"] for node in nodes if node["synopsis"]]
        inferred_summary = " ".join(synopses[:2])[:SUMMARY_MAX_CHARS]

    payload = {
        "slug": slug,
        "title": chosen.get("title") or name,
        "summary": chosen.get("summary", inferred_summary or None),
        "tags": chosen.get("tags", inferred_tags),
        "visibility": chosen.get("visibility", VISIBILITY_PRIVATE),
        "nodes": nodes,
        "paths": paths,
        "transitions": transitions,
    }
    check_converted_payload(payload)

    try:
        return StoryPayload.model_validate(payload)
    except PydanticValidationError as exc:
        errors = render_payload_errors(exc)
        raise ValidationError("\n".join(errors), errors=errors) from exc


def derive_node_types(payload: StoryPayload) -> dict[str, str]:
    """Recompute node types from the outgoing transition count of each node."""
    fan_out = {node.key: 0 for node in payload.nodes}
    for transition in payload.transitions:
        if transition.from_ in fan_out:
            fan_out[transition.from_] += 1
    return {key: node_type_for_link_count(count) for key, count in fan_out.items()}
