"""Twison story helpers: link extraction, best-effort repair and validation.

Twison is the JSON shape of a Twine 2 story::

    {"name": ..., "startnode": 1, "passages": [{"pid": 1, "name": ..., "text": ...,
     "tags": [...], "links": [{"name": ..., "link": ...}], "position": {...}}]}

Stories are handled as plain dicts so that HTML and JSON imports flow through
the same repair/validate steps before conversion.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator

from loop_backend.errors import ValidationError

DEFAULT_STORY_NAME = "Untitled Twine Story"

_LINK_RE = re.compile(r"\[\[([^\[\]]+)\]\]")
_LINK_SEPARATORS = ("->", "<-", "|")
_TAG_SPLIT_RE = re.compile(r"[\s,]+")

TWISON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["passages"],
    "properties": {
        "name": {"type": "string"},
        "startnode": {"type": ["integer", "null"]},
        "passages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "pid": {"type": ["integer", "null"]},
                    "name": {"type": "string"},
                    "text": {"type": ["string", "null"]},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "links": {"type": "array", "items": {"type": "object"}},
                },
            },
        },
    },
}
_SCHEMA_VALIDATOR = Draft202012Validator(TWISON_SCHEMA)


@dataclass(frozen=True)
class TwisonValidation:
    ok: bool
    errors: list[str] = field(default_factory=list)


def passage_name(index: int) -> str:
    return f"passage-{index + 1}"


def extract_links_from_text(body: Any) -> list[dict[str, str]]:
    """Scan passage text for ``[[...]]`` link markup.

    ``[[Label->Target]]``, ``[[Label<-Target]]``, ``[[Label|Target]]`` and
    ``[[Target]]`` are recognised; each yields ``{"name", "link", "text"}``.
    """
    links: list[dict[str, str]] = []
    if not isinstance(body, str) or "[[" not in body:
        return links

    for match in _LINK_RE.finditer(body):
        raw = match.group(1).strip()
        if not raw:
            continue

        label = raw
        target = raw
        for separator in _LINK_SEPARATORS:
            if separator in raw:
                left, _, right = raw.partition(separator)
                label, target = left.strip(), right.strip()
                break

        if not target:
            continue
        label = label or target
        links.append({"name": label, "link": target, "text": label})
    return links


def _is_finite_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _link_target(link: dict) -> str:
    for key in ("link", "name", "text"):
        value = link.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _repair_tags(tags: Any) -> list[str]:
    if isinstance(tags, list):
        return [str(tag).strip() for tag in tags if str(tag).strip()]
    if isinstance(tags, str):
        return [tag for tag in _TAG_SPLIT_RE.split(tags) if tag]
    return []


def _repair_links(links: Any, text: Any) -> list[dict]:
    if not isinstance(links, list):
        return extract_links_from_text(text)
    repaired: list[dict] = []
    for link in links:
        if not isinstance(link, dict):
            continue
        target = _link_target(link)
        if not target:
            continue
        item = dict(link)
        if not isinstance(item.get("link"), str) or not item["link"].strip():
            item["link"] = target
        if not isinstance(item.get("name"), str) or not item["name"].strip():
            item["name"] = str(item.get("text") or target)
        repaired.append(item)
    return repaired


def repair_twison_story(story: Any) -> dict:
    """Fill gaps in a Twison story without inventing content.

    Returns a new dict; the input is never mutated. Repairing an already
    repaired story returns an equal story.
    """
    repaired: dict = copy.deepcopy(story) if isinstance(story, dict) else {}
    raw_passages = repaired.get("passages")
    passages: list = raw_passages if isinstance(raw_passages, list) else []
    repaired["passages"] = passages

    used_names: set[str] = set()
    for index, passage in enumerate(passages):
        if not isinstance(passage, dict):
            passage = {"pid": index + 1, "name": "", "text": "", "tags": [], "links": []}
            passages[index] = passage

        raw_name = passage.get("name")
        base_name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else passage_name(index)
        unique_name = base_name
        suffix = 1
        while unique_name in used_names:
            unique_name = f"{base_name}-{suffix}"
            suffix += 1
        passage["name"] = unique_name
        used_names.add(unique_name)

        if not _is_finite_int(passage.get("pid")) or passage.get("pid", 0) <= 0:
            passage["pid"] = index + 1

        if not isinstance(passage.get("text"), str):
            passage["text"] = "" if passage.get("text") is None else str(passage["text"])

        passage["tags"] = _repair_tags(passage.get("tags"))
        passage["links"] = _repair_links(passage.get("links"), passage.get("text"))

        if "metadata" in passage and not isinstance(passage["metadata"], dict):
            del passage["metadata"]

    name = repaired.get("name")
    if not isinstance(name, str) or not name.strip():
        repaired["name"] = DEFAULT_STORY_NAME

    if not _is_finite_int(repaired.get("startnode")) or repaired.get("startnode", 0) <= 0:
        repaired["startnode"] = passages[0]["pid"] if passages else 1

    return repaired


def validate_twison_story(story: Any) -> TwisonValidation:
    if not isinstance(story, dict):
        return TwisonValidation(ok=False, errors=["Missing Twine story payload."])

    passages = story.get("passages")
    if not isinstance(passages, list) or not passages:
        return TwisonValidation(ok=False, errors=["Twine story must include passages."])

    errors: list[str] = []
    for schema_error in sorted(_SCHEMA_VALIDATOR.iter_errors(story), key=lambda err: list(err.path)):
        location = ".".join(str(part) for part in schema_error.path) or "story"
        errors.append(f"{location}: {schema_error.message}")

    seen_names: set[str] = set()
    for index, passage in enumerate(passages):
        if not isinstance(passage, dict):
            errors.append(f"Passage {index + 1} is invalid.")
            continue
        name = passage.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"Passage {index + 1} is missing a name.")
            continue
        if name in seen_names:
            errors.append(f"Duplicate passage name '{name}'. Ensure passage titles are unique.")
        seen_names.add(name)

        links = passage.get("links")
        if links is None:
            continue
        if not isinstance(links, list):
            errors.append(f"Passage '{name}' has invalid link structure.")
            continue
        for link_index, link in enumerate(links):
            target = link.get("link") if isinstance(link, dict) else None
            if not isinstance(target, str) or not target.strip():
                errors.append(f"Passage '{name}' link {link_index + 1} is missing a target.")

    deduped = list(dict.fromkeys(errors))
    return TwisonValidation(ok=not deduped, errors=deduped)


def ensure_valid_twison(story: Any) -> dict:
    result = validate_twison_story(story)
    if not result.ok:
        raise ValidationError("\n".join(result.errors), errors=result.errors)
    return story
