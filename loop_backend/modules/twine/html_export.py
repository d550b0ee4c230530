from __future__ import annotations

import html as html_lib
import math
import re

from loop_backend.errors import ParseError
from loop_backend.modules.twine.twison import DEFAULT_STORY_NAME, extract_links_from_text, passage_name

_STORYDATA_RE = re.compile(r"<tw-storydata([^>]*)>([\s\S]*?)</tw-storydata>", re.IGNORECASE)
_PASSAGE_RE = re.compile(r"<tw-passagedata([^>]*)>([\s\S]*?)</tw-passagedata>", re.IGNORECASE)
_ATTR_RE = re.compile(r"([\w-]+)=\"([^\"]*)\"")


def _parse_attributes(raw: str) -> dict[str, str]:
    return {key: html_lib.unescape(value) for key, value in _ATTR_RE.findall(raw or "")}


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _parse_pair(value: str | None) -> tuple[float, float] | None:
    if not value:
        return None
    parts = [part.strip() for part in value.split(",")]
    if len(parts) < 2:
        return None
    try:
        first, second = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(first) and math.isfinite(second)):
        return None
    return first, second


def parse_twine_html(markup: str) -> dict:
    """Decode a Twine 2 HTML export into a Twison story dict.

    Raises ParseError when the ``<tw-storydata>`` block is absent or holds no
    ``<tw-passagedata>`` elements.
    """
    if not isinstance(markup, str) or not markup.strip():
        raise ParseError("Twine HTML export is empty.")

    story_match = _STORYDATA_RE.search(markup)
    if not story_match:
        raise ParseError("Unable to find <tw-storydata> block. Export the story HTML from Twine 2.")

    story_attrs = _parse_attributes(story_match.group(1))
    passages: list[dict] = []
    for passage_match in _PASSAGE_RE.finditer(story_match.group(2) or ""):
        attrs = _parse_attributes(passage_match.group(1))
        text = html_lib.unescape(passage_match.group(2) or "")
        name = (attrs.get("name") or "").strip() or passage_name(len(passages))
        tags = (attrs.get("tags") or "").split()

        passage: dict = {
            "pid": _parse_int(attrs.get("pid")),
            "name": name,
            "text": text,
            "tags": tags,
            "links": extract_links_from_text(text),
            "metadata": {},
        }
        position = _parse_pair(attrs.get("position"))
        if position is not None:
            passage["position"] = {"x": position[0], "y": position[1]}
        size = _parse_pair(attrs.get("size"))
        if size is not None:
            passage["metadata"]["size"] = {"width": size[0], "height": size[1]}
        passages.append(passage)

    if not passages:
        raise ParseError("No <tw-passagedata> elements were found in the Twine HTML export.")

    startnode = _parse_int(story_attrs.get("startnode"))
    if startnode is None:
        startnode = passages[0]["pid"] if passages[0]["pid"] is not None else 1

    story: dict = {
        "name": story_attrs.get("name") or DEFAULT_STORY_NAME,
        "startnode": startnode,
        "passages": passages,
    }
    for attr_name, key in (("creator", "creator"), ("creator-version", "creatorVersion"), ("ifid", "ifid")):
        if story_attrs.get(attr_name):
            story[key] = story_attrs[attr_name]
    return story
