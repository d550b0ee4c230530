from __future__ import annotations

import pytest

from loop_backend.errors import ValidationError
from loop_backend.modules.twine.twison import (
    ensure_valid_twison,
    extract_links_from_text,
    repair_twison_story,
    validate_twison_story,
)

MALFORMED_STORIES = [
    None,
    {},
    {"passages": "nope"},
    {"name": "  ", "passages": [None, "text", 3]},
    {
        "name": "Dupes",
        "startnode": "one",
        "passages": [
            {"name": "Room", "text": "[[Hall]]", "tags": "a, b  c"},
            {"name": "Room", "pid": -4, "text": None, "links": "broken"},
            {"name": "", "pid": 2.5, "tags": 7, "links": [{"text": "Back"}, "junk", {}], "metadata": "x"},
        ],
    },
]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("[[Go north->North]]", [("Go north", "North")]),
        ("[[Go north<-North]]", [("Go north", "North")]),
        ("[[Display<-Target]]", [("Display", "Target")]),
        ("[[Go north|North]]", [("Go north", "North")]),
        ("[[North]]", [("North", "North")]),
        ("[[A->B]] and [[C]]", [("A", "B"), ("C", "C")]),
        ("no links here", []),
        ("[[ ->]]", []),
    ],
)
def test_extract_links_from_text_grammar(text: str, expected: list[tuple[str, str]]) -> None:
    links = extract_links_from_text(text)
    assert [(link["name"], link["link"]) for link in links] == expected


def test_repair_fills_gaps_without_inventing_content() -> None:
    story = MALFORMED_STORIES[4]
    repaired = repair_twison_story(story)

    assert [p["name"] for p in repaired["passages"]] == ["Room", "Room-1", "passage-3"]
    assert [p["pid"] for p in repaired["passages"]] == [1, 2, 3]
    assert repaired["startnode"] == 1

    first, second, third = repaired["passages"]
    assert first["tags"] == ["a", "b", "c"]
    assert first["links"] == [{"name": "Hall", "link": "Hall", "text": "Hall"}]
    assert second["text"] == ""
    assert second["links"] == []
    assert third["tags"] == []
    assert third["links"] == [{"text": "Back", "link": "Back", "name": "Back"}]
    assert "metadata" not in third


def test_repair_does_not_mutate_input() -> None:
    story = {"passages": [{"name": "", "text": "[[Next]]"}]}
    repair_twison_story(story)
    assert story == {"passages": [{"name": "", "text": "[[Next]]"}]}


def test_repair_defaults_story_name() -> None:
    assert repair_twison_story({"passages": []})["name"] == "Untitled Twine Story"


@pytest.mark.parametrize("story", MALFORMED_STORIES)
def test_repair_is_idempotent(story) -> None:
    once = repair_twison_story(story)
    assert repair_twison_story(once) == once


def test_validate_rejects_story_without_passages() -> None:
    result = validate_twison_story(repair_twison_story({"name": "Empty", "passages": []}))
    assert not result.ok
    assert result.errors == ["Twine story must include passages."]


def test_validate_collects_every_problem() -> None:
    story = {
        "name": "Broken",
        "passages": [
            {"name": "A", "links": [{"name": "x"}]},
            {"name": "A"},
            {"name": ""},
        ],
    }
    result = validate_twison_story(story)
    assert not result.ok
    assert "Passage 'A' link 1 is missing a target." in result.errors
    assert "Duplicate passage name 'A'. Ensure passage titles are unique." in result.errors
    assert "Passage 3 is missing a name." in result.errors


def test_repaired_story_validates() -> None:
    repaired = repair_twison_story(MALFORMED_STORIES[4])
    assert validate_twison_story(repaired).ok


def test_ensure_valid_twison_raises_validation_error() -> None:
    with pytest.raises(ValidationError) as exc:
        ensure_valid_twison({"passages": []})
    assert "must include passages" in exc.value.message
    assert exc.value.status_code == 400
