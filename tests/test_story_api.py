from __future__ import annotations

import json

from fastapi.testclient import TestClient

from loop_backend.config import settings
from loop_backend.db.models import ROLE_ADMIN, ROLE_PLAYER, AvatarProfile, Story, StoryVersion
from loop_backend.main import app
from tests.support.story_seed import auth_headers, count_rows, create_user, load_story, story_payload
from tests.support.twine_samples import COFFEE_SHOP_HTML, coffee_shop_json_bytes


def _import(client: TestClient, headers: dict, filename: str, data: bytes, overrides: dict | None = None):
    form = {"overrides": json.dumps(overrides)} if overrides is not None else None
    return client.post("/creator/import", headers=headers, files={"twineFile": (filename, data)}, data=form)


def test_health() -> None:
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_import_twison_json_creates_private_story_and_avatar() -> None:
    creator = create_user("mira")
    client = TestClient(app)

    resp = _import(client, auth_headers(creator), "coffee.json", coffee_shop_json_bytes())
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["slug"] == "coffee-shop-dilemma"
    assert body["title"] == "Coffee Shop Dilemma"
    assert (body["nodes"], body["paths"], body["droppedTransitions"]) == (2, 1, 0)

    story = load_story("coffee-shop-dilemma")
    assert str(story.id) == body["storyId"]
    assert story.visibility == "PRIVATE"
    assert count_rows(AvatarProfile, AvatarProfile.story_id == story.id, AvatarProfile.is_playable.is_(False)) == 1


def test_import_html_with_overrides() -> None:
    creator = create_user("mira")
    client = TestClient(app)

    resp = _import(
        client,
        auth_headers(creator),
        "coffee.html",
        COFFEE_SHOP_HTML.encode("utf-8"),
        overrides={"slug": "cafe-choices", "title": "Cafe Choices", "visibility": "PUBLIC"},
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["nodes"] == 4
    story = load_story("cafe-choices")
    assert story.title == "Cafe Choices"
    assert story.visibility == "PRIVATE"


def test_import_single_passage_story_without_links() -> None:
    creator = create_user("mira")
    client = TestClient(app)
    markup = (
        '<tw-storydata name="Solo" startnode="1">'
        '<tw-passagedata pid="1" name="Only">The end.</tw-passagedata>'
        "</tw-storydata>"
    )

    resp = _import(client, auth_headers(creator), "solo.html", markup.encode("utf-8"))
    assert resp.status_code == 201, resp.text
    assert (resp.json()["nodes"], resp.json()["paths"]) == (1, 0)

    graph = client.get("/stories/solo/graph").json()
    assert [node["type"] for node in graph["nodes"]] == ["RESOLUTION"]
    assert graph["transitions"] == []


def test_import_without_passages_creates_nothing() -> None:
    creator = create_user("mira")
    client = TestClient(app)

    resp = _import(client, auth_headers(creator), "empty.json", json.dumps({"name": "Empty", "passages": []}).encode())
    assert resp.status_code == 400
    assert "must include passages" in resp.json()["detail"]["message"]
    assert count_rows(Story) == 0
    assert count_rows(StoryVersion) == 0


def test_import_rejects_taken_slug() -> None:
    creator = create_user("mira")
    client = TestClient(app)
    headers = auth_headers(creator)

    assert _import(client, headers, "coffee.json", coffee_shop_json_bytes()).status_code == 201
    again = _import(client, headers, "coffee.json", coffee_shop_json_bytes())
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "STORY_SLUG_TAKEN"


def test_import_guards() -> None:
    client = TestClient(app)
    assert _import(client, {}, "coffee.json", coffee_shop_json_bytes()).status_code == 401

    player = create_user("pat", role=ROLE_PLAYER)
    assert _import(client, auth_headers(player), "coffee.json", coffee_shop_json_bytes()).status_code == 403

    creator = create_user("mira")
    bad_type = _import(client, auth_headers(creator), "coffee.txt", b"hello")
    assert bad_type.status_code == 400
    assert bad_type.json()["detail"]["code"] == "TWINE_PARSE_ERROR"

    bad_overrides = client.post(
        "/creator/import",
        headers=auth_headers(creator),
        files={"twineFile": ("coffee.json", coffee_shop_json_bytes())},
        data={"overrides": "{not json"},
    )
    assert bad_overrides.status_code == 400
    assert bad_overrides.json()["detail"]["code"] == "INVALID_OVERRIDES"


def test_import_rejects_oversized_upload() -> None:
    settings.import_max_bytes = 64
    creator = create_user("mira")
    resp = _import(TestClient(app), auth_headers(creator), "coffee.json", coffee_shop_json_bytes())
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "IMPORT_TOO_LARGE"


def test_invalid_bearer_token_is_unauthorized() -> None:
    resp = TestClient(app).get("/creator/stories", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "INVALID_TOKEN"


def test_story_crud_round() -> None:
    creator = create_user("mira")
    headers = auth_headers(creator)
    client = TestClient(app)

    created = client.post("/creator/stories", headers=headers, json=story_payload())
    assert created.status_code == 201, created.text
    story_id = created.json()["storyId"]
    assert created.json()["pendingUpdateEmail"] is None

    listed = client.get("/creator/stories", headers=headers)
    assert listed.status_code == 200
    assert [s["slug"] for s in listed.json()["stories"]] == ["coffee-shop-dilemma"]

    updated = client.put(
        "/creator/stories",
        headers=headers,
        json={**story_payload(title="Coffee Shop Dilemma (revised)"), "storyId": story_id},
    )
    assert updated.status_code == 200, updated.text
    assert load_story("coffee-shop-dilemma").title == "Coffee Shop Dilemma (revised)"

    graph = client.get("/stories/coffee-shop-dilemma/graph")
    assert graph.status_code == 200
    assert [node["key"] for node in graph.json()["nodes"]] == ["start", "end"]
    assert graph.json()["transitions"] == [
        {"from": "start", "to": "end", "path": "order", "ordering": 0, "condition": None, "effect": None}
    ]

    deleted = client.delete("/creator/stories", headers=headers, params={"slug": "coffee-shop-dilemma"})
    assert deleted.status_code == 204
    assert client.get("/stories/coffee-shop-dilemma/graph").status_code == 404


def test_story_payload_validation_errors_stay_422() -> None:
    creator = create_user("mira")
    resp = TestClient(app).post(
        "/creator/stories",
        headers=auth_headers(creator),
        json=story_payload(slug="Not A Slug!"),
    )
    assert resp.status_code == 422


def test_admin_can_make_story_private() -> None:
    creator = create_user("mira")
    admin = create_user("root", role=ROLE_ADMIN)
    client = TestClient(app)
    client.post("/creator/stories", headers=auth_headers(admin), json=story_payload(visibility="PUBLIC"))
    assert load_story("coffee-shop-dilemma").visibility == "PUBLIC"

    forbidden = client.patch("/admin/stories/private", headers=auth_headers(creator), json={"slug": "coffee-shop-dilemma"})
    assert forbidden.status_code == 403

    resp = client.patch("/admin/stories/private", headers=auth_headers(admin), json={"slug": "coffee-shop-dilemma"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "slug": "coffee-shop-dilemma", "visibility": "PRIVATE"}
    assert load_story("coffee-shop-dilemma").visibility == "PRIVATE"
