from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy import select

from loop_backend.db import session as db_session
from loop_backend.db.models import ROLE_ADMIN, Story
from loop_backend.main import app
from loop_backend.modules.notify.mailer import build_story_approval_links
from loop_backend.utils.time import utc_now_naive
from tests.support.fake_mailer import FakeMailer
from tests.support.story_seed import auth_headers, create_user, load_story, load_version, seed_story


def _submitted(client: TestClient) -> tuple[str, str]:
    creator = create_user("mira")
    seed_story(creator)
    resp = client.post(
        "/creator/stories/publish",
        headers=auth_headers(creator),
        json={"slug": "coffee-shop-dilemma", "ownershipAcknowledgement": {"transfer": True, "contact": True}},
    )
    assert resp.status_code == 201, resp.text
    version_id = resp.json()["versionId"]
    return version_id, load_version(version_id).version_metadata["approvalToken"]


def test_approval_links_point_at_decision_and_preview() -> None:
    links = build_story_approval_links("v-1", "tok en", base_url="https://loop.example/")
    assert links.approve_url == "https://loop.example/creator/stories/publish/decision?versionId=v-1&token=tok+en&decision=approve"
    assert links.reject_url.endswith("&decision=reject")
    assert links.preview_url == "https://loop.example/review/version/v-1?token=tok%20en"


def test_approval_links_need_a_base_url() -> None:
    links = build_story_approval_links("v-1", "tok", base_url="")
    assert (links.approve_url, links.reject_url, links.preview_url) == (None, None, None)


def test_email_link_approves_with_html_panel(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, token = _submitted(client)

    resp = client.get(
        "/creator/stories/publish/decision",
        params={"versionId": version_id, "token": token, "decision": "approve"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "no-store" in resp.headers["cache-control"]
    assert "version 1 is now approved." in resp.text
    assert load_story("coffee-shop-dilemma").visibility == "PUBLIC"

    reused = client.get(
        "/creator/stories/publish/decision",
        params={"versionId": version_id, "token": token, "decision": "reject"},
    )
    assert reused.status_code == 403
    assert load_version(version_id).status == "APPROVED"


def test_email_link_with_wrong_token_changes_nothing(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, _ = _submitted(client)
    before = load_story("coffee-shop-dilemma")

    resp = client.get(
        "/creator/stories/publish/decision",
        params={"versionId": version_id, "token": "not-the-token", "decision": "approve"},
    )

    assert resp.status_code == 403
    assert "no longer valid" in resp.text
    after = load_story("coffee-shop-dilemma")
    assert load_version(version_id).status == "PENDING"
    assert after.visibility == before.visibility == "PRIVATE"
    assert after.ownership_status == before.ownership_status == "PENDING_TRANSFER"
    assert after.approval_token == before.approval_token


def test_email_link_rejects_malformed_queries(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, token = _submitted(client)

    bad_id = client.get("/creator/stories/publish/decision", params={"versionId": "nope", "token": token})
    assert bad_id.status_code == 400
    assert "Approval link is invalid." in bad_id.text

    bad_decision = client.get(
        "/creator/stories/publish/decision",
        params={"versionId": version_id, "token": token, "decision": "maybe"},
    )
    assert bad_decision.status_code == 400
    assert load_version(version_id).status == "PENDING"


def test_email_link_reject(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, token = _submitted(client)

    resp = client.get(
        "/creator/stories/publish/decision",
        params={"versionId": version_id, "token": token, "decision": "reject", "notes": "Too short"},
    )
    assert resp.status_code == 200
    assert "is now rejected." in resp.text
    story = load_story("coffee-shop-dilemma")
    assert story.ownership_status == "RETURNED"
    assert story.review_comment == "Too short"
    assert "has been rejected" in mailer.sent[-1].subject


def test_preview_hides_token_and_requires_access(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, token = _submitted(client)

    resp = client.get(f"/review/version/{version_id}", params={"token": token})
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"]["versionNumber"] == 1
    assert "approvalToken" not in body["version"]["metadata"]
    assert token not in resp.text
    assert body["story"]["slug"] == "coffee-shop-dilemma"
    assert body["author"]["username"] == "mira"

    assert client.get(f"/review/version/{version_id}", params={"token": "wrong"}).status_code == 403
    assert client.get(f"/review/version/{version_id}").status_code == 403

    admin = create_user("root", role=ROLE_ADMIN)
    assert client.get(f"/review/version/{version_id}", headers=auth_headers(admin)).status_code == 200


def test_preview_refuses_expired_token(mailer: FakeMailer) -> None:
    client = TestClient(app)
    version_id, token = _submitted(client)
    with db_session.SessionLocal() as db:
        with db.begin():
            story = db.execute(select(Story).where(Story.slug == "coffee-shop-dilemma")).scalar_one()
            story.approval_token_expires_at = utc_now_naive() - timedelta(days=1)

    resp = client.get(f"/review/version/{version_id}", params={"token": token})
    assert resp.status_code == 403
    assert resp.json()["detail"]["message"] == "This approval link is no longer valid or you lack permission."
