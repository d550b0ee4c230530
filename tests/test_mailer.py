from __future__ import annotations

import pytest

from loop_backend.config import Settings
from loop_backend.modules.notify import mailer as mailer_module
from loop_backend.modules.notify.mailer import (
    ApprovalLinks,
    MailMessage,
    SmtpMailer,
    SubmissionContext,
    compose_decision_email,
    compose_submission_email,
)

SMTP_SETTINGS = {
    "smtp_host": "smtp.loop.test",
    "smtp_port": 465,
    "smtp_user": "loop",
    "smtp_password": "secret",
    "mail_from_address": "noreply@loop.test",
    "mail_from_name": "Loop Reviews",
    "admin_approval_email": "review@loop.test",
}


class _RecordingSMTP:
    instances: list["_RecordingSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls: list[str] = []
        self.sent = []
        _RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(f"login:{user}")

    def send_message(self, message):
        self.sent.append(message)


@pytest.fixture
def smtp(monkeypatch):
    _RecordingSMTP.instances = []
    monkeypatch.setattr(mailer_module.smtplib, "SMTP_SSL", _RecordingSMTP)
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", _RecordingSMTP)
    return _RecordingSMTP


def test_unconfigured_mailer_refuses_to_send() -> None:
    smtp_mailer = SmtpMailer(Settings())
    assert not smtp_mailer.is_configured
    with pytest.raises(RuntimeError):
        smtp_mailer.send(MailMessage(to="a@loop.test", subject="s", text="t"))


def test_ssl_delivery_builds_multipart_message(smtp) -> None:
    smtp_mailer = SmtpMailer(Settings(**SMTP_SETTINGS))
    smtp_mailer.send(
        MailMessage(to="review@loop.test", subject="Hello", text="plain", html="<p>rich</p>", reply_to="mira@loop.test")
    )

    (client,) = smtp.instances
    assert (client.host, client.port) == ("smtp.loop.test", 465)
    assert client.calls == ["login:loop"]
    (message,) = client.sent
    assert message["From"] == "Loop Reviews <noreply@loop.test>"
    assert message["Reply-To"] == "mira@loop.test"
    assert message.is_multipart()


def test_plain_smtp_upgrades_with_starttls(smtp) -> None:
    smtp_mailer = SmtpMailer(Settings(**{**SMTP_SETTINGS, "smtp_secure": False, "smtp_port": 587}))
    smtp_mailer.send(MailMessage(to="review@loop.test", subject="Hello", text="plain"))
    assert smtp.instances[0].calls == ["starttls", "login:loop"]


def test_submission_email_escapes_html_and_lists_links() -> None:
    context = SubmissionContext(
        story_title="<Coffee>",
        story_slug="coffee",
        version_id="v-1",
        version_number=2,
        submitter_username="mira",
        submitter_email="mira@loop.test",
        links=ApprovalLinks(approve_url="https://a", reject_url="https://r", preview_url="https://p"),
    )
    message = compose_submission_email("review@loop.test", context)

    assert message.subject == "[Loop] Story submission pending approval: <Coffee>"
    assert "Approve: https://a" in message.text
    assert "&lt;Coffee&gt;" in message.html
    assert "<Coffee>" not in message.html
    assert message.reply_to == "mira@loop.test"


def test_decision_email_wording() -> None:
    approved = compose_decision_email("c@loop.test", story_title="Tale", story_slug="tale", approved=True)
    rejected = compose_decision_email("c@loop.test", story_title="Tale", story_slug="tale", approved=False)
    assert approved.subject == 'Your story "Tale" has been approved'
    assert "was not approved" in rejected.text
