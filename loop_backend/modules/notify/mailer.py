from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol
from urllib.parse import quote, urlencode

from loop_backend.config import Settings, mailer_settings_complete, settings

logger = logging.getLogger(__name__)

MAILER_MISSING_MESSAGE = (
    "Mailer configuration missing. Set SMTP_HOST/PORT/USER/PASSWORD, MAIL_FROM_ADDRESS, "
    "ADMIN_APPROVAL_EMAIL, and APP_BASE_URL to enable email notifications."
)
DECISION_PATH = "/creator/stories/publish/decision"
REVIEW_PATH = "/review/version"

_BUTTON_STYLE = (
    "margin-right:16px;display:inline-block;padding:10px 18px;background:{color};"
    "color:#fff;text-decoration:none;border-radius:8px;"
)


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None


class Mailer(Protocol):
    @property
    def is_configured(self) -> bool:
        ...

    @property
    def admin_address(self) -> str:
        ...

    def send(self, message: MailMessage) -> None:
        ...


class SmtpMailer:
    """SMTP delivery; SSL when ``smtp_secure`` is set, STARTTLS otherwise."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings

    @property
    def is_configured(self) -> bool:
        return mailer_settings_complete(self._cfg)

    @property
    def admin_address(self) -> str:
        return str(self._cfg.admin_approval_email or "").strip()

    def _from_header(self) -> str:
        if self._cfg.mail_from_name:
            return formataddr((self._cfg.mail_from_name, self._cfg.mail_from_address))
        return self._cfg.mail_from_address

    def _build(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self._from_header()
        email["To"] = message.to
        email["Subject"] = message.subject
        if message.reply_to:
            email["Reply-To"] = message.reply_to
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    def send(self, message: MailMessage) -> None:
        if not self.is_configured:
            raise RuntimeError("SMTP configuration is missing.")
        cfg = self._cfg
        email = self._build(message)
        if cfg.smtp_secure:
            with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_s) as client:
                client.login(cfg.smtp_user, cfg.smtp_password)
                client.send_message(email)
            return
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_s) as client:
            client.starttls()
            client.login(cfg.smtp_user, cfg.smtp_password)
            client.send_message(email)


def get_mailer() -> Mailer:
    return SmtpMailer(settings)


@dataclass(frozen=True)
class ApprovalLinks:
    approve_url: str | None = None
    reject_url: str | None = None
    preview_url: str | None = None


def build_story_approval_links(version_id: str, token: str, *, base_url: str | None = None) -> ApprovalLinks:
    base = str(base_url if base_url is not None else settings.app_base_url or "").rstrip("/")
    if not base:
        return ApprovalLinks()
    query = urlencode({"versionId": version_id, "token": token})
    return ApprovalLinks(
        approve_url=f"{base}{DECISION_PATH}?{query}&decision=approve",
        reject_url=f"{base}{DECISION_PATH}?{query}&decision=reject",
        preview_url=f"{base}{REVIEW_PATH}/{quote(version_id)}?token={quote(token)}",
    )


@dataclass(frozen=True)
class SubmissionContext:
    story_title: str
    story_slug: str
    version_id: str
    version_number: int
    submitter_username: str | None = None
    submitter_email: str | None = None
    links: ApprovalLinks = ApprovalLinks()
    previous_version_number: int | None = None

    @property
    def submitter_label(self) -> str:
        return self.submitter_username or self.submitter_email or "A creator"


def _link_lines(links: ApprovalLinks) -> list[str]:
    lines = []
    if links.preview_url:
        lines.append(f"Preview: {links.preview_url}")
    if links.approve_url:
        lines.append(f"Approve: {links.approve_url}")
    if links.reject_url:
        lines.append(f"Reject: {links.reject_url}")
    return lines


def _link_html(links: ApprovalLinks) -> str:
    parts = []
    if links.preview_url:
        parts.append(f'<p><a href="{html.escape(links.preview_url)}">Preview this story</a></p>')
    buttons = []
    if links.approve_url:
        style = _BUTTON_STYLE.format(color="#22c55e")
        buttons.append(f'<a href="{html.escape(links.approve_url)}" style="{style}">Approve</a>')
    if links.reject_url:
        style = _BUTTON_STYLE.format(color="#ef4444")
        buttons.append(f'<a href="{html.escape(links.reject_url)}" style="{style}">Reject</a>')
    if buttons:
        parts.append(f"<p>{''.join(buttons)}</p>")
    return "\n".join(parts)


def compose_submission_email(to: str, ctx: SubmissionContext) -> MailMessage:
    title = html.escape(ctx.story_title)
    slug = html.escape(ctx.story_slug)
    label = html.escape(ctx.submitter_label)
    text = "\n".join(
        [
            f'{ctx.submitter_label} submitted "{ctx.story_title}" (slug: {ctx.story_slug}) for approval.',
            f"Version: {ctx.version_number} (ID: {ctx.version_id}).",
            *_link_lines(ctx.links),
        ]
    )
    body = "\n".join(
        [
            f"<p>{label} submitted <strong>{title}</strong> (slug: <code>{slug}</code>) for review.</p>",
            f"<p>Version: <strong>{ctx.version_number}</strong> (ID: <code>{ctx.version_id}</code>).</p>",
            _link_html(ctx.links),
        ]
    )
    return MailMessage(
        to=to,
        subject=f"[Loop] Story submission pending approval: {ctx.story_title}",
        text=text,
        html=body,
        reply_to=ctx.submitter_email,
    )


def compose_pending_update_email(to: str, ctx: SubmissionContext) -> MailMessage:
    title = html.escape(ctx.story_title)
    slug = html.escape(ctx.story_slug)
    label = html.escape(ctx.submitter_label)
    text_lines = [
        f'{ctx.submitter_label} updated "{ctx.story_title}" (slug: {ctx.story_slug}) while it awaits approval.',
        f"Pending version: {ctx.version_number} (ID: {ctx.version_id}).",
    ]
    html_lines = [
        f"<p>{label} updated <strong>{title}</strong> (slug: <code>{slug}</code>) while it awaits review.</p>",
        f"<p>Pending version: <strong>{ctx.version_number}</strong> (ID: <code>{ctx.version_id}</code>).</p>",
    ]
    return MailMessage(
        to=to,
        subject=f"[Loop] Pending story updated: {ctx.story_title}",
        text="\n".join([*text_lines, *_link_lines(ctx.links)]),
        html="\n".join([*html_lines, _link_html(ctx.links)]),
        reply_to=ctx.submitter_email,
    )


def compose_decision_email(to: str, *, story_title: str, story_slug: str, approved: bool) -> MailMessage:
    if approved:
        subject = f'Your story "{story_title}" has been approved'
        text = (
            f'Congratulations! Your story "{story_title}" (slug: {story_slug}) has been approved '
            "and is now live on the platform."
        )
    else:
        subject = f'Your story "{story_title}" has been rejected'
        text = (
            f'We\'re sorry, but your story "{story_title}" (slug: {story_slug}) was not approved. '
            "Please review any feedback and try again."
        )
    return MailMessage(to=to, subject=subject, text=text)
