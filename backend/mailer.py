"""Email delivery for alert notifications and digests."""

from email.message import EmailMessage
from email.utils import formataddr
from html import escape
import logging
import os
from pathlib import Path
import smtplib
import ssl

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

TEMPLATE_KINDS = ("immediate", "daily_digest", "weekly_digest")

_SEVERITY_COLORS = {
    "critical": "#b91c1c",
    "high": "#ea580c",
    "medium": "#ca8a04",
    "low": "#2563eb",
}


def _render_immediate(payload: dict) -> tuple[str, str, str]:
    severity = str(payload.get("severity", "medium"))
    title = str(payload.get("title", "SEO alert"))
    message = str(payload.get("message", ""))
    subject = f"[{severity.upper()}] {title}"
    details = payload.get("details") or {}

    text_lines = [title, "", message, ""]
    text_lines.extend(f"{key}: {value}" for key, value in details.items())
    html_rows = "".join(
        f"<tr><td><strong>{escape(str(k))}</strong></td><td>{escape(str(v))}</td></tr>" for k, v in details.items()
    )
    color = _SEVERITY_COLORS.get(severity, "#374151")
    html = (
        f'<div style="font-family:sans-serif">'
        f'<h2 style="color:{color}">{escape(title)}</h2>'
        f"<p>{escape(message)}</p>"
        f"<table>{html_rows}</table>"
        f"</div>"
    )
    return subject, "\n".join(text_lines), html


def _render_digest(kind: str, payload: dict) -> tuple[str, str, str]:
    label = "Daily" if kind == "daily_digest" else "Weekly"
    alerts = payload.get("alerts") or []
    score = payload.get("latest_score")
    keyword_count = payload.get("keyword_count", 0)
    subject = f"Your {label} SEO Summary"

    score_text = f"{score}/100" if score is not None else "no audits yet"
    text_lines = [
        f"{label} SEO summary",
        "",
        f"Latest SEO score: {score_text}",
        f"Tracked keywords: {keyword_count}",
        f"New alerts: {len(alerts)}",
        "",
    ]
    text_lines.extend(f"- [{a.get('severity', '')}] {a.get('title', '')}" for a in alerts)

    items = "".join(
        f"<li><strong>{escape(str(a.get('severity', '')))}</strong> {escape(str(a.get('title', '')))}</li>"
        for a in alerts
    )
    html = (
        f'<div style="font-family:sans-serif">'
        f"<h2>{label} SEO summary</h2>"
        f"<p>Latest SEO score: <strong>{escape(score_text)}</strong></p>"
        f"<p>Tracked keywords: {keyword_count}</p>"
        f"<p>New alerts: {len(alerts)}</p>"
        f"<ul>{items}</ul>"
        f"</div>"
    )
    return subject, "\n".join(text_lines), html


def render(template_kind: str, payload: dict) -> tuple[str, str, str]:
    """Return (subject, text body, html body) for a template."""
    if template_kind == "immediate":
        return _render_immediate(payload)
    if template_kind in ("daily_digest", "weekly_digest"):
        return _render_digest(template_kind, payload)
    raise ValueError(f"Unknown template kind: {template_kind}")


def send_notification(address: str, template_kind: str, payload: dict) -> bool:
    """Deliver one notification. Failures are logged and reported as False."""
    smtp_host = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port = int(os.getenv("SMTP_PORT", "465"))
    smtp_username = os.getenv("SMTP_USERNAME", "").strip()
    smtp_password = os.getenv("SMTP_PASSWORD", "").strip()
    smtp_from_email = os.getenv("SMTP_FROM_EMAIL", smtp_username).strip()
    smtp_from_name = os.getenv("SMTP_FROM_NAME", "SEO Monitor").strip() or "SEO Monitor"

    missing_keys = []
    if not smtp_username:
        missing_keys.append("SMTP_USERNAME")
    if not smtp_password:
        missing_keys.append("SMTP_PASSWORD")
    if not smtp_from_email:
        missing_keys.append("SMTP_FROM_EMAIL")
    if missing_keys:
        logger.warning("Email skipped: missing SMTP credentials: %s", ", ".join(missing_keys))
        return False

    try:
        subject, text_body, html_body = render(template_kind, payload)
    except ValueError as e:
        logger.warning("Email skipped for %s: %s", address, e)
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((smtp_from_name, smtp_from_email))
    message["To"] = address
    message.set_content(text_body)
    message.add_alternative(html_body, subtype="html")

    try:
        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(smtp_host, smtp_port, context=context, timeout=30) as smtp:
            smtp.login(smtp_username, smtp_password)
            smtp.send_message(message)
        logger.info("Email sent: %s (%s)", address, template_kind)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Email error for %s: %s", address, e)
        return False
