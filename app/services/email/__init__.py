import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

import certifi
import requests

from app.services.scheduler import get_queue
from app.utils.config import settings


logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailDeliveryError(Exception):
    pass


@dataclass
class EmailTemplate:
    subject: str
    text: str
    html: str


def otp_template(code: str, institution: str | None) -> EmailTemplate:
    minutes = settings.otp_expiry_minutes
    school = institution or "your college"
    return EmailTemplate(
        subject=f"Your {settings.app_name} Verification Code: {code}",
        text=(
            f"Welcome to {settings.app_name}!\n\n"
            f"Your verification code is: {code}\n\n"
            f"This code will expire in {minutes} minutes.\n"
            f"Signing in from {school}. If you didn't request this code, ignore this email.\n\n"
            f"Need help? Contact us at {settings.email_support}"
        ),
        html=(
            f"<h2>{settings.app_name}</h2>"
            f"<p>Your verification code for {school} is:</p>"
            f"<p style=\"font-size:32px;font-weight:bold;letter-spacing:8px\">{code}</p>"
            f"<p>Valid for {minutes} minutes.</p>"
            f"<p>If you didn't request this code, ignore this email.</p>"
        ),
    )


def magic_link_template(link: str, institution: str | None) -> EmailTemplate:
    school = institution or "your college"
    return EmailTemplate(
        subject=f"Your {settings.app_name} sign-in link",
        text=(
            f"Sign in to {settings.app_name} with your {school} account:\n\n"
            f"{link}\n\n"
            f"This link can be used once and expires in {settings.magic_link_expires_in}."
        ),
        html=(
            f"<h2>{settings.app_name}</h2>"
            f"<p>Sign in with your {school} account:</p>"
            f"<p><a href=\"{link}\">Sign in to {settings.app_name}</a></p>"
            f"<p>This link can be used once and expires in {settings.magic_link_expires_in}.</p>"
        ),
    )


def _sender() -> str:
    return f"{settings.email_from_name} <{settings.email_from}>"


def _send_console(to: str, template: EmailTemplate) -> None:
    logger.info("Email (console) to=%s subject=%s\n%s", to, template.subject, template.text)


def _send_smtp(to: str, template: EmailTemplate) -> None:
    message = EmailMessage()
    message["From"] = _sender()
    message["To"] = to
    message["Subject"] = template.subject
    message.set_content(template.text)
    message.add_alternative(template.html, subtype="html")

    context = ssl.create_default_context(cafile=certifi.where())
    timeout = settings.email_timeout_seconds
    try:
        if settings.smtp_secure:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=timeout, context=context)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout)
        with server:
            if not settings.smtp_secure:
                server.starttls(context=context)
            if settings.smtp_user:
                server.login(settings.smtp_user, settings.smtp_pass or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"SMTP delivery to {to} failed: {exc}") from exc


def _post(url: str, api_key: str | None, payload: dict, provider: str) -> None:
    if not api_key:
        raise EmailDeliveryError(f"{provider} API key is not configured")
    try:
        response = requests.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=settings.email_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise EmailDeliveryError(f"{provider} request failed: {exc}") from exc

    if response.status_code >= 300:
        logger.error("%s error (%s): %s", provider, response.status_code, response.text[:500])
        raise EmailDeliveryError(f"{provider} error ({response.status_code})")


def _send_resend(to: str, template: EmailTemplate) -> None:
    _post(
        RESEND_URL,
        settings.resend_api_key,
        {"from": _sender(), "to": [to], "subject": template.subject, "text": template.text, "html": template.html},
        "Resend",
    )


def _send_sendgrid(to: str, template: EmailTemplate) -> None:
    _post(
        SENDGRID_URL,
        settings.sendgrid_api_key,
        {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": settings.email_from, "name": settings.email_from_name},
            "subject": template.subject,
            "content": [
                {"type": "text/plain", "value": template.text},
                {"type": "text/html", "value": template.html},
            ],
        },
        "SendGrid",
    )


PROVIDERS = {
    "console": _send_console,
    "smtp": _send_smtp,
    "resend": _send_resend,
    "sendgrid": _send_sendgrid,
}


def send_email(to: str, template: EmailTemplate) -> None:
    provider = (settings.email_service or "console").lower()
    sender = PROVIDERS.get(provider)
    if sender is None:
        raise EmailDeliveryError(f"Unknown email service '{provider}'")
    sender(to, template)
    logger.info("Email sent via %s to %s", provider, to)


def send_otp_email(email: str, code: str, institution: str | None = None) -> None:
    send_email(email, otp_template(code, institution))


def send_magic_link_email(email: str, link: str, institution: str | None = None) -> None:
    send_email(email, magic_link_template(link, institution))


def _dispatch(func, *args) -> None:
    """Send inline or enqueue on the emails queue; delivery failures never propagate."""
    if settings.email_async:
        get_queue("emails").enqueue(func, *args)
        return
    try:
        func(*args)
    except EmailDeliveryError as exc:
        logger.warning("Email delivery to %s failed: %s", args[0], exc)


def dispatch_otp_email(email: str, code: str, institution: str | None = None) -> None:
    _dispatch(send_otp_email, email, code, institution)


def dispatch_magic_link_email(email: str, link: str, institution: str | None = None) -> None:
    _dispatch(send_magic_link_email, email, link, institution)
