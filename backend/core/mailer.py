import logging

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from core.config import settings

logger = logging.getLogger(__name__)


def _connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        MAIL_USERNAME=settings.mail_username,
        MAIL_PASSWORD=settings.mail_password,
        MAIL_FROM=settings.mail_from,
        MAIL_FROM_NAME=settings.mail_from_name,
        MAIL_PORT=settings.mail_port,
        MAIL_SERVER=settings.mail_server,
        MAIL_STARTTLS=settings.mail_starttls,
        MAIL_SSL_TLS=settings.mail_ssl_tls,
        USE_CREDENTIALS=bool(settings.mail_username),
        VALIDATE_CERTS=True,
        SUPPRESS_SEND=1 if settings.mail_suppress_send else 0,
    )


fast_mail = FastMail(_connection_config())


async def send_mail(to: str, subject: str, html: str) -> None:
    message = MessageSchema(
        subject=subject,
        recipients=[to],
        body=html,
        subtype=MessageType.html,
    )
    await fast_mail.send_message(message)
    logger.info("Sent '%s' mail to %s", subject, to)


async def send_login_code(to: str, code: str) -> None:
    html = (
        "<h3>Your Nexus sign-in code</h3>"
        f"<p><strong>{code}</strong> (valid for {settings.otp_ttl_minutes} minutes)</p>"
    )
    await send_mail(to, "Your sign-in code", html)


async def send_magic_link(to: str, link: str) -> None:
    html = (
        "<h3>Sign in to Nexus</h3>"
        f'<p><a href="{link}">Click here to sign in</a>. '
        f"The link expires in {settings.magic_link_ttl_minutes} minutes and works once.</p>"
    )
    await send_mail(to, "Your sign-in link", html)


async def send_pin_reset(to: str, link: str) -> None:
    html = (
        "<h3>Reset your inventory PIN</h3>"
        f'<p><a href="{link}">Choose a new PIN</a>. '
        f"The link expires in {settings.pin_reset_ttl_minutes} minutes.</p>"
    )
    await send_mail(to, "Reset your inventory PIN", html)


async def send_password_reset(to: str, link: str) -> None:
    html = f'<h3>Reset your password</h3><p><a href="{link}">Choose a new password</a>.</p>'
    await send_mail(to, "Reset your password", html)
