import logging
import uuid
from typing import Optional, Union

from fastapi import Depends, Request
from fastapi_users import BaseUserManager, FastAPIUsers, InvalidPasswordException, UUIDIDMixin
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase
from httpx_oauth.clients.google import GoogleOAuth2
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core import mailer
from core.config import settings
from db.company import Company, slugify
from db.database import get_async_session, utcnow
from db.users import User, OAuthAccount
from schemas.users import UserCreate

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


async def unique_company_slug(session: AsyncSession, name: str) -> str:
    base = slugify(name) or "company"
    slug = base
    suffix = 2
    while (await session.execute(select(Company.id).where(Company.slug == slug))).first():
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.secret_key
    verification_token_secret = settings.secret_key

    async def validate_password(self, password: str, user: Union[UserCreate, User]) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(
                reason=f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if user.email and user.email.split("@")[0].lower() in password.lower():
            raise InvalidPasswordException(reason="Password should not contain e-mail")

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        # OAuth sign-ups arrive without a company: give them their own tenant.
        if user.company_id is None:
            session = self.user_db.session
            domain = user.email.split("@")[-1]
            company = Company(
                name=domain,
                slug=await unique_company_slug(session, domain),
                email=user.email,
            )
            session.add(company)
            await session.flush()
            await self.user_db.update(user, {"company_id": company.id, "role": "admin"})
        logger.info("User %s registered (company %s)", user.id, user.company_id)

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        await self.user_db.update(user, {"last_login_at": utcnow()})

    async def on_after_forgot_password(self, user: User, token: str, request: Optional[Request] = None):
        link = f"{settings.frontend_url}/reset-password?token={token}"
        await mailer.send_password_reset(user.email, link)

    async def on_after_request_verify(self, user: User, token: str, request: Optional[Request] = None):
        link = f"{settings.frontend_url}/verify?token={token}"
        await mailer.send_mail(user.email, "Verify your e-mail", f'<p><a href="{link}">Verify</a></p>')


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield SQLAlchemyUserDatabase(session, User, OAuthAccount)


async def get_user_manager(user_db: SQLAlchemyUserDatabase = Depends(get_user_db)):
    yield UserManager(user_db)


bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=settings.secret_key, lifetime_seconds=settings.jwt_lifetime_seconds)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

current_active_user = fastapi_users.current_user(active=True)
current_active_superuser = fastapi_users.current_user(active=True, superuser=True)

google_oauth_client = (
    GoogleOAuth2(settings.google_client_id, settings.google_client_secret)
    if settings.google_client_id
    else None
)


async def issue_access_token(user: User) -> dict:
    """Bearer token for flows that authenticate outside /auth/jwt/login."""
    token = await get_jwt_strategy().write_token(user)
    return {"access_token": token, "token_type": "bearer"}
