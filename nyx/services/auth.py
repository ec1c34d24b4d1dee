from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..errors import Conflict, NotAuthenticated, NotAuthorized, ValidationFailed
from ..models import AuthSession, User, utcnow
from ..schemas import AuthUser, SessionInfo, SessionOut, SignInIn, SignUpIn, auth_user_view
from ..settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "nyx_oauth_state"


# --------- Passwords ---------

def hash_password(password: str, salt: Optional[str] = None) -> str:
    iterations = get_settings().password_hash_iterations
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        scheme, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# --------- Sessions ---------

def session_view(user: User, auth_session: AuthSession) -> SessionOut:
    return SessionOut(
        user=auth_user_view(user),
        session=SessionInfo(
            id=auth_session.id,
            token=auth_session.token,
            created_at=auth_session.created_at,
            expires_at=auth_session.expires_at,
        ),
    )


async def start_session(session: AsyncSession, user: User) -> AuthSession:
    settings = get_settings()
    now = utcnow()
    auth_session = AuthSession(
        token=secrets.token_urlsafe(32),
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(days=settings.session_ttl_days),
    )
    session.add(auth_session)
    await session.commit()
    await session.refresh(auth_session)
    return auth_session


async def resolve_session(session: AsyncSession, token: Optional[str]) -> Optional[Tuple[User, AuthSession]]:
    """Look up a live session by token. Expired sessions are removed."""
    if not token:
        return None
    result = await session.exec(select(AuthSession).where(AuthSession.token == token))
    auth_session = result.first()
    if auth_session is None:
        return None
    if auth_session.expires_at <= utcnow():
        await session.delete(auth_session)
        await session.commit()
        logger.info("auth: dropped expired session %s", auth_session.id)
        return None
    user = await session.get(User, auth_session.user_id)
    if user is None:
        return None
    return user, auth_session


async def find_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.exec(select(User).where(User.email == email.lower()))
    return result.first()


async def sign_up_email(session: AsyncSession, payload: SignUpIn) -> SessionOut:
    if await find_user_by_email(session, payload.email) is not None:
        raise Conflict("Email already registered")
    user = User(
        name=payload.name.strip(),
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("auth: signed up user %s", user.id)
    return session_view(user, await start_session(session, user))


async def sign_in_email(session: AsyncSession, payload: SignInIn) -> SessionOut:
    user = await find_user_by_email(session, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("auth: rejected email sign-in")
        raise NotAuthenticated("Invalid email or password")
    return session_view(user, await start_session(session, user))


async def sign_out(session: AsyncSession, token: Optional[str]) -> bool:
    resolved = await resolve_session(session, token)
    if resolved is None:
        return False
    await session.delete(resolved[1])
    await session.commit()
    return True


# --------- Google ---------

class GoogleProfile(BaseModel):
    sub: str
    email: str
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None


class GoogleClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self.redirect_uri = settings.google_redirect_uri or f"{settings.public_base_url.rstrip('/')}/api/auth/callback/google"
        self._settings = settings
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=30.0,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def close(self) -> None:
        await self._client.aclose()

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return str(httpx.URL(self._settings.google_auth_url, params=params))

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        resp = await self._client.post(
            self._settings.google_token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            },
        )
        if resp.status_code >= 400:
            logger.warning("auth: google token exchange failed status=%s", resp.status_code)
            raise NotAuthenticated("Google sign-in failed")
        return resp.json()

    async def fetch_profile(self, access_token: str) -> GoogleProfile:
        resp = await self._client.get(
            self._settings.google_userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if resp.status_code >= 400:
            logger.warning("auth: google userinfo failed status=%s", resp.status_code)
            raise NotAuthenticated("Google sign-in failed")
        return GoogleProfile.model_validate(resp.json())


async def get_google_client() -> AsyncIterator[GoogleClient]:
    client = GoogleClient()
    try:
        yield client
    finally:
        await client.close()


async def link_google_user(session: AsyncSession, profile: GoogleProfile) -> User:
    """Find the user for a Google account, linking by verified email or creating one."""
    result = await session.exec(select(User).where(User.google_sub == profile.sub))
    user = result.first()
    if user is None:
        user = await find_user_by_email(session, profile.email)
        if user is not None and not profile.email_verified:
            logger.warning("auth: refused to link unverified google email to user %s", user.id)
            raise NotAuthenticated("Google account email is not verified")
    if user is None:
        user = User(
            name=profile.name or profile.email.split("@")[0],
            email=profile.email.lower(),
            image=profile.picture,
            google_sub=profile.sub,
        )
        logger.info("auth: created user from google account")
    else:
        user.google_sub = profile.sub
        if not user.image and profile.picture:
            user.image = profile.picture
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


# --------- Identity ---------

def session_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(get_settings().cookie_name)


async def current_identity(
    request: Request, session: AsyncSession = Depends(session_dependency)
) -> Optional[AuthUser]:
    resolved = await resolve_session(session, session_token(request))
    if resolved is None:
        return None
    return auth_user_view(resolved[0])


def require_identity(identity: Optional[AuthUser]) -> AuthUser:
    if identity is None:
        raise NotAuthenticated()
    return identity


def _set_session_cookie(response: Response, out: SessionOut) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.cookie_name,
        out.session.token,
        httponly=True,
        samesite="lax",
        max_age=settings.session_ttl_days * 86400,
    )


# --------- Routes ---------

@router.post("/sign-up/email", response_model=SessionOut)
async def sign_up_route(
    payload: SignUpIn, response: Response, session: AsyncSession = Depends(session_dependency)
) -> SessionOut:
    out = await sign_up_email(session, payload)
    _set_session_cookie(response, out)
    return out


@router.post("/sign-in/email", response_model=SessionOut)
async def sign_in_route(
    payload: SignInIn, response: Response, session: AsyncSession = Depends(session_dependency)
) -> SessionOut:
    out = await sign_in_email(session, payload)
    _set_session_cookie(response, out)
    return out


@router.get("/sign-in/google")
async def google_sign_in(google: GoogleClient = Depends(get_google_client)) -> RedirectResponse:
    if not google.configured:
        raise ValidationFailed("Google sign-in is not configured")
    state = secrets.token_urlsafe(24)
    response = RedirectResponse(url=google.authorization_url(state))
    response.set_cookie(STATE_COOKIE, state, httponly=True, samesite="lax")
    return response


@router.get("/callback/google")
async def google_callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    google: GoogleClient = Depends(get_google_client),
    session: AsyncSession = Depends(session_dependency),
) -> RedirectResponse:
    expected_state = request.cookies.get(STATE_COOKIE, "")
    if not expected_state or not hmac.compare_digest(state, expected_state):
        raise NotAuthorized("Invalid OAuth state")
    tokens = await google.exchange_code(code)
    access_token = tokens.get("access_token")
    if not access_token:
        raise NotAuthenticated("Google sign-in failed")
    profile = await google.fetch_profile(access_token)
    user = await link_google_user(session, profile)
    out = session_view(user, await start_session(session, user))

    response = RedirectResponse(url=get_settings().app_url, status_code=303)
    _set_session_cookie(response, out)
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get("/session", response_model=Optional[SessionOut])
async def get_session_route(
    request: Request, session: AsyncSession = Depends(session_dependency)
) -> Optional[SessionOut]:
    resolved = await resolve_session(session, session_token(request))
    if resolved is None:
        return None
    return session_view(*resolved)


@router.post("/sign-out")
async def sign_out_route(
    request: Request, response: Response, session: AsyncSession = Depends(session_dependency)
) -> Dict[str, bool]:
    ok = await sign_out(session, session_token(request))
    response.delete_cookie(get_settings().cookie_name)
    return {"ok": ok}
