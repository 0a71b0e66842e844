import ipaddress
from typing import Optional

import redis
import structlog
from fastapi import BackgroundTasks, Depends, Request, Response
from sqlalchemy.orm import Session, sessionmaker

from virtualqueue.api.cookies import ACCESS_TOKEN_COOKIE, set_access_cookie
from virtualqueue.core.cache import get_redis
from virtualqueue.core.exceptions import Forbidden
from virtualqueue.core.tokens import TokenCodec, get_token_codec
from virtualqueue.db.session import get_db, get_session_factory
from virtualqueue.models.user import User
from virtualqueue.services.auth_service import AuthContext, AuthService
from virtualqueue.services.revocation_store import RevocationStore
from virtualqueue.services.session_store import SessionStore, touch_session_in_background

logger = structlog.get_logger()


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client address: first valid forwarded hop, then the socket peer."""
    candidates = []
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        candidates.extend(ip.strip() for ip in forwarded_for.split(",") if ip.strip())
    for header in ("X-Real-IP", "X-Client-IP"):
        value = request.headers.get(header)
        if value:
            candidates.append(value.strip())

    for candidate in candidates:
        try:
            ipaddress.ip_address(candidate)
            return candidate
        except ValueError:
            continue

    return request.client.host if request.client else None


def extract_access_token(request: Request) -> Optional[str]:
    """Access token from the cookie, falling back to a bearer header."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def get_auth_service(
    db: Session = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthService:
    return AuthService(
        db=db,
        codec=codec,
        revocations=RevocationStore(redis_client),
        sessions=SessionStore(db),
    )


def get_auth_context(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    auth_service: AuthService = Depends(get_auth_service),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> AuthContext:
    """Authentication gate for protected routes.

    When the presented access token is close to expiry a replacement is set
    on the response and the session's activity timestamp is bumped after the
    response has been sent.
    """
    context = auth_service.authenticate(extract_access_token(request))

    if context.rotated:
        set_access_cookie(response, context.access_token)
        if context.session_id:
            background_tasks.add_task(touch_session_in_background, session_factory, context.session_id)

    request.state.auth = context
    return context


def get_current_user(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    return auth_service.get_current_user(context)


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_admin:
        logger.warning(
            "admin_access_denied",
            action=f"{request.method} {request.url.path}",
            user_id=current_user.id,
        )
        raise Forbidden("Admin access required")
    return current_user
