"""Sign-in, per-request authentication, refresh and sign-out.

Session lifecycle::

    ACTIVE --(access token reissued near expiry / refresh)--> ROTATED
    ACTIVE|ROTATED --(sign-out, terminate, natural expiry)--> TERMINATED

A session keeps its id across rotations; only the stored refresh-token digest
and the expiry move forward.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from virtualqueue.core.config import settings
from virtualqueue.core.exceptions import (
    BadRequest,
    Forbidden,
    InternalServerError,
    NotFound,
    Unauthorized,
    UserNotFound,
)
from virtualqueue.core.security import verify_password
from virtualqueue.core.tokens import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    TokenCodec,
    TokenError,
    TokenExpired,
)
from virtualqueue.models.session import UserSession
from virtualqueue.models.user import User
from virtualqueue.services.revocation_store import RevocationStore
from virtualqueue.services.session_store import SessionStore, new_session_id
from virtualqueue.services.user_service import UserService

logger = structlog.get_logger()

# Failures of the backing stores; anything else is a programming error.
STORE_ERRORS = (redis.RedisError, SQLAlchemyError)


@dataclass
class AuthContext:
    """What a protected handler knows about its caller."""

    user_id: int
    session_id: Optional[str]
    access_token: str
    claims: Dict[str, Any] = field(default_factory=dict)
    rotated: bool = False

    @property
    def role(self) -> Optional[str]:
        return self.claims.get("role")


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str
    session_id: str
    user_id: int


class AuthService:
    def __init__(
        self,
        db: Session,
        codec: TokenCodec,
        revocations: RevocationStore,
        sessions: SessionStore,
    ):
        self.db = db
        self.codec = codec
        self.revocations = revocations
        self.sessions = sessions

    # ------------------------------------------------------------------
    # token minting
    # ------------------------------------------------------------------

    def _claims(self, user_id: int, session_id: str, token_type: str, role: Optional[str]) -> Dict[str, Any]:
        claims = {
            "sub": str(user_id),
            "jti": session_id,
            "type": token_type,
            # Two tokens signed in the same second must still differ.
            "nonce": secrets.token_urlsafe(8),
        }
        if role:
            claims["role"] = role
        return claims

    def sign_access_token(self, user_id: int, session_id: str, role: Optional[str] = None) -> str:
        return self.codec.sign(
            self._claims(user_id, session_id, ACCESS_TOKEN, role),
            settings.access_token_expire_seconds,
        )

    def sign_refresh_token(self, user_id: int, session_id: str) -> str:
        return self.codec.sign(
            self._claims(user_id, session_id, REFRESH_TOKEN, None),
            settings.refresh_token_expire_seconds,
        )

    @staticmethod
    def _refresh_expiry() -> datetime:
        return datetime.utcnow() + timedelta(seconds=settings.refresh_token_expire_seconds)

    # ------------------------------------------------------------------
    # sign-in
    # ------------------------------------------------------------------

    def sign_in(
        self,
        email: str,
        password: str,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> IssuedTokens:
        user = UserService.get_active_user_by_email(self.db, email)
        if not user:
            raise UserNotFound()

        if not verify_password(password, user.password_hash):
            logger.info("signin_rejected", user_id=user.id, reason="invalid_password")
            raise BadRequest("Invalid password.")

        session_id = new_session_id()
        access_token = self.sign_access_token(user.id, session_id, user.role.value)
        refresh_token = self.sign_refresh_token(user.id, session_id)

        self.sessions.create(
            user.id,
            refresh_token,
            expires_at=self._refresh_expiry(),
            user_agent=user_agent,
            ip=ip,
            session_id=session_id,
        )
        logger.info("signin_succeeded", user_id=user.id, session_id=session_id)

        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=session_id,
            user_id=user.id,
        )

    # ------------------------------------------------------------------
    # per-request gate
    # ------------------------------------------------------------------

    def authenticate(self, access_token: Optional[str]) -> AuthContext:
        if not access_token:
            raise Unauthorized("Unauthorized")

        if self.revocations.is_revoked(ACCESS_TOKEN, access_token):
            raise Unauthorized("Token has been revoked")

        try:
            claims = self.codec.verify(access_token)
        except TokenExpired:
            raise Forbidden("Token expired")
        except TokenError:
            raise Forbidden("Invalid token")

        if claims.get("type", ACCESS_TOKEN) != ACCESS_TOKEN:
            raise Forbidden("Invalid token")

        try:
            user_id = int(claims.get("sub"))
        except (TypeError, ValueError):
            raise Forbidden("Invalid token")

        session_id = claims.get("jti")
        if session_id and not self.sessions.is_active(session_id):
            raise Unauthorized("Session has been terminated")

        context = AuthContext(
            user_id=user_id,
            session_id=session_id,
            access_token=access_token,
            claims=claims,
        )

        threshold = settings.access_token_expire_seconds * settings.ACCESS_TOKEN_ROTATION_THRESHOLD
        if self.codec.remaining_ttl(claims) < threshold:
            context.access_token = self.sign_access_token(user_id, session_id, claims.get("role"))
            context.rotated = True
            logger.info("access_token_rotated", user_id=user_id, session_id=session_id)

        return context

    # ------------------------------------------------------------------
    # refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: Optional[str]) -> IssuedTokens:
        if not refresh_token:
            raise Unauthorized("Refresh token not found")

        try:
            claims = self.codec.verify(refresh_token)
        except TokenError:
            raise Unauthorized("Invalid refresh token")

        if claims.get("type") != REFRESH_TOKEN or not claims.get("sub"):
            raise Unauthorized("Invalid refresh token")

        try:
            return self._rotate_refresh_token(refresh_token, claims)
        except STORE_ERRORS as exc:
            self.db.rollback()
            logger.error("token_refresh_failed", error_type=type(exc).__name__, detail=str(exc))
            raise InternalServerError("Failed to refresh token")

    def _rotate_refresh_token(self, refresh_token: str, claims: Dict[str, Any]) -> IssuedTokens:
        if self.revocations.is_revoked(REFRESH_TOKEN, refresh_token):
            logger.warning("revoked_refresh_token_presented", user_id=claims.get("sub"))
            raise Unauthorized("Token has been revoked")

        try:
            user = UserService.get_active_user(self.db, int(claims["sub"]))
        except (TypeError, ValueError):
            user = None
        if not user:
            raise Unauthorized("User not found")

        session_id = claims.get("jti")
        user_session = self.sessions.get(session_id) if session_id else None
        if user_session is None or user_session.user_id != user.id or not user_session.is_active():
            raise Unauthorized("Session has been terminated")

        access_token = self.sign_access_token(user.id, session_id, user.role.value)
        new_refresh_token = self.sign_refresh_token(user.id, session_id)
        if not self.sessions.rotate(session_id, refresh_token, new_refresh_token, self._refresh_expiry()):
            # Another rotation already consumed this token, or the session ended.
            logger.warning("refresh_token_reuse_rejected", user_id=user.id, session_id=session_id)
            raise Unauthorized("Token has been revoked")

        # The session row no longer accepts the old token; the denylist entry
        # only short-circuits later attempts, so a failed write is not fatal.
        try:
            self.revocations.revoke(REFRESH_TOKEN, refresh_token, self.codec.remaining_ttl(claims))
        except redis.RedisError as exc:
            logger.warning("refresh_token_revoke_failed", session_id=session_id, error=str(exc))

        logger.info("refresh_token_rotated", user_id=user.id, session_id=session_id)
        return IssuedTokens(
            access_token=access_token,
            refresh_token=new_refresh_token,
            session_id=session_id,
            user_id=user.id,
        )

    # ------------------------------------------------------------------
    # sign-out
    # ------------------------------------------------------------------

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        """Revoke whichever tokens were presented and end their sessions.

        Each token is handled on its own; a store failure on one is logged and
        the other is still processed. Only when every presented token failed
        does the call raise.
        """
        attempted = 0
        failed = 0
        for token_type, token in ((ACCESS_TOKEN, access_token), (REFRESH_TOKEN, refresh_token)):
            if not token:
                continue
            attempted += 1
            try:
                self._revoke_presented_token(token_type, token)
            except STORE_ERRORS as exc:
                failed += 1
                self.db.rollback()
                logger.error(
                    "signout_token_failed",
                    token_type=token_type,
                    error_type=type(exc).__name__,
                    detail=str(exc),
                )

        if attempted and failed == attempted:
            raise InternalServerError("Failed to sign out")

    def _revoke_presented_token(self, token_type: str, token: str) -> None:
        try:
            claims = self.codec.verify(token)
        except TokenError:
            return

        ttl = self.codec.remaining_ttl(claims)
        if ttl > 0:
            self.revocations.revoke(token_type, token, ttl)

        session_id = claims.get("jti")
        if session_id:
            self.sessions.terminate(session_id)
            logger.info("session_terminated", session_id=session_id, reason="signout")

    # ------------------------------------------------------------------
    # session management
    # ------------------------------------------------------------------

    def list_sessions(self, context: AuthContext) -> List[UserSession]:
        return self.sessions.list_active(context.user_id)

    def terminate_session(self, context: AuthContext, session_id: str) -> None:
        user_session = self.sessions.get(session_id)
        if user_session is None or user_session.user_id != context.user_id:
            raise NotFound("Session not found.")
        self.sessions.terminate(session_id)
        logger.info("session_terminated", session_id=session_id, reason="user_request")

    def terminate_all_sessions(self, context: AuthContext, except_current: bool = False) -> int:
        keep = context.session_id if except_current else None
        terminated = self.sessions.terminate_all(context.user_id, except_session_id=keep)
        logger.info(
            "sessions_terminated",
            user_id=context.user_id,
            count=terminated,
            except_current=except_current,
        )
        return terminated

    def get_current_user(self, context: AuthContext) -> User:
        user = UserService.get_active_user(self.db, context.user_id)
        if not user:
            raise Unauthorized("User not found")
        return user
