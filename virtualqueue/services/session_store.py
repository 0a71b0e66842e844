import hashlib
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from virtualqueue.models.session import UserSession

logger = structlog.get_logger()


def new_session_id() -> str:
    return uuid.uuid4().hex


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


class SessionStore:
    """Persistence for login sessions.

    Mutations are single ``UPDATE ... WHERE`` statements so concurrent requests
    rely on row-level atomicity rather than read-modify-write cycles.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: int,
        refresh_token: str,
        *,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> UserSession:
        now = datetime.utcnow()
        user_session = UserSession(
            id=session_id or new_session_id(),
            user_id=user_id,
            token_hash=hash_token(refresh_token),
            user_agent=user_agent[:512] if user_agent else None,
            ip=ip,
            created_at=now,
            last_active_at=now,
            expires_at=expires_at,
        )
        self.db.add(user_session)
        self.db.commit()
        self.db.refresh(user_session)
        return user_session

    def get(self, session_id: str) -> Optional[UserSession]:
        return self.db.query(UserSession).filter(UserSession.id == session_id).first()

    def is_active(self, session_id: str) -> bool:
        return (
            self.db.query(UserSession.id)
            .filter(
                UserSession.id == session_id,
                UserSession.expires_at > datetime.utcnow(),
            )
            .first()
            is not None
        )

    def list_active(self, user_id: int) -> List[UserSession]:
        return (
            self.db.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.expires_at > datetime.utcnow(),
            )
            .order_by(UserSession.last_active_at.desc())
            .all()
        )

    def touch(self, session_id: str) -> None:
        """Bump ``last_active_at``. Never raises; the caller's request must not fail on it."""
        try:
            self.db.query(UserSession).filter(UserSession.id == session_id).update(
                {UserSession.last_active_at: datetime.utcnow()},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("session_touch_failed", session_id=session_id, error=str(exc))

    def rotate(
        self,
        session_id: str,
        presented_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        """Swap the stored digest from ``presented_token`` to ``refresh_token``.

        Matches only while the session is live and still holds the presented
        token, so a given refresh token can win at most one rotation.
        """
        now = datetime.utcnow()
        updated = (
            self.db.query(UserSession)
            .filter(
                UserSession.id == session_id,
                UserSession.token_hash == hash_token(presented_token),
                UserSession.expires_at > now,
            )
            .update(
                {
                    UserSession.token_hash: hash_token(refresh_token),
                    UserSession.expires_at: expires_at,
                    UserSession.last_active_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated > 0

    def terminate(self, session_id: str) -> bool:
        """Mark the session dead. Terminating a dead session is a no-op."""
        now = datetime.utcnow()
        updated = (
            self.db.query(UserSession)
            .filter(UserSession.id == session_id, UserSession.expires_at > now)
            .update({UserSession.expires_at: now}, synchronize_session=False)
        )
        self.db.commit()
        return updated > 0

    def terminate_all(self, user_id: int, except_session_id: Optional[str] = None) -> int:
        now = datetime.utcnow()
        query = self.db.query(UserSession).filter(
            UserSession.user_id == user_id,
            UserSession.expires_at > now,
        )
        if except_session_id:
            query = query.filter(UserSession.id != except_session_id)
        updated = query.update({UserSession.expires_at: now}, synchronize_session=False)
        self.db.commit()
        return updated

    def purge_expired(self, before: datetime) -> int:
        deleted = (
            self.db.query(UserSession)
            .filter(UserSession.expires_at < before)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted


def touch_session_in_background(session_factory, session_id: str) -> None:
    """Background-task entry point: owns its database session for the touch."""
    db = session_factory()
    try:
        SessionStore(db).touch(session_id)
    finally:
        db.close()
