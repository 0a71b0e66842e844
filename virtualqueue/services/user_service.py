from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from virtualqueue.core.exceptions import BadRequest, EmailAlreadyExists, UserNotFound
from virtualqueue.core.security import hash_password, verify_password
from virtualqueue.models.user import User, UserRole
from virtualqueue.services.session_store import SessionStore

logger = structlog.get_logger()

SORTABLE_FIELDS = {
    "fullName": User.full_name,
    "email": User.email,
    "createdAt": User.created_at,
}


class UserService:

    @staticmethod
    def get_active_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()

    @staticmethod
    def get_active_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == email, User.deleted_at.is_(None)).first()

    @staticmethod
    def get_user_or_404(db: Session, user_id: int, include_deleted: bool = False) -> User:
        if include_deleted:
            user = db.query(User).filter(User.id == user_id).first()
        else:
            user = UserService.get_active_user(db, user_id)
        if not user:
            raise UserNotFound()
        return user

    @staticmethod
    def list_users(
        db: Session,
        page: int,
        limit: int,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Tuple[List[User], int]:
        """Page through non-deleted users, optionally filtered by name and role."""
        query = db.query(User).filter(User.deleted_at.is_(None))
        if search:
            query = query.filter(User.full_name.ilike(f"%{search}%"))
        if role:
            query = query.filter(User.role == role)

        total = query.count()

        column = SORTABLE_FIELDS.get(sort_by, User.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        users = query.order_by(ordering, User.id).offset((page - 1) * limit).limit(limit).all()
        return users, total

    @staticmethod
    def _ensure_email_available(db: Session, email: str, exclude_user_id: Optional[int] = None) -> None:
        query = db.query(User.id).filter(User.email == email)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first() is not None:
            raise EmailAlreadyExists()

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise EmailAlreadyExists()

    @staticmethod
    def create_user(
        db: Session,
        *,
        email: str,
        password: str,
        full_name: str,
        phone: Optional[str] = None,
        photo: Optional[str] = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        UserService._ensure_email_available(db, email)

        user = User(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            phone=phone,
            photo=photo,
            role=role,
        )
        db.add(user)
        UserService._commit(db)
        db.refresh(user)
        logger.info("user_created", user_id=user.id, role=user.role.value)
        return user

    @staticmethod
    def update_user(db: Session, user: User, changes: Dict[str, Any]) -> User:
        email = changes.get("email")
        if email and email != user.email:
            UserService._ensure_email_available(db, email, exclude_user_id=user.id)

        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = datetime.utcnow()

        UserService._commit(db)
        db.refresh(user)
        return user

    @staticmethod
    def change_password(
        db: Session,
        user: User,
        old_password: str,
        new_password: str,
        keep_session_id: Optional[str] = None,
    ) -> int:
        """Replace the password and end every other session; returns how many ended."""
        if old_password == new_password:
            raise BadRequest("New password must be different from the old password.")
        if not verify_password(old_password, user.password_hash):
            raise BadRequest("Invalid password.")

        user.password_hash = hash_password(new_password)
        user.updated_at = datetime.utcnow()
        db.commit()

        terminated = SessionStore(db).terminate_all(user.id, except_session_id=keep_session_id)
        logger.info("password_changed", user_id=user.id, sessions_terminated=terminated)
        return terminated

    @staticmethod
    def soft_delete(db: Session, user: User) -> None:
        now = datetime.utcnow()
        user.deleted_at = now
        user.updated_at = now
        db.commit()
        SessionStore(db).terminate_all(user.id)
        logger.info("user_deleted", user_id=user.id, permanent=False)

    @staticmethod
    def permanent_delete(db: Session, user: User) -> None:
        user_id = user.id
        db.delete(user)
        db.commit()
        logger.info("user_deleted", user_id=user_id, permanent=True)

    @staticmethod
    def restore(db: Session, user: User) -> User:
        if user.deleted_at is None:
            raise BadRequest("User is not deleted.")

        user.deleted_at = None
        user.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(user)
        logger.info("user_restored", user_id=user.id)
        return user
