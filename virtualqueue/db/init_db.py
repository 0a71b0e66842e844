import structlog
from sqlalchemy.orm import Session

import virtualqueue.db.base  # noqa: F401
from virtualqueue.core.config import settings
from virtualqueue.core.security import hash_password
from virtualqueue.models.user import User, UserRole

logger = structlog.get_logger()


def init_db(db: Session) -> None:
    """Seed the bootstrap superadmin"""
    email = settings.DEFAULT_ADMIN_EMAIL
    admin = db.query(User).filter(User.email == email).first()
    if admin:
        logger.info("admin_user_exists", email=email)
        return

    seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
    if not seed_password:
        message = (
            "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
            "or create an admin user manually before launch."
        )
        if settings.is_production:
            logger.error("admin_seed_missing_password", environment=settings.ENVIRONMENT)
            raise RuntimeError(message)
        logger.warning("admin_seed_missing_password", environment=settings.ENVIRONMENT)
        return

    admin = User(
        email=email,
        password_hash=hash_password(seed_password),
        full_name="Virtual Queue Admin",
        role=UserRole.SUPERADMIN,
    )
    db.add(admin)
    db.commit()
    logger.info("admin_user_created", email=email)


if __name__ == "__main__":
    from virtualqueue.core.logging import configure_logging
    from virtualqueue.db.session import SessionLocal

    configure_logging()
    db = SessionLocal()
    try:
        init_db(db)
    finally:
        db.close()
