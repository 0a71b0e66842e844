from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from virtualqueue.core.config import settings
from virtualqueue.core.security import verify_password
from virtualqueue.db.init_db import init_db
from virtualqueue.models.session import UserSession
from virtualqueue.models.user import User, UserRole
from virtualqueue.services.session_store import SessionStore
from virtualqueue.tasks import session_tasks


def test_purge_expired_sessions_task(db_session: Session, session_factory, create_user, monkeypatch):
    user = create_user()
    store = SessionStore(db_session)
    store.create(user.id, "ancient", expires_at=datetime.utcnow() - timedelta(days=settings.SESSION_RETENTION_DAYS + 1))
    store.create(user.id, "live", expires_at=datetime.utcnow() + timedelta(days=1))
    monkeypatch.setattr(session_tasks, "SessionLocal", session_factory)

    result = session_tasks.purge_expired_sessions()

    assert result == {"deleted": 1}
    db_session.expire_all()
    assert db_session.query(UserSession).count() == 1


def test_init_db_seeds_superadmin_once(db_session: Session, monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_ADMIN_EMAIL", "root@x.com")
    monkeypatch.setattr(settings, "DEFAULT_ADMIN_PASSWORD", "Admin1!seed")

    init_db(db_session)
    init_db(db_session)

    admins = db_session.query(User).filter(User.email == "root@x.com").all()
    assert len(admins) == 1
    assert admins[0].role == UserRole.SUPERADMIN
    assert verify_password("Admin1!seed", admins[0].password_hash)


def test_init_db_without_password_outside_production(db_session: Session, monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_ADMIN_PASSWORD", "")

    init_db(db_session)

    assert db_session.query(User).count() == 0


def test_init_db_without_password_in_production(db_session: Session, monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_ADMIN_PASSWORD", "")
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")

    with pytest.raises(RuntimeError):
        init_db(db_session)


def test_purge_is_scheduled_daily():
    from virtualqueue.core.celery_app import celery_app

    schedule = celery_app.conf.beat_schedule["purge-expired-sessions"]

    assert schedule["task"] == "virtualqueue.tasks.session_tasks.purge_expired_sessions"
    assert schedule["task"] in celery_app.tasks
