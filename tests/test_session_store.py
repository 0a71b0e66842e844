from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from virtualqueue.models.session import UserSession
from virtualqueue.services.session_store import SessionStore, hash_token, touch_session_in_background


def _expires_in(days: int = 30) -> datetime:
    return datetime.utcnow() + timedelta(days=days)


@pytest.fixture()
def user(create_user):
    return create_user()


def test_create_stores_token_digest_not_raw_token(db_session: Session, user):
    store = SessionStore(db_session)

    created = store.create(user.id, "raw-refresh", expires_at=_expires_in(), user_agent="pytest", ip="10.0.0.1")

    assert len(created.id) == 32
    assert created.token_hash == hash_token("raw-refresh")
    assert created.token_hash != "raw-refresh"
    assert created.user_agent == "pytest"
    assert store.is_active(created.id) is True


def test_terminate_is_idempotent(db_session: Session, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "raw", expires_at=_expires_in())

    assert store.terminate(created.id) is True
    assert store.terminate(created.id) is False
    assert store.is_active(created.id) is False


def test_terminate_unknown_session_is_noop(db_session: Session):
    assert SessionStore(db_session).terminate("0" * 32) is False


def test_rotate_keeps_id_and_replaces_digest(db_session: Session, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "first", expires_at=_expires_in(1))
    session_id = created.id

    assert store.rotate(session_id, "first", "second", _expires_in(30)) is True

    rotated = store.get(session_id)
    assert rotated.token_hash == hash_token("second")
    assert rotated.expires_at > datetime.utcnow() + timedelta(days=29)


def test_rotate_refuses_terminated_session(db_session: Session, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "first", expires_at=_expires_in())
    store.terminate(created.id)

    assert store.rotate(created.id, "first", "second", _expires_in()) is False
    assert store.is_active(created.id) is False


def test_rotate_refuses_stale_presented_token(db_session: Session, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "first", expires_at=_expires_in())
    assert store.rotate(created.id, "first", "second", _expires_in()) is True

    assert store.rotate(created.id, "first", "third", _expires_in()) is False

    db_session.expire_all()
    assert store.get(created.id).token_hash == hash_token("second")


def test_list_active_orders_by_last_activity(db_session: Session, user):
    store = SessionStore(db_session)
    older = store.create(user.id, "one", expires_at=_expires_in())
    newer = store.create(user.id, "two", expires_at=_expires_in())
    dead = store.create(user.id, "three", expires_at=_expires_in())
    store.terminate(dead.id)

    db_session.query(UserSession).filter(UserSession.id == older.id).update(
        {UserSession.last_active_at: datetime.utcnow() - timedelta(hours=1)}
    )
    db_session.commit()

    assert [item.id for item in store.list_active(user.id)] == [newer.id, older.id]


def test_terminate_all_can_keep_one_session(db_session: Session, user, create_user):
    store = SessionStore(db_session)
    keep = store.create(user.id, "one", expires_at=_expires_in())
    drop = store.create(user.id, "two", expires_at=_expires_in())
    other_user = create_user(email="b@x.com")
    untouched = store.create(other_user.id, "three", expires_at=_expires_in())

    assert store.terminate_all(user.id, except_session_id=keep.id) == 1

    assert store.is_active(keep.id) is True
    assert store.is_active(drop.id) is False
    assert store.is_active(untouched.id) is True


def test_touch_updates_last_activity(db_session: Session, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "raw", expires_at=_expires_in())
    stale = datetime.utcnow() - timedelta(hours=2)
    db_session.query(UserSession).filter(UserSession.id == created.id).update(
        {UserSession.last_active_at: stale}
    )
    db_session.commit()

    store.touch(created.id)

    assert store.get(created.id).last_active_at > stale


def test_touch_swallows_database_errors(db_session: Session, user, monkeypatch):
    store = SessionStore(db_session)
    created = store.create(user.id, "raw", expires_at=_expires_in())

    def failing_commit():
        raise OperationalError("UPDATE sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    assert store.touch(created.id) is None


def test_touch_in_background_uses_its_own_session(db_session: Session, session_factory, user):
    store = SessionStore(db_session)
    created = store.create(user.id, "raw", expires_at=_expires_in())
    stale = datetime.utcnow() - timedelta(hours=2)
    db_session.query(UserSession).filter(UserSession.id == created.id).update(
        {UserSession.last_active_at: stale}
    )
    db_session.commit()

    touch_session_in_background(session_factory, created.id)

    db_session.expire_all()
    assert store.get(created.id).last_active_at > stale


def test_purge_expired_deletes_only_old_sessions(db_session: Session, user):
    store = SessionStore(db_session)
    old = store.create(user.id, "old", expires_at=datetime.utcnow() - timedelta(days=120))
    recent = store.create(user.id, "recent", expires_at=datetime.utcnow() - timedelta(days=1))
    live = store.create(user.id, "live", expires_at=_expires_in())
    old_id, recent_id, live_id = old.id, recent.id, live.id

    deleted = store.purge_expired(datetime.utcnow() - timedelta(days=90))

    assert deleted == 1
    assert store.get(old_id) is None
    assert store.get(recent_id) is not None
    assert store.get(live_id) is not None
