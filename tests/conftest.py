import os
import tempfile
from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite:///./virtualqueue-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")

import virtualqueue.db.base  # noqa: F401
from virtualqueue.core.cache import get_redis
from virtualqueue.core.security import hash_password
from virtualqueue.db.base_class import Base
from virtualqueue.db.session import get_db, get_session_factory
from virtualqueue.main import app
from virtualqueue.models.user import User, UserRole

PASSWORD = "Valid1!pass"


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client(
    db_session: Session,
    session_factory: sessionmaker,
    redis_client: fakeredis.FakeRedis,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def create_user(db_session: Session):
    def _create(email: str = "a@x.com", role: UserRole = UserRole.USER, full_name: str = "Test User") -> User:
        user = User(
            email=email,
            password_hash=hash_password(PASSWORD),
            full_name=full_name,
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create


def signin(client: TestClient, email: str = "a@x.com", password: str = PASSWORD, **kwargs):
    return client.post("/auth/signin", json={"email": email, "password": password}, **kwargs)


def use_cookies(client: TestClient, **cookies) -> None:
    """Replace the client's cookie jar with exactly the given cookies."""
    client.cookies.clear()
    for name, value in cookies.items():
        client.cookies.set(name, value)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
