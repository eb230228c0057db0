import os
from datetime import datetime, timedelta, timezone

import pytest

# Must be set before the app (and its config/security modules) are imported.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
# No account is main admin in tests; privilege comes from the role only.
os.environ["MAIN_ADMIN_USER_ID"] = "0"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.auth.models import User  # noqa: E402
from app.core.deps import get_store  # noqa: E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.db.base import Base, build_engine  # noqa: E402
from app.db.kv_store import KeyValueStore  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.fluency.migration import BackfillMigrator  # noqa: E402


class TickingClock:
    """Returns a later instant on every call so timestamps never collide."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current += self.step
        return now


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory):
    return KeyValueStore(session_factory)


@pytest.fixture
def clock():
    return TickingClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_user(session_factory, store):
    """Create an account; returns (user_id, auth headers)."""

    def _make(username: str, role: str = "student", initialize: bool = True):
        db = session_factory()
        try:
            user = User(
                email=f"{username}@example.com",
                username=username,
                full_name=username.title(),
                password_hash=hash_password("password123"),
                role=role,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            user_id = user.id
        finally:
            db.close()

        if initialize:
            BackfillMigrator(store).initial_assignment(user_id)
        return user_id, {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _make


@pytest.fixture
def client(session_factory, store):
    from app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
