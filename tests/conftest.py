import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('SUPABASE_JWT_SECRET', 'test-secret')

from tutorhq.auth.dependencies import CurrentUser  # noqa: E402
from tutorhq.database import Base  # noqa: E402
from tutorhq.models import assignment, goal, material, notification, test, tutoring_class  # noqa: E402,F401
from tutorhq.models.user import Profile, Student, Tutor  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    """Create a profile (plus its student/tutor row) and return it as the signed-in user."""
    counter = {'value': 0}

    def _make_user(role: str = 'student', *, full_name: str | None = None, status: str = 'approved', **role_fields):
        counter['value'] += 1
        user_id = f'{role}-{counter["value"]}'
        profile = Profile(
            id=user_id,
            email=f'{user_id}@example.com',
            full_name=full_name or f'{role.capitalize()} {counter["value"]}',
            role=role,
            status=status,
        )
        db.add(profile)
        if role == 'student':
            db.add(Student(id=user_id, **role_fields))
        elif role == 'tutor':
            role_fields.setdefault('subjects', ['math'])
            db.add(Tutor(id=user_id, **role_fields))
        db.commit()
        return CurrentUser(id=user_id, email=profile.email, token='token', profile=profile)

    return _make_user


class FakeBucket:
    def __init__(self):
        self.fail = False
        self.uploads = []
        self.removed = []
        self.names = []

    def upload(self, path, contents, options):
        if self.fail:
            raise RuntimeError('storage unavailable')
        self.uploads.append((path, contents, options))

    def remove(self, paths):
        self.removed.extend(paths)

    def get_public_url(self, path):
        return f'https://storage.example.com/{path}'


@pytest.fixture
def bucket(monkeypatch):
    """Route storage calls to an in-memory bucket."""
    from tutorhq.services import storage

    fake = FakeBucket()

    def from_(name):
        fake.names.append(name)
        return fake

    client = SimpleNamespace(storage=SimpleNamespace(from_=from_))
    monkeypatch.setattr(storage, 'require_supabase_admin', lambda: client)
    return fake
