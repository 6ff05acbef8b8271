"""Pytest configuration and fixtures for the access-control engine tests."""
import os
import tempfile

# Must be set before anything imports app.core.config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="docshare-uploads-"))
os.environ.setdefault("SEED_DEFAULT_FOLDERS", "false")

import itertools

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.models.user import User
from app.services.directory_service import actor_from_user
from app.models import activity_log, file, folder  # noqa: F401

_emails = itertools.count(1)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate sessions get separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Create a directory user and return the Actor for it."""
    def _make(role="employee", department="IT", is_active=True):
        user = User(
            email=f"user{next(_emails)}@example.com",
            full_name="Test User",
            role=role,
            department=department,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return actor_from_user(user)
    return _make
