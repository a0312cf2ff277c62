# tests/conftest.py
from __future__ import annotations

import os
import tempfile

# must be set before leasing_engine.db builds its engine
_DB_DIR = tempfile.mkdtemp(prefix="leasing-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'leasing.db')}"
os.environ.setdefault("AUTH_MODE", "dev")
os.environ.setdefault("PAYMENTS_PROVIDER", "stub")

import pytest  # noqa: E402

from leasing_engine import models  # noqa: E402,F401
from leasing_engine.db import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
