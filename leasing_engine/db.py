# leasing_engine/db.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings


class Base(DeclarativeBase):
    pass


def _engine_kwargs(url: str) -> dict:
    kw: dict = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        # sessions are handed across threads by the interval runner and TestClient
        kw["connect_args"] = {"check_same_thread": False}
    return kw


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def get_db():
    """
    IMPORTANT (Postgres):
    If any SQL statement fails, the transaction is aborted and the session
    cannot run further statements until a rollback happens.

    This dependency guarantees rollback on exceptions so errors don't cascade
    into "InFailedSqlTransaction" on later queries in the same request.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def scoped_transaction(db: Session) -> Iterator[Session]:
    """
    One unit of work on an existing session:
      - commit when the block exits normally (business failures included,
        so snapshots written before a rejected transition still persist)
      - rollback when the block raises, then re-raise

    Services call this at their public entry points. Re-entrant: when one
    service calls another, only the outermost scope commits or rolls back.
    """
    depth = int(db.info.get("tx_depth", 0))
    db.info["tx_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except BaseException:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info["tx_depth"] = depth


@contextmanager
def session_scope() -> Iterator[Session]:
    """Fresh session for a worker / sweep candidate; always closed on exit."""
    db = SessionLocal()
    try:
        with scoped_transaction(db):
            yield db
    finally:
        db.close()
