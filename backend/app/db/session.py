from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.config import DATABASE_URL, SQL_ECHO


def make_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        return create_engine(url, echo=SQL_ECHO, connect_args={"check_same_thread": False})
    return create_engine(url, echo=SQL_ECHO, pool_pre_ping=True)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Une opération = une transaction.
    commit si tout passe, rollback complet sur n'importe quelle exception.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
