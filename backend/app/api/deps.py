from __future__ import annotations

from typing import Iterator

from sqlalchemy.orm import Session

from backend.app.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    """Une session par requête ; les services gèrent commit / rollback."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
