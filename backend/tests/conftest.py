import os

import pytest
from sqlalchemy.orm import Session, sessionmaker

# Avant tout import applicatif : pas de Postgres requis pour les tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

from backend.app.db.base import Base  # noqa: E402
from backend.app.db.models import models_v1  # noqa: F401,E402
from backend.app.db.session import make_engine  # noqa: E402


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Base SQLite fichier, neuve pour chaque test.

    Un fichier (et pas :memory:) pour pouvoir ouvrir plusieurs sessions
    indépendantes sur la même base (tests de concurrence).
    """
    eng = make_engine(f"sqlite:///{tmp_path / 'stocktake.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory):
    from fastapi.testclient import TestClient

    from backend.app.api.deps import get_db
    from backend.app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
