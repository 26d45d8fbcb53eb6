import os

# base SQLite jetable : doit être posée AVANT tout import "almacen.*" (engine créé à l'import)
os.environ["DATABASE_URL"] = "sqlite://"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from almacen.app.api.deps import get_db, get_gateway  # noqa: E402
from almacen.app.db.base import Base  # noqa: E402
from almacen.app.db.models.models_v1 import Equipment, Material, Site  # noqa: E402
from almacen.app.main import app  # noqa: E402
from almacen.services.gateway import CatalogCache, SqlWarehouseGateway  # noqa: E402
from almacen.services.notifications import InventoryChangeNotifier  # noqa: E402


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Une base SQLite fichier par test.

    Fichier (et non mémoire) : les lectures du gateway tournent dans des
    threads avec leurs propres connexions.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'almacen.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier(session_factory):
    n = InventoryChangeNotifier()
    n.install(session_factory)
    try:
        yield n
    finally:
        n.uninstall(session_factory)


@pytest.fixture
def gateway(session_factory, notifier):
    # TTL 0 : le catalogue est relu à chaque ingestion
    return SqlWarehouseGateway(session_factory, catalog=CatalogCache(ttl_seconds=0), notifier=notifier)


@pytest.fixture
def site(db_session):
    s = Site(name="OBRA TEST")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def material(db_session):
    m = Material(description="CEMENTO PORTLAND TIPO I", unit="BOL", max_stock=50)
    db_session.add(m)
    db_session.commit()
    return m


@pytest.fixture
def equipment(db_session):
    e = Equipment(code="EQ-001", name="MEZCLADORA 9P3")
    db_session.add(e)
    db_session.commit()
    return e


@pytest.fixture
def client(session_factory, gateway):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        # context manager : lifespan + boucle asyncio conservée entre les requêtes
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
