import os
import tempfile

# settings / engine / logging sont créés à l'import : env AVANT tout import ocha
_TMP = tempfile.mkdtemp(prefix="ocha-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/import.db")
os.environ.setdefault("LOG_DIR", f"{_TMP}/logs")
os.environ.setdefault("STORE_TIMEOUT_SECONDS", "2")
os.environ.setdefault("STORE_RETRY_BACKOFF_SECONDS", "0")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from ocha.app.api.deps import get_db, get_notifier, get_session_factory  # noqa: E402
from ocha.app.db.base import Base  # noqa: E402
from ocha.app.db.models import models_v1  # noqa: F401,E402
from ocha.app.db.models.models_v1 import Product, StorageLocation, Supplier  # noqa: E402
from ocha.app.db.models.core_types import LocationType, NotificationType  # noqa: E402
from ocha.app.db.session import build_engine  # noqa: E402


class RecordingNotifier:
    """Notifier en mémoire : (type, reference_id, recipient)."""

    def __init__(self):
        self.events = []

    def emit(self, type, reference_id, recipient=None):
        self.events.append((type, reference_id, recipient))

    def types(self):
        return [e[0] for e in self.events]

    def of(self, type: NotificationType):
        return [e for e in self.events if e[0] == type]


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    def emit(self, type, reference_id, recipient=None):
        self.calls += 1
        raise RuntimeError("notification backend down")


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Base SQLite fichier, neuve pour chaque test.

    Fichier (pas :memory:) : le notifier, le RecordStore et l'analytics ouvrent
    leurs propres sessions et doivent voir les mêmes données.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'ocha.db'}", timeout=2)
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
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def kitchen(db_session):
    """
    Données de référence minimales :
    - 1 fournisseur, 2 locations (frigo, congélateur)
    - saumon (matière première, minimum 5), sushi saumon (produit fini)
    """
    supplier = Supplier(name="Pacific Fish Co")
    fridge = StorageLocation(name="Fridge", code="FRIDGE-1", type=LocationType.refrigerator, capacity=Decimal("100"))
    freezer = StorageLocation(name="Freezer", code="FREEZER-1", type=LocationType.freezer, capacity=Decimal("100"))
    salmon = Product(name="Salmon", code="SAL", cost_price=Decimal("12.50"), minimum_stock=Decimal("5"))
    sushi = Product(name="Salmon nigiri", code="NIG-SAL", list_price=Decimal("4.00"))
    db_session.add_all([supplier, fridge, freezer, salmon, sushi])
    db_session.commit()

    ids = {
        "supplier": supplier.id,
        "fridge": fridge.id,
        "freezer": freezer.id,
        "salmon": salmon.id,
        "sushi": sushi.id,
    }
    # libère le verrou SQLite (BEGIN IMMEDIATE) pris par les lectures ci-dessus
    db_session.commit()
    return ids


@pytest.fixture
def client(session_factory):
    from ocha.app.main import app
    from ocha.services.notifications import StoreNotifier

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: StoreNotifier(session_factory)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
