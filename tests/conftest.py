"""
Shared pytest fixtures: in-memory SQLite + FastAPI TestClient.
"""
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="receiptrewards-"))

import hashlib  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from receiptrewards.clock import utcnow  # noqa: E402
from receiptrewards.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from receiptrewards.loyalty import models as loyalty_models  # noqa: E402,F401
from receiptrewards.main import app  # noqa: E402
from receiptrewards.notifications import Notifier, get_notifier  # noqa: E402
from receiptrewards.receipts import models as receipt_models  # noqa: E402,F401
from receiptrewards.receipts.models.store import StoreModel  # noqa: E402
from receiptrewards.receipts.pipeline import Policies, get_policies  # noqa: E402
from receiptrewards.receipts.pipeline.extraction import get_extractor  # noqa: E402
from receiptrewards.receipts.pipeline.fraud import get_fraud_scorer  # noqa: E402
from receiptrewards.receipts.schemas import ExtractionResult, FraudScore  # noqa: E402
from receiptrewards.receipts.storage import get_image_store  # noqa: E402

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(_ENGINE)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)


# ---------------------------------------------------------------------------
# Stub collaborators
# ---------------------------------------------------------------------------

class StubExtractor:
    """Returns a configurable extraction; image hash follows the bytes."""

    def __init__(self):
        self.result = ExtractionResult(
            raw_text="TIN: 123\nTOTAL 600.00",
            tax_id="123",
            total_amount=600.0,
            date_on_receipt=utcnow() - timedelta(minutes=5),
        )
        self.error = None
        self.calls = 0

    def extract(self, image: bytes, filename: str = "") -> ExtractionResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        result = self.result.model_copy(deep=True)
        if result.image_hash is None:
            result.image_hash = hashlib.sha256(image).hexdigest()
        return result


class StubScorer:
    def __init__(self):
        self.result = FraudScore(overall=10)
        self.error = None

    def score(self, image: bytes, extraction: ExtractionResult) -> FraudScore:
        if self.error is not None:
            raise self.error
        return self.result.model_copy(deep=True)


class MemoryImageStore:
    def __init__(self):
        self.saved = {}

    def save(self, receipt_id: str, image: bytes, content_type: str) -> str:
        self.saved[receipt_id] = image
        return f"memory://{receipt_id}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db):
    row = StoreModel(
        id="store-1",
        name="Bole Cafe",
        tin="123",
        branch_name=None,
        min_receipt_amount=500.0,
        receipt_validity_hours=24,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture()
def other_store(db):
    row = StoreModel(
        id="store-2",
        name="Piassa Cafe",
        tin="999888777",
        branch_name="Piassa",
        min_receipt_amount=100.0,
        receipt_validity_hours=48,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture()
def extractor():
    return StubExtractor()


@pytest.fixture()
def scorer():
    return StubScorer()


@pytest.fixture()
def sent():
    """Notification events delivered during the test."""
    return []


@pytest.fixture()
def images():
    return MemoryImageStore()


@pytest.fixture()
def client(db, extractor, scorer, sent, images):
    def _override():
        try:
            yield db
        finally:
            pass

    notifier = Notifier(sinks=[sent.append])

    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_extractor] = lambda: extractor
    app.dependency_overrides[get_fraud_scorer] = lambda: scorer
    app.dependency_overrides[get_image_store] = lambda: images
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_policies] = lambda: Policies()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def superadmin():
    return {"X-Reviewer-Id": "root", "X-Reviewer-Role": "superadmin"}


@pytest.fixture()
def store_admin():
    def _headers(store_id: str) -> dict:
        return {"X-Reviewer-Id": f"admin-{store_id}", "X-Reviewer-Role": "admin", "X-Store-Id": store_id}
    return _headers


@pytest.fixture()
def upload(client):
    """POST a receipt; every call sends distinct image bytes unless given."""
    counter = iter(range(1, 10_000))

    def _upload(phone="0911000000", store_id="store-1", receipt_id=None, image=None):
        data = {"phone": phone}
        if store_id:
            data["store_id"] = store_id
        if receipt_id:
            data["receipt_id"] = receipt_id
        if image is None:
            image = f"receipt-image-{next(counter)}".encode()
        return client.post(
            "/api/receipts/upload",
            data=data,
            files={"file": ("receipt.txt", image, "text/plain")},
        )
    return _upload
