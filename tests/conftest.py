"""
Pytest configuration and fixtures
"""
import base64
import itertools
import threading
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.errors import ErrorCode
from src.crowdsource.models import Report, ReportStatus, User, UserRole
from src.database.repository import InMemoryReportRepository, InMemoryUserRepository
from src.ml.waste_classifier import ClassificationError, ClassificationVerdict, tier_for
from src.storage.object_storage import ObjectStorage, StoredObject, StorageUploadError
from src.storage.uploader import BoundedUploader

JPEG_HEADER = b"\xff\xd8\xff\xe0"


def make_image_b64(size: int = 64, prefix: bool = False) -> str:
    """Base64 image payload decoding to exactly `size` bytes."""
    data = (JPEG_HEADER + b"\x00" * size)[:size]
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}" if prefix else encoded


def make_verdict(confidence: float, is_waste: bool = True) -> ClassificationVerdict:
    return ClassificationVerdict(is_waste=is_waste, confidence=confidence, tier=tier_for(confidence))


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeStorage(ObjectStorage):
    """
    Object storage double.

    `gate` blocks uploads until set; `error` makes uploads fail.
    """

    def __init__(self, gate: threading.Event = None, error: Exception = None):
        self.gate = gate
        self.error = error
        self.uploads = []
        self.destroyed = []
        self.destroy_called = threading.Event()
        self._ids = itertools.count(1)

    def upload(self, data, options):
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        public_id = f"{options.folder}/img{next(self._ids)}"
        self.uploads.append((public_id, data))
        return StoredObject(url=f"https://images.example.com/{public_id}.jpg", public_id=public_id)

    def destroy(self, public_id):
        self.destroyed.append(public_id)
        self.destroy_called.set()


class FakeClassifier:
    """Classifier double returning a fixed verdict or raising a fixed error."""

    def __init__(self, verdict: ClassificationVerdict = None, error: Exception = None):
        self.verdict = verdict or make_verdict(0.92)
        self.error = error
        self.calls = 0

    def classify(self, image_data, filename="image.jpg", content_type="image/jpeg"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.verdict


def detector_down() -> ClassificationError:
    return ClassificationError(ErrorCode.SERVICE_DOWN, "Detector unreachable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reports():
    return InMemoryReportRepository()


@pytest.fixture
def users():
    repo = InMemoryUserRepository()
    repo.add(User(id="citizen-1", username="alice"))
    repo.add(User(id="citizen-2", username="bob"))
    repo.add(User(id="super-1", username="carol", role=UserRole.SUPERVISOR))
    repo.add(User(id="super-2", username="dave", role=UserRole.SUPERVISOR))
    return repo


@pytest.fixture
def citizen(users):
    return users.get("citizen-1")


@pytest.fixture
def supervisor(users):
    return users.get("super-1")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def uploader(storage):
    return BoundedUploader(storage, timeout=2.0)


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def report_factory(reports, clock):
    """Store a report in the given status and return it."""
    counter = itertools.count(1)

    def create(status=ReportStatus.PENDING, user_id="citizen-1", **fields):
        n = next(counter)
        report = Report(
            id=fields.pop("id", f"report-{n}"),
            user_id=user_id,
            title="Dumped tyres",
            details="Pile of tyres by the river",
            address="Riverside Road 12",
            latitude=fields.pop("latitude", -23.5505),
            longitude=fields.pop("longitude", -46.6333),
            image_url=f"https://images.example.com/reports/seed{n}.jpg",
            public_id=f"reports/seed{n}",
            photo_timestamp=clock(),
            status=status,
            created_at=fields.pop("created_at", clock()),
            updated_at=fields.pop("updated_at", clock()),
            **fields,
        )
        return reports.create(report)

    return create
