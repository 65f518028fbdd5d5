from datetime import datetime, timedelta, timezone

import pytest

from app.database.database_service import InMemoryDatabaseService
from app.database.request_repository import MaintenanceRequestRepository
from app.models.database_models import Actor, UserRole
from app.models.request_actions import CreateRequest
from app.services.ai_classification_service import AIClassificationService
from app.services.maintenance_request_service import MaintenanceRequestService
from app.services.notification_service import NotificationService
from app.services.request_lifecycle import build_new_request
from app.services.request_number_service import RequestNumberService
from app.services.role_directory import RoleDirectory

RECEIVER = Actor(id="1", name="Qasim", role=UserRole.RECEIVER)
TECH = Actor(id="2", name="Jaleel", role=UserRole.TECH)
MANAGER = Actor(id="3", name="Sultan", role=UserRole.MANAGER)
STORE = Actor(id="4", name="Sunish", role=UserRole.STORE)
QA = Actor(id="5", name="Mariam", role=UserRole.QA)

ACTORS = {a.role: a for a in (RECEIVER, TECH, MANAGER, STORE, QA)}

ROLE_RECIPIENTS = {
    "receiver": ["1"],
    "tech": ["2"],
    "manager": ["3"],
    "store": ["4"],
    "qa": ["5"],
}

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def tick(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def new_request(request_id: str = "req-1", building: str = "Tower A", unit: str = "101",
                description: str = "AC leak", now: datetime = T0):
    """A freshly created request snapshot (Pending Assessment, one history entry)."""
    form = CreateRequest(building=building, unit=unit, description=description)
    return build_new_request(form, RECEIVER, request_id=request_id, request_no="REQ-0001", now=now).request


@pytest.fixture
def db():
    return InMemoryDatabaseService()


@pytest.fixture
def notifications(db):
    return NotificationService(db)


@pytest.fixture
def service(db, notifications):
    return MaintenanceRequestService(
        repository=MaintenanceRequestRepository(db),
        notifications=notifications,
        classifier=AIClassificationService(enabled=False),
        numbers=RequestNumberService(db),
        directory=RoleDirectory(ROLE_RECIPIENTS),
    )
