import os

os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from timetrack.services.time_entry_store import TimeEntryStore
from timetrack.services.time_tracking import TimeTrackingService
from timetrack.utils.project_cache import ProjectCompanyCache, ProjectRegistry

UTC = timezone.utc
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)
TODAY = "2026-03-02"


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mongo():
    return AsyncMongoMockClient()["time_tracking_test"]


@pytest.fixture
def company_id():
    return ObjectId()


@pytest.fixture
async def user(mongo, company_id):
    document = {"_id": ObjectId(), "name": "Ada Worker", "avatar": "ada.png", "role": "user",
                "companyId": company_id}
    await mongo.users.insert_one(document)
    return document


@pytest.fixture
async def projects(mongo, company_id):
    p1 = {"_id": ObjectId(), "companyId": company_id, "projectTitle": "Website"}
    p2 = {"_id": ObjectId(), "companyId": company_id, "projectTitle": "Mobile App"}
    await mongo.projects.insert_many([p1, p2])
    return p1, p2


@pytest.fixture
def store(mongo):
    return TimeEntryStore(mongo.time_entries)


@pytest.fixture
def registry(mongo):
    return ProjectRegistry(mongo.projects)


@pytest.fixture
def make_service(mongo, registry, clock):
    def _make(store):
        return TimeTrackingService(
            store=store,
            project_cache=ProjectCompanyCache(registry.find_for_company, ttl_seconds=300),
            projects=registry,
            users_collection=mongo.users,
            clock=clock,
            cas_retries=1,
            tz_name="UTC",
        )
    return _make


@pytest.fixture
def service(make_service, store):
    return make_service(store)


@pytest.fixture
def app(service, user):
    from timetrack.main import app
    from timetrack.utils.app_utils import get_current_user, get_time_tracking_service

    app.dependency_overrides[get_current_user] = lambda: (user, "user")
    app.dependency_overrides[get_time_tracking_service] = lambda: service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def http(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver/user") as client:
        yield client
