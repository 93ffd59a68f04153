import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING

from timetrack.config import settings

logger = logging.getLogger(__name__)


client = AsyncIOMotorClient(settings.MONGODB_URL)
db = client[settings.DATABASE_NAME]


time_entries_collection = db.time_entries
projects_collection = db.projects
users_collection = db.users


async def ensure_indexes(collection=time_entries_collection):
    """
    Creates the time entry indexes.
    The two partial unique indexes back the invariants at the storage level:
    one open entry per (user, project, day) and one running entry per (user, day).
    """
    await collection.create_index(
        [("userId", ASCENDING), ("projectId", ASCENDING), ("date", ASCENDING)],
        name="user_project_date",
    )
    await collection.create_index(
        [("companyId", ASCENDING), ("isRunning", ASCENDING), ("isCheckedOut", ASCENDING)],
        name="company_running_checked_out",
    )
    await collection.create_index(
        [("userId", ASCENDING), ("projectId", ASCENDING), ("date", ASCENDING)],
        name="one_open_entry_per_project_day",
        unique=True,
        partialFilterExpression={"isCheckedOut": False},
    )
    await collection.create_index(
        [("userId", ASCENDING), ("date", ASCENDING)],
        name="one_running_entry_per_day",
        unique=True,
        partialFilterExpression={"isRunning": True},
    )
    logger.info("Time entry indexes ensured")
