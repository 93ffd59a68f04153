from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from bson import ObjectId
from jose import JWTError, jwt
import logging

from timetrack.config import settings
from timetrack.exceptions import get_user_exception
from timetrack.db import users_collection, projects_collection, time_entries_collection
from timetrack.services.time_entry_store import TimeEntryStore
from timetrack.services.time_tracking import TimeTrackingService
from timetrack.utils.project_cache import ProjectCompanyCache, ProjectRegistry

logger = logging.getLogger(__name__)

oauth2_bearer = OAuth2PasswordBearer(tokenUrl="auth/login/")

secret_key = settings.SECRET_KEY
algorithm = settings.ALGORITHM

ROLE_COMPANY = "company"
ROLE_USER = "user"
ROLE_QCADMIN = "qcadmin"

project_registry = ProjectRegistry(projects_collection)
project_cache = ProjectCompanyCache(
    project_registry.find_for_company,
    ttl_seconds=settings.PROJECT_CACHE_TTL_SECONDS,
    maxsize=settings.PROJECT_CACHE_MAX_SIZE,
)


async def get_current_user(token: str = Depends(oauth2_bearer)) -> tuple:
    try:
        payload = jwt.decode(token, secret_key, algorithms=algorithm)
        data = payload.get("data")

        if data is None:
            raise get_user_exception()

        user_id = data.get("sub")
        if user_id is None or not ObjectId.is_valid(user_id):
            raise get_user_exception()

        user = await users_collection.find_one({"_id": ObjectId(user_id)})
        if not user:
            raise get_user_exception()

        return user, user.get("role", ROLE_USER)

    except JWTError as e:
        logger.warning(f"JWT Error {e}")
        raise get_user_exception()


def get_user_company_id(user: dict, user_type: str):
    """
    Company the principal tracks time for: a company account is its own
    company, users and QC admins belong to `companyId`.
    """
    if user_type == ROLE_COMPANY:
        company_id = user.get("_id")
    elif user_type in (ROLE_USER, ROLE_QCADMIN):
        company_id = user.get("companyId")
    else:
        company_id = None

    if company_id is None:
        return None
    if isinstance(company_id, str):
        return ObjectId(company_id) if ObjectId.is_valid(company_id) else None
    return company_id


def get_time_tracking_service() -> TimeTrackingService:
    return TimeTrackingService(
        store=TimeEntryStore(time_entries_collection),
        project_cache=project_cache,
        projects=project_registry,
        users_collection=users_collection,
        cas_retries=settings.CAS_RETRIES,
        dashboard_days=settings.DASHBOARD_DEFAULT_DAYS,
        tz_name=settings.TIMEZONE,
    )
