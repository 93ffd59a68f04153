import logging
import time
from typing import Awaitable, Callable, Optional

from bson import ObjectId
from cachetools import TTLCache

from timetrack.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

ProjectLoader = Callable[[ObjectId, ObjectId], Awaitable[Optional[dict]]]


class ProjectRegistry:
    """Read-only view over the projects collection."""

    def __init__(self, collection):
        self.collection = collection

    async def find_for_company(self, project_id: ObjectId, company_id: ObjectId) -> Optional[dict]:
        return await self.collection.find_one(
            {"_id": project_id, "companyId": company_id},
            {"projectTitle": 1},
        )

    async def find_titles(self, project_ids) -> dict:
        projects = await self.collection.find(
            {"_id": {"$in": list(project_ids)}},
            {"projectTitle": 1},
        ).to_list(length=None)
        return {project["_id"]: project.get("projectTitle", "Unknown Project") for project in projects}


class ProjectCompanyCache:
    """
    Memoizes successful (project, company) ownership checks for a fixed TTL.
    Negative lookups are never cached, so a newly added project is visible on
    the next request. Reads and writes are idempotent and need no locking.
    """

    def __init__(self, loader: ProjectLoader, ttl_seconds: int = 300, maxsize: int = 4096,
                 timer: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    @staticmethod
    def _key(project_id, company_id):
        return f"{project_id}-{company_id}"

    async def validate(self, project_id: ObjectId, company_id: ObjectId) -> dict:
        key = self._key(project_id, company_id)
        project = self._cache.get(key)
        if project is not None:
            return project

        project = await self._loader(project_id, company_id)
        if not project:
            raise AuthorizationError("Project not found or access denied")

        self._cache[key] = project
        return project

    def invalidate(self, project_id, company_id):
        self._cache.pop(self._key(project_id, company_id), None)

    def sweep(self) -> int:
        """Evicts expired entries, returns how many were removed."""
        removed = len(self._cache.expire())
        if removed:
            logger.debug(f"Evicted {removed} expired project cache entries")
        return removed

    def __len__(self):
        return len(self._cache)

    def __contains__(self, key):
        project_id, company_id = key
        return self._key(project_id, company_id) in self._cache
