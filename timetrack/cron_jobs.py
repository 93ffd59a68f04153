import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from timetrack.config import settings
from timetrack.utils.app_utils import project_cache

logger = logging.getLogger(__name__)

# Create a shared scheduler instance
scheduler = AsyncIOScheduler()


async def sweep_project_cache():
    try:
        removed = project_cache.sweep()
        logger.debug(f"Project cache sweep removed {removed} entries")
    except Exception as e:
        logger.error(f"Error during project cache sweep: {e}")

# Evict expired project authorizations once per TTL
scheduler.add_job(
    sweep_project_cache,
    "interval",
    seconds=settings.PROJECT_CACHE_TTL_SECONDS,
    id="sweep_project_cache",
)
