import logging
from typing import Callable, Dict, Iterable, Optional

from bson import ObjectId

from timetrack.exceptions import ConflictError, NotFoundError, AuthorizationError, get_company_exception
from timetrack.models.time_entry import TimeEntry
from timetrack.services.time_entry_store import TimeEntryStore
from timetrack.utils.project_cache import ProjectCompanyCache, ProjectRegistry
from timetrack.utils.time_utils import (day_key, shift_day_key, parse_day_key, utc_now, whole_seconds_between,
                                        format_time, format_hours_minutes, to_object_id, serialize_document)

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT = "Unknown Project"


class TimeTrackingService:
    """
    Server side of the timer: check-in, pause/resume, check-out, elapsed-time
    snapshots and the read-only reports. The server clock is the only clock
    used for duration math; all durations are floored integer seconds, never
    negative.
    """

    def __init__(self, store: TimeEntryStore, project_cache: ProjectCompanyCache,
                 projects: ProjectRegistry, users_collection,
                 clock: Callable = utc_now, cas_retries: int = 1, dashboard_days: int = 7,
                 tz_name: str = None):
        self.store = store
        self.project_cache = project_cache
        self.projects = projects
        self.users_collection = users_collection
        self.clock = clock
        self.cas_retries = cas_retries
        self.dashboard_days = dashboard_days
        self.tz_name = tz_name

    def _today(self, now=None) -> str:
        return day_key(now or self.clock(), self.tz_name)

    @staticmethod
    def _require_company(company_id):
        if company_id is None:
            raise get_company_exception()
        return company_id

    def _clamped(self, seconds: int, entry: dict, what: str) -> int:
        if seconds < 0:
            logger.warning(f"Negative {what} ({seconds}s) on entry {entry.get('_id')}, clamped to 0")
            return 0
        return seconds

    def _running_elapsed(self, entry: dict, now) -> int:
        raw = whole_seconds_between(entry["checkIn"], now)
        return self._clamped(raw - (entry.get("pausedDuration") or 0), entry, "elapsed time")

    async def _project_title(self, project_id: ObjectId, company_id: ObjectId) -> str:
        try:
            project = await self.project_cache.validate(project_id, company_id)
        except AuthorizationError:
            return UNKNOWN_PROJECT
        return project.get("projectTitle", UNKNOWN_PROJECT)

    async def _missing_open_entry(self, user_id, project_id, company_id, today, not_found_message):
        closed = await self.store.find_latest_closed(user_id, project_id, company_id, today)
        if closed:
            raise ConflictError("You have already checked out for this project.")
        raise NotFoundError(not_found_message)

    async def check_in(self, user_id: ObjectId, company_id: ObjectId, project_id: str,
                       sub_task_id: str = None) -> dict:
        self._require_company(company_id)
        project_oid = to_object_id(project_id)
        sub_task_oid = to_object_id(sub_task_id, "Invalid Sub Task ID") if sub_task_id else None

        await self.project_cache.validate(project_oid, company_id)

        now = self.clock()
        today = self._today(now)

        existing = await self.store.find_open_conflicts(user_id, project_oid, today)
        if any(entry["projectId"] == project_oid for entry in existing):
            raise ConflictError("You have already checked in for this project today.")
        if any(entry.get("isRunning") for entry in existing):
            raise ConflictError("You have an active timer running for another project. Please check out first.")

        entry = TimeEntry(
            userId=user_id,
            projectId=project_oid,
            companyId=company_id,
            subTaskId=sub_task_oid,
            date=today,
            checkIn=now,
            isRunning=True,
            effectiveElapsedTime=0,
            pausedDuration=0,
        )
        document = await self.store.insert(entry)
        logger.info(f"User {user_id} checked in to project {project_oid} for {today}")
        return serialize_document(document)

    async def get_elapsed_time(self, user_id: ObjectId, company_id: ObjectId, project_id: str) -> dict:
        self._require_company(company_id)
        project_oid = to_object_id(project_id)
        now = self.clock()
        today = self._today(now)
        title = await self._project_title(project_oid, company_id)

        entry = await self.store.find_open(user_id, project_oid, company_id, today)
        if not entry:
            closed = await self.store.find_latest_closed(user_id, project_oid, company_id, today)
            if closed:
                return serialize_document({
                    "isRunning": False,
                    "isCheckedOut": True,
                    "elapsedTime": closed.get("totalDuration") or 0,
                    "pausedDuration": closed.get("pausedDuration") or 0,
                    "checkInTime": closed.get("checkIn"),
                    "lastPaused": None,
                    "totalDuration": closed.get("totalDuration") or 0,
                    "checkOutTime": closed.get("checkOut"),
                    "projectTitle": title,
                })
            return {
                "isRunning": False,
                "isCheckedOut": False,
                "elapsedTime": 0,
                "pausedDuration": 0,
                "checkInTime": None,
                "lastPaused": None,
                "totalDuration": None,
                "projectTitle": title,
            }

        if entry.get("isRunning"):
            elapsed = self._running_elapsed(entry, now)
        else:
            elapsed = entry.get("effectiveElapsedTime") or 0

        return serialize_document({
            "isRunning": entry.get("isRunning", False),
            "isCheckedOut": False,
            "elapsedTime": elapsed,
            "pausedDuration": entry.get("pausedDuration") or 0,
            "checkInTime": entry.get("checkIn"),
            "lastPaused": entry.get("lastPaused"),
            "totalDuration": None,
            "projectTitle": title,
        })

    async def pause_or_resume(self, user_id: ObjectId, company_id: ObjectId, project_id: str) -> dict:
        """
        Toggles the open entry between running and paused.
        The write is conditional on the state that was read. When it loses to a
        concurrent writer the entry is read again and the toggle retried, but
        only if the entry is still in the state this request meant to leave;
        otherwise the other request already did the work and this one conflicts.
        """
        self._require_company(company_id)
        project_oid = to_object_id(project_id)
        today = self._today()
        intended_from = None

        for attempt in range(self.cas_retries + 1):
            entry = await self.store.find_open(user_id, project_oid, company_id, today)
            if not entry:
                await self._missing_open_entry(user_id, project_oid, company_id, today,
                                               "No active session found to pause or resume.")

            was_running = bool(entry.get("isRunning"))
            if intended_from is None:
                intended_from = was_running
            elif was_running != intended_from:
                raise ConflictError("Timer was already paused or resumed by another request.")

            now = self.clock()
            if was_running:
                expected = {
                    "isRunning": True,
                    "isCheckedOut": False,
                    "pausedDuration": entry.get("pausedDuration"),
                    "lastPaused": None,
                }
                update = {"$set": {
                    "isRunning": False,
                    "lastPaused": now,
                    "effectiveElapsedTime": self._running_elapsed(entry, now),
                }}
            else:
                last_paused = entry.get("lastPaused")
                if not last_paused:
                    raise ConflictError("Cannot resume without a paused state.")

                running = await self.store.find_running_elsewhere(user_id, project_oid, today)
                if running:
                    raise ConflictError("You have an active timer running for another project. "
                                        "Please pause or check out first.")

                paused_seconds = self._clamped(whole_seconds_between(last_paused, now), entry, "pause")
                expected = {"isRunning": False, "isCheckedOut": False, "lastPaused": last_paused}
                update = {
                    "$set": {"isRunning": True, "lastPaused": None},
                    "$inc": {"pausedDuration": paused_seconds},
                }

            updated = await self.store.compare_and_set(entry["_id"], expected, update)
            if updated:
                break
            logger.warning(f"Lost pause/resume race on entry {entry['_id']} (attempt {attempt + 1})")
        else:
            raise ConflictError("Timer state changed concurrently. Refresh and try again.")

        if updated.get("isRunning"):
            elapsed = self._running_elapsed(updated, now)
        else:
            elapsed = updated.get("effectiveElapsedTime") or 0

        logger.info(f"User {user_id} {'resumed' if updated.get('isRunning') else 'paused'} project {project_oid}")
        return serialize_document({
            "isRunning": updated.get("isRunning", False),
            "isCheckedOut": False,
            "elapsedTime": elapsed,
            "pausedDuration": updated.get("pausedDuration") or 0,
            "checkInTime": updated.get("checkIn"),
            "lastPaused": updated.get("lastPaused"),
        })

    async def check_out(self, user_id: ObjectId, company_id: ObjectId, project_id: str) -> dict:
        self._require_company(company_id)
        project_oid = to_object_id(project_id)
        today = self._today()

        for attempt in range(self.cas_retries + 1):
            entry = await self.store.find_open(user_id, project_oid, company_id, today)
            if not entry:
                await self._missing_open_entry(user_id, project_oid, company_id, today,
                                               "No active session found to check out.")

            if not entry.get("isRunning") and entry.get("lastPaused"):
                raise ConflictError("Cannot check out while paused. Resume the timer before checking out.")

            now = self.clock()
            total_paused = entry.get("pausedDuration") or 0
            total_duration = self._clamped(whole_seconds_between(entry["checkIn"], now) - total_paused,
                                           entry, "total duration")

            expected = {
                "isCheckedOut": False,
                "isRunning": entry.get("isRunning"),
                "pausedDuration": entry.get("pausedDuration"),
            }
            update = {"$set": {
                "checkOut": now,
                "totalDuration": total_duration,
                "effectiveElapsedTime": total_duration,
                "isCheckedOut": True,
                "isRunning": False,
                "lastPaused": None,
            }}
            updated = await self.store.compare_and_set(entry["_id"], expected, update)
            if updated:
                break
            logger.warning(f"Lost check-out race on entry {entry['_id']} (attempt {attempt + 1})")
        else:
            raise ConflictError("Timer state changed concurrently. Refresh and try again.")

        logger.info(f"User {user_id} checked out of project {project_oid} after {total_duration}s")
        return serialize_document({
            "isRunning": False,
            "isCheckedOut": True,
            "totalDuration": total_duration,
            "elapsedTime": total_duration,
            "formattedTime": format_time(total_duration),
            "checkOutTime": now,
        })

    async def _users_by_id(self, user_ids: Iterable[ObjectId]) -> Dict[ObjectId, dict]:
        users = await self.users_collection.find(
            {"_id": {"$in": list(user_ids)}},
            {"name": 1, "avatar": 1, "role": 1},
        ).to_list(length=None)
        return {user["_id"]: user for user in users}

    async def _with_people_and_titles(self, entries):
        users = await self._users_by_id({entry["userId"] for entry in entries})
        titles = await self.projects.find_titles({entry["projectId"] for entry in entries})
        for entry in entries:
            user = users.get(entry["userId"], {})
            entry["user"] = {"name": user.get("name"), "avatar": user.get("avatar"), "role": user.get("role")}
            entry["projectTitle"] = titles.get(entry["projectId"], UNKNOWN_PROJECT)
        return entries

    async def get_user_time_project(self, user_id: ObjectId, company_id: ObjectId, project_id: str,
                                    date: Optional[str] = None) -> dict:
        self._require_company(company_id)
        project_oid = to_object_id(project_id, "Valid Project ID is required.")
        selected_date = parse_day_key(date) or self._today()

        entries = await self.store.find_for_day(user_id, project_oid, company_id, selected_date)
        if not entries:
            return {"projectId": str(project_oid), "date": selected_date, "totalTime": 0,
                    "formattedTotalTime": format_time(0), "entries": []}

        total_time = sum(entry.get("totalDuration") or entry.get("effectiveElapsedTime") or 0 for entry in entries)
        entries = await self._with_people_and_titles(entries)
        return serialize_document({
            "projectId": project_oid,
            "date": selected_date,
            "totalTime": total_time,
            "formattedTotalTime": format_time(total_time),
            "entries": entries,
        })

    async def get_users_time_project(self, company_id: ObjectId, project_id: str,
                                     start_date: Optional[str] = None, end_date: Optional[str] = None) -> list:
        self._require_company(company_id)
        project_oid = to_object_id(project_id, "Valid Project ID is required.")
        start_date = parse_day_key(start_date, "startDate")
        end_date = parse_day_key(end_date, "endDate")

        await self.project_cache.validate(project_oid, company_id)

        groups = await self.store.aggregate_by_user(project_oid, company_id, start_date, end_date)
        users = await self._users_by_id(group["_id"] for group in groups)

        results = []
        for group in groups:
            user = users.get(group["_id"])
            if not user:
                continue
            total = group.get("totalDuration") or 0
            results.append({
                "userId": group["_id"],
                "name": user.get("name"),
                "avatar": user.get("avatar"),
                "role": user.get("role"),
                "totalDuration": total,
                "totalSessions": group.get("totalSessions", 0),
                "avgSessionTime": round(group.get("avgSessionTime") or 0),
                "lastActivity": group.get("lastActivity"),
                "formattedTotalTime": format_hours_minutes(total),
            })
        return serialize_document(results)

    async def get_company_dashboard(self, company_id: ObjectId, start_date: Optional[str] = None,
                                    end_date: Optional[str] = None) -> dict:
        self._require_company(company_id)
        today = self._today()
        date_range = {
            "start": parse_day_key(start_date, "startDate") or shift_day_key(today, -self.dashboard_days),
            "end": parse_day_key(end_date, "endDate") or today,
        }

        active_timers = await self._with_people_and_titles(await self.store.find_active(company_id))

        groups = await self.store.aggregate_by_project(company_id, date_range["start"], date_range["end"])
        titles = await self.projects.find_titles(group["_id"] for group in groups)
        project_stats = [
            {
                "projectId": group["_id"],
                "projectTitle": titles[group["_id"]],
                "totalTime": group.get("totalTime") or 0,
                "totalSessions": group.get("totalSessions", 0),
                "uniqueUsersCount": len(group.get("uniqueUsers") or []),
                "avgSessionTime": round(group.get("avgSessionTime") or 0),
            }
            for group in groups
            if group["_id"] in titles
        ]

        today_activity = await self._with_people_and_titles(await self.store.find_company_day(company_id, today))

        return serialize_document({
            "activeTimers": len(active_timers),
            "activeTimerDetails": active_timers,
            "projectStats": project_stats,
            "todayActivity": today_activity,
            "dateRange": date_range,
        })
