from typing import Optional
from fastapi import APIRouter, Depends, Query

from timetrack.schemas.time_entry import CheckInRequest, ProjectRequest, api_response
from timetrack.services.time_tracking import TimeTrackingService
from timetrack.utils.app_utils import get_current_user, get_user_company_id, get_time_tracking_service

router = APIRouter()


@router.post("/checkIn")
async def check_in(
    body: CheckInRequest,
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    """
    Starts today's timer for a project.
    Raises:
        - 400 if the project id is malformed, the user already checked in to this
          project today, or another project's timer is running
        - 403 if the project does not belong to the user's company
    """
    user, user_type = user_and_type
    entry = await service.check_in(user["_id"], get_user_company_id(user, user_type), body.projectId, body.subTaskId)
    return api_response(200, entry, "Checked in successfully.")


@router.get("/getElapsedTime")
async def get_elapsed_time(
    projectId: Optional[str] = Query(None, description="Project to read today's timer for"),
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    """
    Returns the authoritative elapsed-time snapshot for today's entry.
    A day without an entry is not an error, it yields the zeroed snapshot.
    """
    user, user_type = user_and_type
    snapshot = await service.get_elapsed_time(user["_id"], get_user_company_id(user, user_type), projectId)
    if snapshot["checkInTime"] is None:
        return api_response(200, snapshot, "No active timer found")
    return api_response(200, snapshot, "Elapsed time fetched successfully.")


@router.put("/pauseOrResume")
async def pause_or_resume(
    body: ProjectRequest,
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    user, user_type = user_and_type
    data = await service.pause_or_resume(user["_id"], get_user_company_id(user, user_type), body.projectId)
    message = "Timer resumed successfully." if data["isRunning"] else "Timer paused successfully."
    return api_response(200, data, message)


@router.put("/checkOut")
async def check_out(
    body: ProjectRequest,
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    """
    Seals today's entry and returns its final duration.
    Raises:
        - 400 if the timer is paused or the entry is already checked out
        - 404 if there is no session to check out of
    """
    user, user_type = user_and_type
    data = await service.check_out(user["_id"], get_user_company_id(user, user_type), body.projectId)
    return api_response(200, data, "Checked out successfully.")


@router.get("/getUserTimeProject")
async def get_user_time_project(
    projectId: Optional[str] = Query(None),
    date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    user, user_type = user_and_type
    data = await service.get_user_time_project(user["_id"], get_user_company_id(user, user_type), projectId, date)
    if not data["entries"]:
        return api_response(200, data, f"No time data found for project on {data['date']}.")
    return api_response(200, data, f"User time for {data['date']} fetched successfully.")


@router.get("/getUsersTimeProject")
async def get_users_time_project(
    projectId: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None, description="YYYY-MM-DD"),
    endDate: Optional[str] = Query(None, description="YYYY-MM-DD"),
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    user, user_type = user_and_type
    data = await service.get_users_time_project(get_user_company_id(user, user_type), projectId, startDate, endDate)
    message = "Project users' time fetched successfully." if data else "No users found for this project."
    return api_response(200, data, message)


@router.get("/company-dashboard")
async def get_company_dashboard(
    startDate: Optional[str] = Query(None, description="YYYY-MM-DD"),
    endDate: Optional[str] = Query(None, description="YYYY-MM-DD"),
    user_and_type: tuple = Depends(get_current_user),
    service: TimeTrackingService = Depends(get_time_tracking_service),
):
    """
    Company-wide view: running timers, per-project totals over the date range
    (last week by default) and everything tracked today.
    """
    user, user_type = user_and_type
    data = await service.get_company_dashboard(get_user_company_id(user, user_type), startDate, endDate)
    return api_response(200, data, "Company dashboard data fetched successfully.")
