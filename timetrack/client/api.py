import logging
from typing import Any, Optional

import httpx

from timetrack.exceptions import (ERRORS_BY_CODE, AuthorizationError, NetworkError, NotFoundError,
                                  TimeTrackingError, ValidationError)

logger = logging.getLogger(__name__)


class TimeTrackerAPI:
    """
    httpx client for the time tracking REST surface.
    Returns the envelope's `data` and turns failures back into the shared error
    taxonomy, reading the envelope's error code before the HTTP status.
    """

    def __init__(self, base_url: str, token: str = None, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport = None):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    @staticmethod
    def _error_for(status_code: int, payload: dict) -> TimeTrackingError:
        message = payload.get("message") or payload.get("detail") or f"Request failed with status {status_code}"
        if status_code >= 500:
            return NetworkError(message, status_code=status_code)

        error_class = ERRORS_BY_CODE.get(payload.get("error"))
        if error_class is None:
            if status_code in (401, 403):
                error_class = AuthorizationError
            elif status_code == 404:
                error_class = NotFoundError
            else:
                error_class = ValidationError
        return error_class(message, status_code=status_code)

    async def request(self, method: str, path: str, params: dict = None, json: dict = None) -> Any:
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_error or payload.get("success") is False:
            error = self._error_for(response.status_code, payload)
            logger.debug(f"{method} {path} failed with {error.code}: {error.message}")
            raise error
        return payload.get("data")

    async def check_in(self, project_id: str, sub_task_id: Optional[str] = None) -> dict:
        body = {"projectId": project_id}
        if sub_task_id:
            body["subTaskId"] = sub_task_id
        return await self.request("POST", "/checkIn", json=body)

    async def get_elapsed_time(self, project_id: str) -> dict:
        return await self.request("GET", "/getElapsedTime", params={"projectId": project_id})

    async def pause_or_resume(self, project_id: str) -> dict:
        return await self.request("PUT", "/pauseOrResume", json={"projectId": project_id})

    async def check_out(self, project_id: str) -> dict:
        return await self.request("PUT", "/checkOut", json={"projectId": project_id})

    async def get_user_time_project(self, project_id: str, date: Optional[str] = None) -> dict:
        return await self.request("GET", "/getUserTimeProject", params={"projectId": project_id, "date": date})

    async def get_users_time_project(self, project_id: str, start_date: Optional[str] = None,
                                     end_date: Optional[str] = None) -> list:
        return await self.request("GET", "/getUsersTimeProject",
                                  params={"projectId": project_id, "startDate": start_date, "endDate": end_date})

    async def get_company_dashboard(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
        return await self.request("GET", "/company-dashboard", params={"startDate": start_date, "endDate": end_date})
