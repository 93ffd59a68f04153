from pydantic import BaseModel
from typing import Any, Optional


class CheckInRequest(BaseModel):
    projectId: str
    subTaskId: Optional[str] = None


class ProjectRequest(BaseModel):
    projectId: str


class ApiResponse(BaseModel):
    statusCode: int
    success: bool = True
    data: Any = None
    message: str = "Success"
    error: Optional[str] = None


def api_response(status_code: int, data: Any, message: str) -> dict:
    return ApiResponse(statusCode=status_code, success=status_code < 400, data=data, message=message).model_dump()


def api_error(status_code: int, message: str, code: str) -> dict:
    return ApiResponse(statusCode=status_code, success=False, data=None, message=message, error=code).model_dump()
