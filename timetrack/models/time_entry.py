from pydantic import BaseModel, ConfigDict
from bson import ObjectId
from datetime import datetime
from typing import Optional


class TimeEntry(BaseModel):
    """
    Authoritative timer record, one open entry per (user, project, day).
    Field names mirror the stored document.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    userId: ObjectId
    projectId: ObjectId
    companyId: ObjectId
    subTaskId: Optional[ObjectId] = None
    date: str  # calendar-day key, YYYY-MM-DD in the server zone
    checkIn: datetime
    checkOut: Optional[datetime] = None
    isRunning: bool = True
    lastPaused: Optional[datetime] = None
    pausedDuration: int = 0  # seconds
    effectiveElapsedTime: int = 0  # seconds, snapshotted at each pause
    totalDuration: Optional[int] = None  # seconds, written once at check-out
    isCheckedOut: bool = False
