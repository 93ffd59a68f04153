import logging
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from timetrack.exceptions import ConflictError
from timetrack.models.time_entry import TimeEntry

logger = logging.getLogger(__name__)


class TimeEntryStore:
    """
    Persistence for TimeEntry documents.
    Every state transition after creation goes through `compare_and_set`, a
    single `find_one_and_update` whose filter repeats the discriminants the
    caller read, so two writers racing on one entry cannot both win.
    """

    def __init__(self, collection):
        self.collection = collection

    async def insert(self, entry: TimeEntry) -> dict:
        document = entry.model_dump()
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError:
            logger.warning(f"Duplicate open entry rejected for user {entry.userId} on {entry.date}")
            raise ConflictError("You have already checked in for this project today.")
        document["_id"] = result.inserted_id
        return document

    async def find_open(self, user_id: ObjectId, project_id: ObjectId, company_id: ObjectId,
                        date: str) -> Optional[dict]:
        return await self.collection.find_one({
            "userId": user_id,
            "projectId": project_id,
            "companyId": company_id,
            "date": date,
            "isCheckedOut": False,
        })

    async def find_latest_closed(self, user_id: ObjectId, project_id: ObjectId, company_id: ObjectId,
                                 date: str) -> Optional[dict]:
        entries = await self.collection.find({
            "userId": user_id,
            "projectId": project_id,
            "companyId": company_id,
            "date": date,
            "isCheckedOut": True,
        }).sort("checkOut", DESCENDING).to_list(length=1)
        return entries[0] if entries else None

    async def find_open_conflicts(self, user_id: ObjectId, project_id: ObjectId, date: str) -> List[dict]:
        """Open entries on this project plus any running entry of the user for the day."""
        return await self.collection.find({
            "userId": user_id,
            "date": date,
            "isCheckedOut": False,
            "$or": [
                {"projectId": project_id},
                {"isRunning": True},
            ],
        }).to_list(length=None)

    async def find_running_elsewhere(self, user_id: ObjectId, project_id: ObjectId, date: str) -> Optional[dict]:
        return await self.collection.find_one({
            "userId": user_id,
            "date": date,
            "isRunning": True,
            "isCheckedOut": False,
            "projectId": {"$ne": project_id},
        })

    async def compare_and_set(self, entry_id: ObjectId, expected: dict, update: dict) -> Optional[dict]:
        """
        Applies `update` only if the stored entry still matches `expected`.
        Returns the updated document, or None when another writer got there first.
        """
        query = {"_id": entry_id}
        query.update(expected)
        try:
            return await self.collection.find_one_and_update(
                query,
                update,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            logger.warning(f"Update on entry {entry_id} would leave two running timers for the day")
            raise ConflictError("You have an active timer running for another project. Please check out first.")

    async def find_for_day(self, user_id: ObjectId, project_id: ObjectId, company_id: ObjectId,
                           date: str) -> List[dict]:
        return await self.collection.find({
            "userId": user_id,
            "projectId": project_id,
            "companyId": company_id,
            "date": date,
        }).sort("checkIn", DESCENDING).to_list(length=None)

    async def find_active(self, company_id: ObjectId) -> List[dict]:
        return await self.collection.find({
            "companyId": company_id,
            "isRunning": True,
            "isCheckedOut": False,
        }).to_list(length=None)

    async def find_company_day(self, company_id: ObjectId, date: str) -> List[dict]:
        return await self.collection.find({
            "companyId": company_id,
            "date": date,
        }).sort("checkIn", DESCENDING).to_list(length=None)

    async def aggregate_by_user(self, project_id: ObjectId, company_id: ObjectId,
                                start_date: str = None, end_date: str = None) -> List[dict]:
        match = {
            "projectId": project_id,
            "companyId": company_id,
            "isCheckedOut": True,
        }
        if start_date and end_date:
            match["date"] = {"$gte": start_date, "$lte": end_date}

        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": "$userId",
                    "totalDuration": {"$sum": "$totalDuration"},
                    "totalSessions": {"$sum": 1},
                    "avgSessionTime": {"$avg": "$totalDuration"},
                    "lastActivity": {"$max": "$checkOut"},
                }
            },
            {"$sort": {"totalDuration": -1}},
        ]
        return await self.collection.aggregate(pipeline).to_list(length=None)

    async def aggregate_by_project(self, company_id: ObjectId, start_date: str, end_date: str) -> List[dict]:
        pipeline = [
            {
                "$match": {
                    "companyId": company_id,
                    "date": {"$gte": start_date, "$lte": end_date},
                    "isCheckedOut": True,
                }
            },
            {
                "$group": {
                    "_id": "$projectId",
                    "totalTime": {"$sum": "$totalDuration"},
                    "totalSessions": {"$sum": 1},
                    "uniqueUsers": {"$addToSet": "$userId"},
                    "avgSessionTime": {"$avg": "$totalDuration"},
                }
            },
            {"$sort": {"totalTime": -1}},
        ]
        return await self.collection.aggregate(pipeline).to_list(length=None)
