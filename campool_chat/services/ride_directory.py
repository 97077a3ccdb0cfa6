"""Ride Directory - Validates ride rooms against the rides collection."""

from typing import List, Optional

from bson import ObjectId

from campool_chat.config import settings
from campool_chat.database import get_db
from campool_chat.models.ride import RideInfo
from campool_chat.errors import (
    ChatValidationError,
    ForbiddenError,
    RideNotFoundError,
)
from campool_chat.utils.retry import run_with_retry


RIDE_PROJECTION = {
    "driverId": 1,
    "startPoint": 1,
    "destination": 1,
    "status": 1,
    "passengers": 1,
}


def parse_ride_id(ride_id) -> ObjectId:
    """Ride ids are MongoDB ObjectIds; anything else is a validation failure."""
    if not ride_id or not isinstance(ride_id, str) or not ObjectId.is_valid(ride_id):
        raise ChatValidationError("Invalid rideId")
    return ObjectId(ride_id)


def _user_keys(user_id: str) -> list:
    """The ride service stores user refs as ObjectIds; match either form."""
    keys = [user_id]
    if ObjectId.is_valid(user_id):
        keys.append(ObjectId(user_id))
    return keys


class RideDirectory:
    """
    Read-only access to rides owned by the ride-posting service.

    A chat room exists exactly when its ride exists.
    """

    def __init__(self, restrict_to_participants: Optional[bool] = None):
        if restrict_to_participants is None:
            restrict_to_participants = settings.chat_restrict_to_participants
        self.restrict_to_participants = restrict_to_participants

    async def get_ride(self, ride_id: str) -> RideInfo:
        """
        Load a ride by id.

        Raises:
            ChatValidationError: malformed id
            RideNotFoundError: no such ride
        """
        oid = parse_ride_id(ride_id)
        db = get_db()

        doc = await run_with_retry(
            lambda: db.rides.find_one({"_id": oid}, RIDE_PROJECTION),
            label="ride lookup",
        )
        if not doc:
            raise RideNotFoundError()

        return RideInfo.from_document(doc)

    async def get_ride_or_none(self, ride_id: str) -> Optional[RideInfo]:
        try:
            return await self.get_ride(ride_id)
        except (ChatValidationError, RideNotFoundError):
            return None

    async def require_access(self, ride_id: str, user_id: str) -> RideInfo:
        """
        Load a ride and check the caller may use its chat room.

        Any authenticated user passes unless participant gating is enabled,
        in which case only the driver and accepted passengers do.
        """
        ride = await self.get_ride(ride_id)

        if self.restrict_to_participants and not ride.is_participant(user_id):
            raise ForbiddenError("You are not a participant of this ride")

        return ride

    async def rides_for_user(self, user_id: str, limit: int = 100) -> List[RideInfo]:
        """Rides the user drives or rides in, newest first."""
        db = get_db()
        keys = _user_keys(user_id)
        query = {
            "$or": [
                {"driverId": {"$in": keys}},
                {"passengers.userId": {"$in": keys}},
            ]
        }

        async def _load():
            cursor = db.rides.find(query, RIDE_PROJECTION).sort("_id", -1).limit(limit)
            return [doc async for doc in cursor]

        docs = await run_with_retry(_load, label="user rides lookup")
        return [RideInfo.from_document(doc) for doc in docs]
