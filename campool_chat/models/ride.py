"""Ride Model - Read-only view of rides owned by the ride-posting service."""

from typing import List, Optional

from pydantic import BaseModel, Field


# A passenger stays on the ride unless they cancelled
CANCELLED_PASSENGER_STATUS = "cancelled"


class RideInfo(BaseModel):
    """
    The fields of a ``rides`` document that chat needs.

    The collection keeps the ride service's camelCase keys
    (``driverId``, ``startPoint``, ``passengers.userId``).
    """
    ride_id: str
    driver_id: Optional[str] = None
    start_point: str = ""
    destination: str = ""
    status: Optional[str] = None
    passenger_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: dict) -> "RideInfo":
        passengers = [
            str(p["userId"])
            for p in doc.get("passengers", [])
            if p.get("userId") is not None
            and p.get("status") != CANCELLED_PASSENGER_STATUS
        ]
        driver_id = doc.get("driverId")
        return cls(
            ride_id=str(doc["_id"]),
            driver_id=str(driver_id) if driver_id is not None else None,
            start_point=doc.get("startPoint", ""),
            destination=doc.get("destination", ""),
            status=doc.get("status"),
            passenger_ids=passengers,
        )

    @property
    def title(self) -> str:
        return f"{self.start_point} → {self.destination}"

    def is_participant(self, user_id: str) -> bool:
        """Driver or accepted passenger."""
        return user_id == self.driver_id or user_id in self.passenger_ids
