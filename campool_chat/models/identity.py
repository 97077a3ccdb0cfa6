"""Identity Model - Verified caller identity resolved from a bearer credential."""

from typing import Optional

from pydantic import BaseModel


class Identity(BaseModel):
    """
    Stable user identity.

    ``user_id`` is the string form of the user's ``users._id``; ``name`` is
    the display name at verification time.
    """
    user_id: str
    name: str
    email: Optional[str] = None
