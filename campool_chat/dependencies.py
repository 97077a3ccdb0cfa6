"""
Authentication Dependencies

FastAPI dependencies for resolving the caller's identity.
"""

from typing import Optional

from fastapi import HTTPException, status, Header

from campool_chat import state
from campool_chat.models.identity import Identity
from campool_chat.errors import AuthenticationError


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a ``Bearer <token>`` header, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


async def get_current_identity(
    authorization: Optional[str] = Header(None)
) -> Identity:
    """
    Get the verified identity behind the bearer credential.

    SECURITY: This is the authentication gate for every chat endpoint.

    Expects Authorization header: Bearer <token>
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        return await state.identity_service.verify(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"}
        )
