"""
Identity Service

Resolves a bearer credential to a verified user identity.
"""

import asyncio
import logging
from typing import Optional

import firebase_admin
from bson import ObjectId
from firebase_admin import auth as firebase_auth, credentials
from jose import jwt, JWTError

from campool_chat.config import settings
from campool_chat.database import get_db
from campool_chat.models.identity import Identity
from campool_chat.errors import AuthenticationError
from campool_chat.utils.retry import run_with_retry


logger = logging.getLogger(__name__)


# =============================================================================
# Firebase Initialization
# =============================================================================

_firebase_app = None


def _init_firebase():
    """
    Initialize Firebase Admin SDK.

    SECURITY: The service account credentials must be kept secure.
    Never log or expose the credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    creds = settings.firebase_credentials
    if creds is None:
        raise RuntimeError(
            "Firebase credentials not configured. "
            "Set FIREBASE_SERVICE_ACCOUNT_JSON or FIREBASE_SERVICE_ACCOUNT_PATH in .env"
        )

    cred = credentials.Certificate(creds)
    _firebase_app = firebase_admin.initialize_app(cred)
    return _firebase_app


class IdentityService:
    """
    Credential verification for REST calls and WebSocket connects.

    SECURITY: Every chat operation runs as the identity returned here.
    Two providers are supported:
    - jwt: HS256 token signed with JWT_SECRET, ``sub`` = users._id
    - firebase: Firebase ID token, user looked up by ``firebase_uid``
    """

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or settings.auth_provider

    def decode_jwt(self, token: str) -> Optional[dict]:
        """Verify signature and expiry; return claims or None."""
        try:
            return jwt.decode(
                token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
            )
        except JWTError as e:
            logger.debug(f"JWT verification failed: {type(e).__name__}: {e}")
            return None

    def verify_firebase_token(self, id_token: str) -> Optional[dict]:
        """
        Verify a Firebase ID token and return the decoded claims.

        The token is verified against Firebase's public keys, which may
        involve a network fetch, so callers run this off the event loop.
        """
        _init_firebase()
        try:
            return firebase_auth.verify_id_token(id_token)
        except firebase_auth.InvalidIdTokenError:
            return None
        except firebase_auth.ExpiredIdTokenError:
            return None
        except ValueError:
            return None

    async def verify(self, token: Optional[str]) -> Identity:
        """
        Verify a credential within the configured timeout.

        Raises:
            AuthenticationError: missing, invalid or expired credential,
                unknown user, or verification timed out
            StoreUnavailableError: user lookup could not reach MongoDB
        """
        if not token:
            raise AuthenticationError("Authorization token required")

        try:
            return await asyncio.wait_for(
                self._resolve(token),
                timeout=settings.identity_verify_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Identity verification timed out")
            raise AuthenticationError("Identity verification timed out")

    async def _resolve(self, token: str) -> Identity:
        if self.provider == "firebase":
            claims = await asyncio.to_thread(self.verify_firebase_token, token)
            if not claims or not claims.get("uid"):
                raise AuthenticationError("Invalid or expired token")
            query = {"firebase_uid": claims["uid"]}
        else:
            claims = self.decode_jwt(token)
            if not claims or not claims.get("sub"):
                raise AuthenticationError("Invalid or expired token")
            sub = str(claims["sub"])
            query = {"_id": ObjectId(sub)} if ObjectId.is_valid(sub) else {"user_id": sub}

        db = get_db()
        doc = await run_with_retry(
            lambda: db.users.find_one(
                query, {"name": 1, "display_name": 1, "email": 1}
            ),
            label="user lookup",
        )
        if not doc:
            raise AuthenticationError("User not found")

        return self._identity_from_user(doc, claims)

    @staticmethod
    def _identity_from_user(doc: dict, claims: dict) -> Identity:
        email = doc.get("email") or claims.get("email")
        name = (
            doc.get("name")
            or doc.get("display_name")
            or claims.get("name")
            or (email.split("@")[0] if email else "Unknown")
        )
        return Identity(user_id=str(doc["_id"]), name=name, email=email)
