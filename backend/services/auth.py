"""
Session → identity resolution.

  1. The client sends the hosted-auth access token as `Authorization: Bearer`
  2. GET {SUPABASE_URL}/auth/v1/user validates it and returns the user
  3. The role comes from app_users ('admin' → admin, anything else → talent)
  4. Talents are linked to their roster row through models.user_id

The payout engine never sees any of this; only main.py's dependencies do.
"""

import logging
from typing import Optional

import httpx

import config
from models.schemas import Identity, Role
from services.repository import PayoutRepository

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Missing, expired or unknown session."""


class AuthClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else config.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.SUPABASE_ANON_KEY
        self._transport = transport

    def get_user(self, access_token: str) -> dict:
        """Validate an access token against hosted auth and return the user object."""
        if not self.base_url:
            raise AuthenticationError("Authentication backend is not configured")

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token}",
        }
        try:
            with httpx.Client(timeout=config.REQUEST_TIMEOUT, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Auth service unreachable: {e}")
            raise AuthenticationError(f"Could not reach the auth service: {e}") from e

        if response.status_code != 200:
            logger.info(f"Rejected session token (status {response.status_code})")
            raise AuthenticationError("Invalid or expired session")

        try:
            user = response.json()
        except ValueError as e:
            logger.error(f"Auth service returned a non-JSON body: {e}")
            raise AuthenticationError("Auth service returned an unreadable response") from e
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthenticationError("Auth service returned no user id")
        return user


def resolve_identity(user: dict, repo: PayoutRepository) -> Identity:
    """Attach role and talent link to an authenticated hosted-auth user."""
    user_id = str(user["id"])
    role = repo.get_role(user_id)
    if role is None:
        raise AuthenticationError(f"User {user_id} has no role assigned")

    talent_id = None
    if role == Role.TALENT:
        talent = repo.find_talent_by_user(user_id)
        talent_id = talent.id if talent else None

    identity = Identity(
        user_id=user_id,
        email=user.get("email"),
        role=role,
        talent_id=talent_id,
    )
    logger.debug(f"Resolved identity {identity.email or user_id}: role={role.value}")
    return identity
