"""Sign-in against the hosted authentication provider.

The provider is a black box: it takes credentials and yields a user identity
plus an id token that authorizes document reads and writes.
"""

from dataclasses import dataclass

import httpx

from rebanho.core.config import require_backend_config, settings
from rebanho.data.models import AppUser

IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"


class AuthError(Exception):
    """Raised when sign-in fails."""

    pass


@dataclass(frozen=True)
class Session:
    user: AppUser
    id_token: str
    refresh_token: str | None = None


async def sign_in_with_password(email: str, password: str) -> Session:
    """Sign in with email and password.

    Raises:
        AuthError: If the provider rejects the credentials or is unreachable
    """
    require_backend_config()
    async with httpx.AsyncClient() as client:
        try:
            response = await client.post(
                f"{IDENTITY_URL}/accounts:signInWithPassword",
                params={"key": settings.firebase_api_key},
                json={"email": email, "password": password, "returnSecureToken": True},
                timeout=settings.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                reason = e.response.json().get("error", {}).get("message", "")
            except ValueError:
                reason = e.response.text
            raise AuthError(f"Sign-in failed: {reason or e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AuthError(f"Sign-in failed: {e}") from e

    data = response.json()
    user = AppUser(
        uid=data["localId"],
        display_name=data.get("displayName") or None,
        email=data.get("email"),
        photo_url=data.get("profilePicture"),
    )
    return Session(user=user, id_token=data["idToken"], refresh_token=data.get("refreshToken"))


def session_from_settings() -> Session | None:
    """Build a session from pre-issued credentials in the environment."""
    if not settings.rebanho_user_id or not settings.rebanho_id_token:
        return None
    return Session(user=AppUser(uid=settings.rebanho_user_id), id_token=settings.rebanho_id_token)
