"""Persisted client credentials.

One redis hash per client profile holding the session token, user id and
display name. Written only when a login flow succeeds; read at process
start to skip re-authentication. Fail-fast: connection errors propagate.
"""

import logging

import redis

from auth.config import AuthConfig
from auth.types import AuthSession

logger = logging.getLogger(__name__)


class CredentialStore:
    """Key-value persistence for the current AuthSession."""

    FIELDS = ("session_token", "user_id", "display_name", "two_factor_enabled")

    def __init__(self, client: redis.Redis, key_prefix: str = "stepup:credentials:", profile: str = "default"):
        self._client = client
        self._key = f"{key_prefix}{profile}"

    @classmethod
    def from_config(cls, config: AuthConfig, profile: str = "default") -> "CredentialStore":
        """
        Connect using config.credential_store_url.

        Raises:
            redis.ConnectionError: If the store is unreachable
        """
        client = redis.from_url(config.credential_store_url, decode_responses=True)
        client.ping()
        logger.info("CredentialStore connected")
        return cls(client, key_prefix=config.credential_key_prefix, profile=profile)

    def save(self, session: AuthSession) -> None:
        self._client.hset(
            self._key,
            mapping={
                "session_token": session.session_token,
                "user_id": session.user_id,
                "display_name": session.display_name,
                "two_factor_enabled": "1" if session.two_factor_enabled else "0",
            },
        )
        logger.info(f"Credentials saved for user {session.user_id}")

    def load(self) -> AuthSession | None:
        """
        Previously saved session, or None.

        A partial record (no token or no user id) counts as absent.
        """
        data = self._client.hgetall(self._key)
        if not data or not data.get("session_token") or not data.get("user_id"):
            return None

        return AuthSession(
            session_token=data["session_token"],
            user_id=data["user_id"],
            display_name=data.get("display_name") or "",
            two_factor_enabled=data.get("two_factor_enabled") == "1",
        )

    def clear(self) -> None:
        """Forget stored credentials. Safe to call when nothing is stored."""
        self._client.delete(self._key)
