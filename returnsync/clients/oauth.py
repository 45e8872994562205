"""
OAuth2 token lifecycle for the inbox provider.

Public-client flow: authorization-code and refresh-token grants with a
client id only, no client secret.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from returnsync import config
from returnsync.db import DatabaseConnection, UnitOfWork
from returnsync.errors import AuthError, DecodeError, NetworkError
from returnsync.models.oauth import OAuthSession, TokenResponse

logger = logging.getLogger(__name__)

PROVIDER = "gmail"


class GmailTokenManager:
    """
    Owns the inbox OAuth session.

    The session is loaded from the store once, refreshed when expired (or
    when a call is rejected) and written back after every successful refresh.
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        client_id: str | None = None,
        redirect_uri: str | None = None,
        session: requests.Session | None = None,
        timeout: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.connection = connection
        self.client_id = client_id if client_id is not None else config.GMAIL_CLIENT_ID
        self.redirect_uri = redirect_uri or config.GMAIL_REDIRECT_URI
        self.http = session or requests.Session()
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._session: OAuthSession | None = None
        self._lock = threading.RLock()

    @property
    def current_session(self) -> OAuthSession | None:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        """A refresh token, or an access token that has not expired yet."""
        session = self._session
        if session is None:
            return False
        return session.refresh_token is not None or not session.is_expired(
            self._clock()
        )

    def load(self) -> OAuthSession | None:
        """Load the stored session into memory."""
        with UnitOfWork(self.connection) as uow:
            self._session = uow.oauth_sessions.get(PROVIDER)
        return self._session

    def authorization_url(self, state: str | None = None) -> str:
        """Consent screen URL requesting offline access to the inbox."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": config.GMAIL_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{config.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> OAuthSession:
        """
        Exchange an authorization code for tokens and persist them.

        Raises:
            AuthError: If the provider rejects the code
            NetworkError: On transport errors
        """
        token = self._token_request(
            {
                "client_id": self.client_id,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )

        now = self._clock()
        session = OAuthSession(
            provider=PROVIDER,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=token.expires_at(now),
            updated_at=now,
        )
        session.provider_email = self._fetch_profile_email(session.access_token)

        with self._lock:
            self._persist(session)
        logger.info("Inbox account connected")
        return session

    def get_valid_token(self) -> str:
        """
        Return a usable access token, refreshing first if it has expired.

        Raises:
            AuthError: If there is no session or it cannot be refreshed
        """
        with self._lock:
            session = self._session
            if session is None:
                raise AuthError("Inbox account is not connected")

            if not session.is_expired(self._clock()):
                return session.access_token

            return self._refresh_locked().access_token

    def refresh(self, rejected_token: str | None = None) -> OAuthSession:
        """
        Force a refresh-token grant regardless of expiry.

        Used when the provider rejects a token that looked valid. When
        ``rejected_token`` is given and another caller already replaced it,
        the current session is returned without another grant.
        """
        with self._lock:
            session = self._session
            if (
                rejected_token is not None
                and session is not None
                and session.access_token != rejected_token
            ):
                return session
            return self._refresh_locked()

    def logout(self) -> None:
        """Forget the session in memory and in the store."""
        with self._lock:
            self._session = None
            with UnitOfWork(self.connection) as uow:
                uow.oauth_sessions.delete(PROVIDER)
                uow.commit()
        logger.info("Inbox account disconnected")

    def _refresh_locked(self) -> OAuthSession:
        session = self._session
        if session is None or not session.refresh_token:
            raise AuthError("No refresh token available")

        token = self._token_request(
            {
                "client_id": self.client_id,
                "refresh_token": session.refresh_token,
                "grant_type": "refresh_token",
            }
        )

        now = self._clock()
        refreshed = session.model_copy(
            update={
                "access_token": token.access_token,
                # Providers usually omit the refresh token on refresh
                "refresh_token": token.refresh_token or session.refresh_token,
                "expires_at": token.expires_at(now),
                "updated_at": now,
            }
        )
        self._persist(refreshed)
        logger.info(
            "Refreshed inbox access token",
            extra={"json_fields": {"expires_at": refreshed.expires_at}},
        )
        return refreshed

    def _persist(self, session: OAuthSession) -> None:
        with UnitOfWork(self.connection) as uow:
            uow.oauth_sessions.upsert(session)
            uow.commit()
        self._session = session

    def _token_request(self, data: dict[str, str]) -> TokenResponse:
        try:
            response = self.http.post(
                config.GOOGLE_TOKEN_URL,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Token request failed: {e}") from e

        if response.status_code in (400, 401):
            # invalid_grant and friends: the grant is dead, not the network
            raise AuthError(f"Token request rejected ({response.status_code})")

        try:
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Token request failed: {e}") from e

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(f"Invalid token response: {e}") from e

    def _fetch_profile_email(self, access_token: str) -> str | None:
        try:
            response = self.http.get(
                f"{config.GMAIL_API_BASE_URL}/profile",
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json().get("emailAddress")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Failed to fetch inbox profile: %s", e)
            return None
