"""Access-token refresh against the DNSE auth service."""

from __future__ import annotations

import json
import logging

import httpx

from ..config import DEFAULT_AUTH_URL
from .exceptions import AuthServiceError, InvalidResponse, NotConfigured
from .interface import AccountStore
from .models import Credentials

logger = logging.getLogger(__name__)


class CredentialRefresher:
    """Exchanges the configured account secret for a fresh investor token.

    Each call to ``refresh()`` makes at most one HTTP request. Callers decide
    when to refresh; sessions do it at most once per lineage.

    A successful token is written to the owner account record so other
    processes pick it up. That write is best-effort: the returned credentials
    are usable even if the store is down.
    """

    def __init__(
        self,
        username: str | None,
        password: str | None,
        account_store: AccountStore | None = None,
        owner_record_id: str = "",
        auth_url: str = DEFAULT_AUTH_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._username = username
        self._password = password
        self._accounts = account_store
        self._owner_record_id = owner_record_id
        self._auth_url = auth_url
        self._timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._username and self._password)

    async def refresh(self) -> Credentials:
        """Obtain new credentials.

        Raises:
            NotConfigured: no username/password (no request is made)
            AuthServiceError: network failure or non-2xx status
            InvalidResponse: 2xx body without a token
        """
        if not self.configured:
            logger.error("DNSE credentials not configured, cannot refresh token")
            raise NotConfigured("DNSE username/password are not configured")

        logger.info("Refreshing DNSE token")
        response = await self._post_credentials()

        if not response.is_success:
            logger.error("DNSE auth failed: %d - %s", response.status_code, response.text)
            raise AuthServiceError(response.status_code, response.text)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise InvalidResponse(f"Auth response is not JSON: {e}") from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.error("Invalid response from DNSE auth API: %s", data)
            raise InvalidResponse("Auth response has no token")

        logger.info("Obtained new DNSE token")
        await self._persist_token(token)

        return Credentials(investor_token=token, investor_id=str(data.get("investorId") or ""))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Internal ---

    async def _post_credentials(self) -> httpx.Response:
        client = self._get_client()
        try:
            return await client.post(
                self._auth_url,
                json={"username": self._username, "password": self._password},
            )
        except httpx.HTTPError as e:
            logger.error("Error refreshing DNSE token: %s", e)
            raise AuthServiceError(None, str(e)) from e

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _persist_token(self, token: str) -> None:
        if self._accounts is None or not self._owner_record_id:
            logger.warning("No target account configured, new token not persisted")
            return
        try:
            updated = await self._accounts.update_token(self._owner_record_id, token)
        except Exception:
            logger.exception("Error updating account %s with new token", self._owner_record_id)
            return
        if updated:
            logger.info("Updated account %s with new token", self._owner_record_id)
        else:
            logger.warning("Account %s not found, new token not persisted", self._owner_record_id)
