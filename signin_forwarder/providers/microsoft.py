"""Microsoft Graph sign-in log client."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..models import SignInEvent

logger = logging.getLogger(__name__)

LOGIN_BASE = "https://login.microsoftonline.com"
GRAPH_BASE = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_REFRESH_MARGIN = 60


class GraphAuthError(RuntimeError):
    """Raised when an access token cannot be obtained."""


class GraphRequestError(RuntimeError):
    """Raised when the sign-in log cannot be read."""


def signin_filter(since: datetime) -> str:
    """Return the ``$filter`` expression selecting sign-ins created at or after ``since``."""

    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc)
    return "createdDateTime ge " + since.strftime("%Y-%m-%dT%H:%M:%SZ")


class GraphClient:
    """App-only Graph client using the client-credentials flow."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def token_url(self) -> str:
        return f"{LOGIN_BASE}/{self._tenant_id}/oauth2/v2.0/token"

    async def authenticate(self) -> None:
        data = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            resp = await self._client.post(self.token_url, data=data, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise GraphAuthError(f"token request failed: {exc}") from exc
        if not resp.is_success:
            raise GraphAuthError(f"token request rejected ({resp.status_code}): {_error_text(resp)}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise GraphAuthError(f"token endpoint returned invalid JSON ({resp.status_code})") from exc
        if not isinstance(payload, dict):
            raise GraphAuthError("token endpoint returned an unexpected body")
        token = payload.get("access_token")
        if not token:
            raise GraphAuthError("token response did not contain an access_token")
        self._token = token
        self._expires_at = time.time() + float(payload.get("expires_in", 3600))
        logger.debug("Obtained Graph token valid for %ss", payload.get("expires_in"))

    async def _ensure_token(self) -> str:
        if not self._token or self._expires_at <= time.time() + TOKEN_REFRESH_MARGIN:
            await self.authenticate()
        return self._token  # type: ignore[return-value]

    async def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        token = await self._ensure_token()
        try:
            resp = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise GraphRequestError(f"request to {url} failed: {exc}") from exc
        if not resp.is_success:
            raise GraphRequestError(f"{url} returned {resp.status_code}: {_error_text(resp)}")
        try:
            return resp.json()
        except ValueError as exc:
            raise GraphRequestError(f"{url} returned invalid JSON") from exc

    async def list_signins_with_filter(self, filter_expr: str) -> List[SignInEvent]:
        """Return every sign-in matching ``filter_expr``, following pagination."""

        signins: List[SignInEvent] = []
        payload = await self._get(f"{GRAPH_BASE}/auditLogs/signIns", params={"$filter": filter_expr})
        while True:
            for item in payload.get("value", []):
                try:
                    signins.append(SignInEvent.model_validate(item))
                except ValidationError as exc:
                    logger.warning("Skipping malformed sign-in %s: %s", item.get("id"), exc)
            next_link = payload.get("@odata.nextLink")
            if not next_link:
                break
            payload = await self._get(next_link)
        return signins

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if not isinstance(body, dict):
        return str(body)[:200]
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or str(error)
    return body.get("error_description") or str(error or body)[:200]


__all__ = [
    "GRAPH_BASE",
    "GraphAuthError",
    "GraphClient",
    "GraphRequestError",
    "signin_filter",
]
