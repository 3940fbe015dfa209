"""
HTTP client for the permission and notification endpoints.

Every transport failure, non-2xx response and malformed body surfaces as
``ApiError`` so the components built on top can handle failures locally
instead of leaking ``httpx`` or decoding exceptions to UI code.
"""

import logging
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from hms.auth.permissions import PermissionGrant
from hms.auth.roles import Role, parse_role
from hms.client.models import Notification

logger = logging.getLogger(__name__)

# raised while decoding a 2xx body that does not have the expected shape
_MALFORMED = (KeyError, TypeError, AttributeError, ValueError)


class ApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HMSApiClient:
    def __init__(self, base_url: str, token: str | None = None, *,
                 timeout: float = 10.0, http: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ApiError(f"{method} {path} returned {resp.status_code}", status_code=resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(f"{method} {path} returned invalid JSON", status_code=resp.status_code) from exc

    # ── Auth ──

    async def login(self, email: str, password: str) -> dict:
        """Log in and keep the returned token for subsequent requests."""
        data = await self._request("POST", "/api/auth/login",
                                   json={"email": email, "password": password})
        try:
            token, user = data["access_token"], data["user"]
        except _MALFORMED as exc:
            raise ApiError(f"POST /api/auth/login returned a malformed body: {exc!r}") from exc
        self.token = token
        return user

    # ── Permissions ──

    async def fetch_current_permissions(self) -> tuple[Role | None, list[PermissionGrant]]:
        """Grant-fetch endpoint: the caller's role and its explicit grant rows."""
        data = await self._request("GET", "/api/permissions/current") or {}
        grants = []
        try:
            for row in data.get("permissions") or []:
                grant = PermissionGrant.from_dict(row)
                if grant is None:
                    logger.debug("Skipping grant row with unknown role/module: %s", row)
                    continue
                grants.append(grant)
            role = parse_role(data.get("role"))
        except _MALFORMED as exc:
            raise ApiError(f"GET /api/permissions/current returned a malformed body: {exc!r}") from exc
        return role, grants

    # ── Notifications ──

    async def list_notifications(self, user_id: str) -> list[Notification]:
        path = f"/api/user-notifications/{user_id}"
        data = await self._request("GET", path) or []
        try:
            return [Notification.from_dict(row) for row in data]
        except _MALFORMED as exc:
            raise ApiError(f"GET {path} returned a malformed notification list: {exc!r}") from exc

    async def mark_read(self, notification_id: str) -> None:
        await self._request("PATCH", f"/api/user-notifications/{notification_id}/read")

    async def mark_all_read(self, user_id: str) -> None:
        await self._request("PATCH", f"/api/user-notifications/{user_id}/read-all")

    async def delete_notification(self, notification_id: str) -> None:
        await self._request("DELETE", f"/api/user-notifications/{notification_id}")

    def notifications_ws_url(self, user_id: str, role: str) -> str:
        """Push channel address for (user_id, role) on the same host as the API."""
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        query = urlencode({"userId": user_id, "userRole": role})
        return urlunsplit((scheme, parts.netloc, "/ws/notifications", query, ""))
