from __future__ import annotations

import os
from typing import Any

import httpx

from app.domain.errors import (
    AuthError,
    ConflictError,
    ConsoleError,
    ForbiddenError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from app.infra.logging import get_logger

CONSOLE_BASE_URL = os.getenv("CONSOLE_BASE_URL", "http://localhost:8000")
CONSOLE_TIMEOUT_SECONDS = float(os.getenv("CONSOLE_TIMEOUT_SECONDS", "20"))

logger = get_logger(__name__)

_ERRORS_BY_STATUS: dict[int, type[ConsoleError]] = {
    401: AuthError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
}


class ConsoleClient:
    """Async client for the console REST surface.

    Error responses come back as the same ``ConsoleError`` subclasses the
    server raised.  Transport failures and 5xx answers become
    ``TransientNetworkError`` so callers can offer a retry.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=(base_url or CONSOLE_BASE_URL).rstrip("/"),
            timeout=httpx.Timeout(timeout or CONSOLE_TIMEOUT_SECONDS),
            transport=transport,
        )
        self.token = token
        self.refresh_token: str | None = None

    async def __aenter__(self) -> ConsoleClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params, headers=self._headers())
        except httpx.TransportError as exc:
            logger.warning("console request failed method=%s path=%s error=%s", method, path, exc)
            raise TransientNetworkError() from exc
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        if response.is_success:
            return response.json()
        if response.status_code >= 500:
            raise TransientNetworkError()
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = str(body.get("message") or response.reason_phrase or "request failed")
        if response.status_code == 400:
            raise ValidationError(message, field=body.get("field"))
        error_cls = _ERRORS_BY_STATUS.get(response.status_code, ConsoleError)
        raise error_cls(message)

    def _store_tokens(self, body: dict[str, Any]) -> str:
        self.token = str(body["accessToken"])
        if body.get("refreshToken"):
            self.refresh_token = str(body["refreshToken"])
        return self.token

    async def login(self, tenant_id: str, username: str, password: str) -> str:
        body = await self._request(
            "POST",
            "/api/auth/login",
            json={"tenantId": tenant_id, "username": username, "password": password},
        )
        return self._store_tokens(body)

    async def refresh(self) -> str:
        if not self.refresh_token:
            raise AuthError("no refresh token")
        body = await self._request("POST", "/api/auth/refresh", json={"refreshToken": self.refresh_token})
        return self._store_tokens(body)

    async def current_user(self) -> dict[str, Any]:
        return await self._request("GET", "/api/auth/user")

    async def switch_tenant(self, tenant_id: str) -> str:
        body = await self._request("POST", "/api/system/user/switch-tenant", json={"tenantId": tenant_id})
        return self._store_tokens(body)

    async def ref_permissions(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/system/role/ref-permissions")

    async def get_role(self, role_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/system/role/{role_id}")

    async def create_role(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/api/system/role/add", json=payload)

    async def update_role(self, role_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", f"/api/system/role/{role_id}/edit", json=payload)

    async def validate_role_code(self, tenant_id: str, code: str, exclude_id: str | None = None) -> None:
        await self._request(
            "POST",
            "/api/system/role/validate-code",
            json={"id": exclude_id, "tenantId": tenant_id, "code": code},
        )

    async def ref_roles(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/system/user/ref-roles")

    async def get_user(self, user_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/system/user/{user_id}")

    async def create_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/api/system/user/add", json=payload)

    async def update_user(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", f"/api/system/user/{user_id}/edit", json=payload)

    async def validate_username(self, tenant_id: str, username: str, exclude_id: str | None = None) -> None:
        await self._request(
            "POST",
            "/api/system/user/validate-username",
            json={"id": exclude_id, "tenantId": tenant_id, "username": username},
        )
