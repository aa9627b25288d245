"""Thin async HTTP client for the Orkee API envelope.

Every endpoint answers ``{"success": bool, "data": ..., "error": str}``.
:class:`ApiClient` unwraps ``data`` and turns anything else into a typed,
message-bearing error.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..errors import ProviderConnectionError, TransportError

DEFAULT_API_BASE_URL = "http://localhost:4001"
DEFAULT_TIMEOUT = 10.0
HEALTH_PATH = "/api/health"


class ApiEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    data: Any = None
    error: Optional[str] = None


class ApiClient:
    """Shared request helper composed by the REST-backed providers.

    Parameters
    ----------
    base_url:
        Root of the Orkee API, e.g. ``http://localhost:4001``.
    token:
        Optional bearer token attached to every request.
    transport:
        Optional httpx transport (tests pass :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def ping(self, path: str = HEALTH_PATH) -> None:
        """Check that the API answers; raise :class:`ProviderConnectionError` otherwise."""
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(f"Failed to connect to Orkee API at {self.base_url}: {exc}") from exc
        if response.is_error:
            raise ProviderConnectionError(
                f"Failed to connect to Orkee API at {self.base_url} (status {response.status_code})"
            )
        logger.debug("Orkee API reachable at {}", self.base_url)

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        """Send a request and return the envelope's ``data``."""
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        envelope = self._parse(response)
        if response.is_error or envelope is None or not envelope.success:
            message = envelope.error if envelope is not None and envelope.error else None
            raise TransportError(
                message or f"{method} {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return envelope.data

    @staticmethod
    def _parse(response: httpx.Response) -> Optional[ApiEnvelope]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return ApiEnvelope.model_validate(payload)
        except PydanticValidationError:
            return None
