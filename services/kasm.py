"""
Kasm Workspaces API client.

Every call is a POST to ``{api_url}{endpoint}`` with the API key pair in the
JSON body.
"""

import logging
from typing import Any

import httpx

from config.settings import settings

from .errors import KasmApiError

logger = logging.getLogger(__name__)


class KasmClient:
    """Async client for the Kasm session API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        api_key_secret: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_url = (api_url or settings.kasm_api_url or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.kasm_api_key
        self.api_key_secret = (
            api_key_secret if api_key_secret is not None else settings.kasm_api_key_secret
        )
        self.timeout_seconds = timeout_seconds or settings.kasm_timeout_seconds
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request_kasm(
        self,
        image_id: str,
        user_id: str,
        environment: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a new session; returns kasm_id, kasm_url, hostname, port_map..."""
        logger.info(f"[Kasm] Requesting new session (image={image_id})")
        body: dict[str, Any] = {"image_id": image_id, "user_id": user_id}
        if environment:
            body["environment"] = environment
        return await self._post("/request_kasm", body)

    async def get_kasm_status(self, kasm_id: str) -> dict[str, Any]:
        response = await self._post("/get_kasm", {"kasm_id": kasm_id})
        return response.get("kasm", {})

    async def destroy_kasm(self, kasm_id: str) -> None:
        logger.info(f"[Kasm] Destroying session {kasm_id}")
        await self._post("/destroy_kasm", {"kasm_id": kasm_id})

    async def keepalive(self, kasm_id: str) -> None:
        await self._post("/keepalive", {"kasm_id": kasm_id})

    async def _post(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "api_key": self.api_key,
            "api_key_secret": self.api_key_secret,
            **body,
        }
        response = await self._get_client().post(
            f"{self.api_url}{endpoint}",
            json=payload,
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            logger.error(
                f"[Kasm] {endpoint} failed with {response.status_code}: {response.text[:200]}"
            )
            raise KasmApiError(endpoint, response.status_code, response.text)
        if not response.content:
            return {}
        return response.json()
