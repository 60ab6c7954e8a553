"""
Cloud account API client.

Thin async wrapper over the account endpoints used for login, profile and
device selection, lineup download and guide airings.
"""

import logging
from typing import Any

import httpx

from tunerbridge.config import CloudConfig
from tunerbridge.exceptions import CloudRequestError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/v2/login/"
ACCOUNT_PATH = "/api/v2/account/"
SELECT_PATH = "/api/v2/account/select/"
AIRINGS_PATH = "/api/v2/account/guide/channels/{channel_id}/airings/{day}/"
LINEUP_PATH = "/api/v2/account/{lighthouse}/guide/channels/"


class CloudClient:
    """Async client for the cloud account API.

    Args:
        cloud_config: Cloud section of the configuration
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    def __init__(self, cloud_config: CloudConfig, transport: httpx.AsyncBaseTransport | None = None):
        self._config = cloud_config
        self._client = httpx.AsyncClient(
            base_url=cloud_config.host,
            timeout=cloud_config.request_timeout,
            transport=transport,
        )

    def _headers(
        self,
        authorization: str | None = None,
        lighthouse: str | None = None,
    ) -> dict[str, str]:
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept": "*/*",
        }
        if authorization:
            headers["Authorization"] = authorization
        if lighthouse:
            headers["Lighthouse"] = lighthouse
        return headers

    def _airings_headers(self, authorization: str, lighthouse: str) -> dict[str, str]:
        # HEAD Content-Length is compared with the cached file size, so no compression
        return {**self._headers(authorization, lighthouse), "Accept-Encoding": "identity"}

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=headers, json=json_data)
        except httpx.HTTPError as e:
            raise CloudRequestError(f"{method} {path} failed: {e!r}") from e

        if response.status_code < 200 or response.status_code > 299:
            logger.warning(f"{method} {path} request failed with status code: {response.status_code}")
            logger.debug(f"Error details: {response.text}")
            raise CloudRequestError(
                f"{method} {path} returned {response.status_code}",
                status=response.status_code,
                body=response.text,
            )
        return response

    async def login(self, email: str, password: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            LOGIN_PATH,
            {**self._headers(), "Content-Type": "application/json"},
            json_data={"password": password, "email": email},
        )
        return response.json()

    async def get_account(self, authorization: str) -> dict[str, Any]:
        response = await self._request("GET", ACCOUNT_PATH, self._headers(authorization))
        return response.json()

    async def select(self, authorization: str, profile_id: str, server_id: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            SELECT_PATH,
            {**self._headers(authorization), "Content-Type": "application/json"},
            json_data={"pid": profile_id, "sid": server_id},
        )
        return response.json()

    async def get_lineup(self, authorization: str, lighthouse: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            LINEUP_PATH.format(lighthouse=lighthouse),
            self._headers(authorization, lighthouse),
        )
        return response.json()

    async def get_airings(self, authorization: str, lighthouse: str, channel_id: str, day: str) -> bytes:
        """Raw airings payload for one channel and day."""
        response = await self._request(
            "GET",
            AIRINGS_PATH.format(channel_id=channel_id, day=day),
            self._airings_headers(authorization, lighthouse),
        )
        return response.content

    async def head_airings(self, authorization: str, lighthouse: str, channel_id: str, day: str) -> int | None:
        """Declared byte length of the airings payload, if the server reports one."""
        response = await self._request(
            "HEAD",
            AIRINGS_PATH.format(channel_id=channel_id, day=day),
            self._airings_headers(authorization, lighthouse),
        )
        length = response.headers.get("content-length")
        return int(length) if length is not None and length.isdigit() else None

    async def close(self) -> None:
        await self._client.aclose()
