"""
Client for the profile service.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from mappalette_gateway.config import PROFILE_SERVICE_TIMEOUT, PROFILE_SERVICE_URL
from mappalette_gateway.correlation import REQUEST_ID_HEADER, get_request_id
from mappalette_gateway.metrics import profile_request_latency

logger = logging.getLogger(__name__)


def _user_path(user_id: str, suffix: str = "") -> str:
    path = f"/profile/user/{quote(str(user_id), safe='')}"
    return f"{path}/{suffix}" if suffix else path


class ProfileClient:
    """
    Read-only pass-through to the profile service.

    Every call is a single GET whose JSON body is returned as-is. HTTP and
    transport errors reach the caller unchanged; nothing is retried or cached.
    """

    def __init__(
        self,
        base_url: str = PROFILE_SERVICE_URL,
        timeout: float = PROFILE_SERVICE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def _get(self, operation: str, path: str, current_user_id: Optional[str]) -> Any:
        params: Dict[str, str] = {}
        if current_user_id:
            params["currentUserId"] = current_user_id

        headers = {}
        request_id = get_request_id()
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id

        with profile_request_latency.labels(operation=operation).time():
            response = await self._client.get(path, params=params, headers=headers)

        logger.debug(f"Profile service GET {path} -> {response.status_code}")
        response.raise_for_status()
        return response.json()

    async def get_user_profile(self, user_id: str, current_user_id: Optional[str] = None) -> Any:
        """Fetch complete profile data for a user."""
        return await self._get("profile", _user_path(user_id), current_user_id)

    async def get_user_followers(self, user_id: str, current_user_id: Optional[str] = None) -> Any:
        """Fetch the accounts following a user."""
        return await self._get("followers", _user_path(user_id, "followers"), current_user_id)

    async def get_user_following(self, user_id: str, current_user_id: Optional[str] = None) -> Any:
        """Fetch the accounts a user follows."""
        return await self._get("following", _user_path(user_id, "following"), current_user_id)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "ProfileClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
