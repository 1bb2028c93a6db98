"""Name-service (NFD) HTTP client."""

import json
import logging
from typing import Any, Literal

import httpx

from ..core.config import get_settings
from ..core.errors import NotFound, RemoteUnavailable
from ..core.types import NfdRecord
from .cache import QueryCache, cached

logger = logging.getLogger(__name__)

NfdView = Literal["tiny", "thumbnail", "brief", "full"]


def _parse_record(data: dict[str, Any]) -> NfdRecord:
    return NfdRecord(
        name=data["name"],
        app_id=data.get("appID"),
        owner=data.get("owner"),
        deposit_account=data.get("depositAccount"),
        properties=data.get("properties") or {},
    )


class NfdClient:
    """Fetches name records from the NFD API."""

    def __init__(
        self,
        url: str | None = None,
        cache: QueryCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.url = (url or settings.nfd_api_url).rstrip("/")
        self.profile_url = settings.nfd_profile_url.rstrip("/")
        self.timeout = settings.http_timeout_seconds
        self.cache = cache or QueryCache()
        self._transport = transport

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        async with httpx.AsyncClient(
            base_url=self.url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 404:
                    raise NotFound(f"NFD {path}: not found", status_code=status) from e
                logger.warning(f"Failed to fetch NFD {path}: HTTP {status}")
                raise RemoteUnavailable(f"NFD {path}: HTTP {status}") from e
            except httpx.RequestError as e:
                logger.warning(f"Failed to fetch NFD {path}: {e}")
                raise RemoteUnavailable(f"NFD {path}: {e}") from e
            except json.JSONDecodeError as e:
                raise RemoteUnavailable(f"NFD {path}: invalid JSON response") from e

    @cached("nfd")
    async def lookup(self, name_or_id: str | int, view: NfdView = "brief") -> NfdRecord:
        """Get a record by name or application id. Raises NotFound."""
        data = await self._get(f"/nfd/{name_or_id}", {"view": view})
        return _parse_record(data)

    @cached("nfd-lookup")
    async def reverse_lookup(
        self, address: str, view: NfdView = "thumbnail"
    ) -> NfdRecord | None:
        """Get the primary record linked to an address, or None."""
        try:
            data = await self._get("/nfd/lookup", {"address": address, "view": view})
        except NotFound:
            return None
        record = data.get(address) if isinstance(data, dict) else None
        return _parse_record(record) if record else None

    def profile_url_for(self, name: str) -> str:
        return f"{self.profile_url}/{name}"
