"""Account, asset and node reads over the algod REST API."""

import asyncio
import json
import logging
from typing import Any, Literal

import httpx

from ..core.config import get_settings
from ..core.errors import NotFound, RemoteUnavailable
from ..core.types import (
    AccountBalance,
    AccountInfo,
    Asset,
    AssetCreatorHolding,
    AssetHolding,
    FeeParams,
)
from .cache import QueryCache, cached

logger = logging.getLogger(__name__)

Exclude = Literal["all", "assets", "created-assets", "apps-local-state", "created-apps", "none"]

ASSET_BATCH_SIZE = 10


def _parse_holding(raw: dict[str, Any]) -> AssetHolding:
    return AssetHolding(
        asset_id=raw["asset-id"],
        amount=raw.get("amount", 0),
        is_frozen=raw.get("is-frozen", False),
    )


class AlgodClient:
    """Thin typed accessors over an algod node."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        cache: QueryCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.url = (url or settings.algod_url).rstrip("/")
        self.token = settings.algod_token if token is None else token
        self.timeout = settings.http_timeout_seconds
        self.cache = cache or QueryCache()
        self._transport = transport

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict:
        headers = {"X-Algo-API-Token": self.token} if self.token else {}
        async with httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 404:
                    raise NotFound(f"{path}: not found", status_code=status) from e
                logger.warning(f"algod request {path} failed: HTTP {status}")
                raise RemoteUnavailable(f"{path}: HTTP {status}") from e
            except httpx.RequestError as e:
                logger.warning(f"algod request {path} failed: {e}")
                raise RemoteUnavailable(f"{path}: {e}") from e
            except json.JSONDecodeError as e:
                raise RemoteUnavailable(f"{path}: invalid JSON response") from e

    async def get_account(self, address: str, exclude: Exclude = "none") -> AccountInfo:
        """Get the account record; ``exclude="all"`` skips assets and apps."""
        data = await self._get(f"/v2/accounts/{address}", {"exclude": exclude})
        return AccountInfo(
            address=data.get("address", address),
            amount=data["amount"],
            min_balance=data["min-balance"],
            assets=[_parse_holding(h) for h in data.get("assets", [])],
        )

    async def get_account_balance(self, address: str, available_balance: bool = False) -> int:
        """Total balance, or spendable balance (total minus the MBR reserve)."""
        account = await self.get_account(address, "all")
        if available_balance:
            return account.amount - account.min_balance
        return account.amount

    async def get_balance(self, address: str) -> AccountBalance:
        account = await self.get_account(address, "all")
        return AccountBalance(
            amount=account.amount,
            available=max(0, account.amount - account.min_balance),
            minimum=account.min_balance,
        )

    @cached("asset")
    async def get_asset(self, asset_id: int) -> Asset:
        data = await self._get(f"/v2/assets/{asset_id}")
        params = data.get("params", {})
        return Asset(
            index=data["index"],
            creator=params["creator"],
            decimals=params.get("decimals", 0),
            total=params.get("total", 0),
            name=params.get("name"),
            unit_name=params.get("unit-name"),
            url=params.get("url"),
        )

    async def get_asset_holdings(self, address: str) -> list[AssetHolding]:
        account = await self.get_account(address)
        return account.assets

    async def get_account_asset(self, address: str, asset_id: int) -> AssetHolding:
        """Raises NotFound (404) when the account is not opted in."""
        if not asset_id:
            raise ValueError("No asset id provided")
        data = await self._get(f"/v2/accounts/{address}/assets/{asset_id}")
        return _parse_holding(data["asset-holding"])

    async def is_opted_in_to_asset(self, address: str, asset_id: int) -> bool:
        try:
            await self.get_account_asset(address, asset_id)
            return True
        except NotFound:
            return False

    async def get_asset_creator_holdings(self, address: str) -> list[AssetCreatorHolding]:
        """Holdings annotated with their creator, resolving assets in batches."""
        holdings = await self.get_asset_holdings(address)
        result: list[AssetCreatorHolding] = []

        for start in range(0, len(holdings), ASSET_BATCH_SIZE):
            batch = holdings[start : start + ASSET_BATCH_SIZE]
            assets = await asyncio.gather(*(self.get_asset(h.asset_id) for h in batch))
            result.extend(
                AssetCreatorHolding(**holding.model_dump(), creator=asset.creator)
                for holding, asset in zip(batch, assets)
            )

        return result

    async def get_suggested_fees(self) -> FeeParams:
        data = await self._get("/v2/transactions/params")
        last_round = data["last-round"]
        return FeeParams(
            fee=data.get("fee", 0),
            min_fee=data["min-fee"],
            first_valid=last_round,
            last_valid=last_round + 1000,
            genesis_id=data["genesis-id"],
            genesis_hash=data["genesis-hash"],
        )

    async def get_status(self) -> dict:
        return await self._get("/v2/status")

    async def get_current_round(self) -> int:
        status = await self.get_status()
        return status["last-round"]

    async def get_block(self, round_num: int) -> dict:
        data = await self._get(f"/v2/blocks/{round_num}", {"format": "json"})
        return data["block"]

    @cached("block-times")
    async def get_block_times(self, num_rounds: int = 10) -> list[int]:
        """Timestamps of the last ``num_rounds`` blocks, oldest first."""
        last_round = await self.get_current_round()
        block_times = []
        for round_num in range(last_round - num_rounds, last_round):
            block = await self.get_block(round_num)
            block_times.append(int(block["ts"]))
        return block_times
