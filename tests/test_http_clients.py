"""Tests for the algod and NFD HTTP clients over a mock transport."""

import httpx
import pytest

from reti_dashboard.core.errors import NotFound, RemoteUnavailable
from reti_dashboard.data.algod import AlgodClient
from reti_dashboard.data.cache import QueryCache
from reti_dashboard.data.nfd import NfdClient

ACCOUNT = "ACCOUNT" + "D" * 51


def algod_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == f"/v2/accounts/{ACCOUNT}":
        return httpx.Response(
            200,
            json={
                "address": ACCOUNT,
                "amount": 5_000_000,
                "min-balance": 200_000,
                "assets": [{"asset-id": 31566704, "amount": 10, "is-frozen": False}],
            },
        )
    if path == f"/v2/accounts/{ACCOUNT}/assets/31566704":
        return httpx.Response(
            200, json={"asset-holding": {"asset-id": 31566704, "amount": 10}}
        )
    if path == "/v2/assets/31566704":
        return httpx.Response(
            200,
            json={
                "index": 31566704,
                "params": {"creator": "CREATOR", "decimals": 6, "unit-name": "USDC"},
            },
        )
    if path == "/v2/transactions/params":
        return httpx.Response(
            200,
            json={
                "fee": 0,
                "min-fee": 1000,
                "last-round": 100,
                "genesis-id": "mainnet-v1.0",
                "genesis-hash": "hash",
            },
        )
    if path == "/v2/status":
        return httpx.Response(200, json={"last-round": 42})
    if path == "/v2/boom":
        return httpx.Response(500, text="internal error")
    return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def algod_client():
    return AlgodClient(
        url="http://algod.test",
        token="",
        cache=QueryCache(),
        transport=httpx.MockTransport(algod_handler),
    )


class TestAlgodClient:
    async def test_available_balance_subtracts_mbr(self, algod_client):
        assert await algod_client.get_account_balance(ACCOUNT) == 5_000_000
        assert await algod_client.get_account_balance(ACCOUNT, available_balance=True) == 4_800_000

    async def test_balance_triple(self, algod_client):
        balance = await algod_client.get_balance(ACCOUNT)
        assert (balance.amount, balance.available, balance.minimum) == (
            5_000_000,
            4_800_000,
            200_000,
        )

    async def test_opted_in(self, algod_client):
        assert await algod_client.is_opted_in_to_asset(ACCOUNT, 31566704)

    async def test_not_opted_in_on_404(self, algod_client):
        assert not await algod_client.is_opted_in_to_asset(ACCOUNT, 12345)

    async def test_unknown_account_not_found(self, algod_client):
        with pytest.raises(NotFound):
            await algod_client.get_account("NOPE")

    async def test_server_error_is_remote_unavailable(self, algod_client):
        with pytest.raises(RemoteUnavailable):
            await algod_client._get("/v2/boom")

    async def test_asset_creator_holdings(self, algod_client):
        holdings = await algod_client.get_asset_creator_holdings(ACCOUNT)
        assert [(h.asset_id, h.creator) for h in holdings] == [(31566704, "CREATOR")]

    async def test_suggested_fees(self, algod_client):
        params = await algod_client.get_suggested_fees()
        assert params.min_fee == 1000
        assert params.last_valid == 1100

    async def test_current_round(self, algod_client):
        assert await algod_client.get_current_round() == 42

    async def test_transport_error_is_remote_unavailable(self):
        def failing(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = AlgodClient(
            url="http://algod.test", cache=QueryCache(), transport=httpx.MockTransport(failing)
        )
        with pytest.raises(RemoteUnavailable):
            await client.get_status()


def nfd_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/nfd/lookup":
        address = request.url.params["address"]
        if address == ACCOUNT:
            return httpx.Response(200, json={ACCOUNT: {"name": "alice.algo", "appID": 9}})
        return httpx.Response(404, json={})
    if path == "/nfd/alice.algo":
        assert request.url.params["view"] == "full"
        return httpx.Response(
            200, json={"name": "alice.algo", "appID": 9, "owner": ACCOUNT}
        )
    return httpx.Response(404, json={})


@pytest.fixture
def nfd_client():
    return NfdClient(
        url="http://nfd.test", cache=QueryCache(), transport=httpx.MockTransport(nfd_handler)
    )


class TestNfdClient:
    async def test_lookup(self, nfd_client):
        record = await nfd_client.lookup("alice.algo", view="full")
        assert record.app_id == 9
        assert record.owner == ACCOUNT

    async def test_missing_name(self, nfd_client):
        with pytest.raises(NotFound):
            await nfd_client.lookup("nobody.algo")

    async def test_reverse_lookup(self, nfd_client):
        record = await nfd_client.reverse_lookup(ACCOUNT)
        assert record.name == "alice.algo"

    async def test_reverse_lookup_without_record(self, nfd_client):
        assert await nfd_client.reverse_lookup("UNKNOWN") is None
