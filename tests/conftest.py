"""
Shared fakes for the ledger gateway, algod node and name service.
"""

from typing import Any, Callable

import pytest

from reti_dashboard.core.types import (
    AccountBalance,
    Asset,
    FeeParams,
    NfdRecord,
)
from reti_dashboard.data.cache import QueryCache
from reti_dashboard.data.gateway import SendResult, SimulateResult

OWNER = "OWNER" + "A" * 53
STAKER = "STAKER" + "B" * 52


def validator_config_tuple(validator_id: int, **overrides: Any) -> list:
    """Registry-shaped config tuple for a validator."""
    fields = {
        "owner": OWNER,
        "manager": OWNER,
        "nfd_for_info": 0,
        "entry_gating_type": 0,
        "entry_gating_address": OWNER,
        "entry_gating_assets": [0, 0, 0, 0],
        "gating_asset_min_balance": 0,
        "reward_token_id": 0,
        "reward_per_payout": 0,
        "epoch_round_length": 1296,
        "percent_to_validator": 50_000,
        "validator_commission_address": OWNER,
        "min_entry_stake": 1_000_000,
        "max_algo_per_pool": 0,
        "pools_per_node": 3,
        "sunsetting_on": 0,
        "sunsetting_to": 0,
    }
    fields.update(overrides)
    return [validator_id, *fields.values()]


def staker_tuple(account: str, balance: int, rewarded: int = 0, entry_round: int = 1) -> list:
    return [account, balance, rewarded, 0, entry_round]


class FakeGateway:
    """In-memory ledger gateway driven by per-method handlers."""

    def __init__(self):
        self.handlers: dict[str, Callable[[int, dict], Any]] = {}
        self.global_state: dict[int, dict[str, Any]] = {}
        self.boxes: dict[tuple[int, str], Any] = {}
        self.calls: list[tuple[int, str, dict]] = []
        self.simulate_result = SimulateResult()
        self.send_result = SendResult(tx_ids=["TX1"], confirmed_round=100)
        self.simulated: list[list] = []
        self.sent: list[list] = []

    def on(self, method: str, handler: Callable[[int, dict], Any] | Any) -> None:
        self.handlers[method] = handler if callable(handler) else (lambda *_: handler)

    async def call_method(self, app_id, method, args=None, mode=None, sender=None, extra_fee=0):
        self.calls.append((app_id, method, args or {}))
        if method not in self.handlers:
            raise LookupError(f"no handler for {method}")
        return self.handlers[method](app_id, args or {})

    async def simulate(self, group, *, skip_signatures=True, allow_unnamed_resources=True):
        self.simulated.append(list(group))
        return self.simulate_result

    async def send(self, group, signer, *, populate_resources=True):
        self.sent.append(list(group))
        return self.send_result

    async def read_global_state(self, app_id):
        return self.global_state.get(app_id, {})

    async def read_box(self, app_id, name):
        return self.boxes.get((app_id, name), [])

    def app_address(self, app_id):
        return f"APP{app_id}"


class FakeAlgod:
    """Node reads served from dictionaries."""

    def __init__(self):
        self.balances: dict[str, int] = {}
        self.assets: dict[int, Asset] = {}
        self.opted_in: set[tuple[str, int]] = set()
        self.current_round = 10_000
        self.min_fee = 1000
        self.balance_reads: list[str] = []

    async def get_account_balance(self, address, available_balance=False):
        self.balance_reads.append(address)
        return self.balances.get(address, 0)

    async def get_balance(self, address):
        amount = self.balances.get(address, 0)
        return AccountBalance(amount=amount, available=amount, minimum=0)

    async def get_asset(self, asset_id):
        return self.assets[asset_id]

    async def is_opted_in_to_asset(self, address, asset_id):
        return (address, asset_id) in self.opted_in

    async def get_current_round(self):
        return self.current_round

    async def get_suggested_fees(self):
        return FeeParams(
            fee=0,
            min_fee=self.min_fee,
            first_valid=1,
            last_valid=1001,
            genesis_id="testnet-v1.0",
            genesis_hash="hash",
        )


class FakeNfd:
    def __init__(self):
        self.records: dict[str, NfdRecord] = {}
        self.by_address: dict[str, NfdRecord] = {}

    async def lookup(self, name_or_id, view="brief"):
        return self.records[str(name_or_id)]

    async def reverse_lookup(self, address, view="thumbnail"):
        return self.by_address.get(address)

    def profile_url_for(self, name):
        return f"https://app.nf.domains/name/{name}"


class FakeSigner:
    async def sign(self, group):
        return [b"sig" for _ in group]


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def algod():
    return FakeAlgod()


@pytest.fixture
def nfd():
    return FakeNfd()


@pytest.fixture
def signer():
    return FakeSigner()


def register_validator(
    gateway: FakeGateway,
    validator_id: int,
    pools: list[tuple[int, int, int]],
    **config_overrides: Any,
) -> None:
    """
    Serve the four core reads for a validator.

    ``pools`` holds (pool app id, stakers, staked) per pool.
    """
    configs = gateway.__dict__.setdefault("_configs", {})
    pool_map = gateway.__dict__.setdefault("_pools", {})
    configs[validator_id] = validator_config_tuple(validator_id, **config_overrides)
    pool_map[validator_id] = pools

    def state(app_id, args):
        vid = args["validatorId"]
        validator_pools = pool_map[vid]
        return [
            len(validator_pools),
            sum(p[1] for p in validator_pools),
            sum(p[2] for p in validator_pools),
            0,
        ]

    gateway.on("getValidatorConfig", lambda app_id, args: configs[args["validatorId"]])
    gateway.on("getValidatorState", state)
    gateway.on("getPools", lambda app_id, args: [list(p) for p in pool_map[args["validatorId"]]])
    gateway.on(
        "getNodePoolAssignments",
        lambda app_id, args: [[[[p[0] for p in pool_map[args["validatorId"]]] + [0, 0]]]],
    )
    gateway.on("getNumValidators", lambda *_: len(configs))
