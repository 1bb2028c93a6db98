"""Data models for the Réti dashboard engine."""

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from .contracts import MAX_GATING_ASSETS


class GatingType(IntEnum):
    """Entry gating rule a validator applies to new stakers."""

    NONE = 0
    ASSET_ID = 1
    CREATOR_ACCOUNT = 2
    CREATOR_NFD = 3
    SEGMENT_NFD = 4


class Indicator(IntEnum):
    """Payout health of a validator, worst is highest."""

    NORMAL = 0
    WATCH = 1
    WARNING = 2
    ERROR = 3


class ValidatorConfig(BaseModel):
    """Validator parameters from the registry contract."""

    id: int
    owner: str
    manager: str
    nfd_for_info: int
    entry_gating_type: GatingType
    entry_gating_address: str
    entry_gating_assets: list[int] = Field(
        min_length=MAX_GATING_ASSETS, max_length=MAX_GATING_ASSETS
    )
    gating_asset_min_balance: int
    reward_token_id: int
    reward_per_payout: int
    epoch_round_length: int
    percent_to_validator: int  # parts-per-million
    validator_commission_address: str
    min_entry_stake: int
    max_algo_per_pool: int
    pools_per_node: int
    sunsetting_on: int
    sunsetting_to: int


class ValidatorState(BaseModel):
    """Mutable counters of a validator, replaced wholesale on refresh."""

    num_pools: int
    total_stakers: int
    total_algo_staked: int
    reward_token_held_back: int


class LocalPoolInfo(BaseModel):
    """One staking pool of a validator."""

    pool_id: int
    pool_app_id: int
    total_stakers: int
    total_algo_staked: int
    pool_address: str
    algod_version: str | None = None


class NodePoolAssignment(BaseModel):
    """Pool application ids per node slot; zero ids are empty slots."""

    nodes: list[list[int]]


class Constraints(BaseModel):
    """Protocol-wide limits from the registry."""

    epoch_payout_rounds_min: int
    epoch_payout_rounds_max: int
    min_pct_to_validator: int
    max_pct_to_validator: int
    min_entry_stake: int
    max_algo_per_pool: int
    max_algo_per_validator: int
    amt_considered_saturated: int
    max_nodes: int
    max_pools_per_node: int
    max_stakers_per_pool: int


class MbrAmounts(BaseModel):
    """Minimum balance requirements charged by the registry."""

    add_validator_mbr: int
    add_pool_mbr: int
    pool_init_mbr: int
    add_staker_mbr: int


class ValidatorPoolKey(BaseModel):
    """(validator, pool sequence, pool application) triple."""

    model_config = ConfigDict(frozen=True)

    id: int
    pool_id: int
    pool_app_id: int

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.id, self.pool_id, self.pool_app_id)


class StakedInfo(BaseModel):
    """One staker's position within one pool."""

    account: str
    balance: int
    total_rewarded: int
    reward_token_balance: int
    entry_round: int


class StakerPoolData(StakedInfo):
    """Staker position enriched with its pool key and the pool's last payout."""

    pool_key: ValidatorPoolKey
    last_payout: int


class StakerValidatorData(BaseModel):
    """A staker's positions under one validator, summed across pools."""

    model_config = ConfigDict(frozen=True)

    validator_id: int
    balance: int
    total_rewarded: int
    reward_token_balance: int
    entry_round: int
    last_payout: int
    pools: list[StakerPoolData]


class AssetHolding(BaseModel):
    """An account's holding of one asset."""

    asset_id: int
    amount: int
    is_frozen: bool = False


class AssetCreatorHolding(AssetHolding):
    """Holding annotated with the asset's creator."""

    creator: str


class AccountInfo(BaseModel):
    """Subset of the algod account record the engine relies on."""

    address: str
    amount: int
    min_balance: int
    assets: list[AssetHolding] = []


class AccountBalance(BaseModel):
    """Total, spendable and reserved balance of an account."""

    amount: int
    available: int
    minimum: int


class Asset(BaseModel):
    """Asset parameters from algod."""

    index: int
    creator: str
    decimals: int = 0
    total: int = 0
    name: str | None = None
    unit_name: str | None = None
    url: str | None = None


class FeeParams(BaseModel):
    """Suggested transaction parameters."""

    fee: int
    min_fee: int
    first_valid: int
    last_valid: int
    genesis_id: str
    genesis_hash: str


class NfdRecord(BaseModel):
    """Name-service record."""

    name: str
    app_id: int | None = None
    owner: str | None = None
    deposit_account: str | None = None
    properties: dict = {}


class PoolData(BaseModel):
    """Live balance and payout data of a single pool."""

    balance: int
    last_payout: int | None = None
    apy_bps: int | None = None


class ValidatorMetrics(BaseModel):
    """Computed health figures for a validator."""

    rewards_balance: int
    rounds_since_last_payout: int | None
    apy_bps: int  # parts-per-ten-thousand


class Validator(BaseModel):
    """Composed validator view, built fresh from its constituent reads."""

    model_config = ConfigDict(frozen=True)

    id: int
    config: ValidatorConfig
    state: ValidatorState
    pools: list[LocalPoolInfo]
    node_pool_assignment: NodePoolAssignment

    # Enrichment
    reward_token: Asset | None = None
    gating_assets: list[Asset] | None = None
    nfd: NfdRecord | None = None

    # Metrics
    rewards_balance: int | None = None
    rounds_since_last_payout: int | None = None
    apy_bps: int | None = None


class FindPoolForStakerResponse(BaseModel):
    """Where a new stake of a given amount would land."""

    pool_key: ValidatorPoolKey
    is_new_staker_to_validator: bool
    is_new_staker_to_protocol: bool


class StakerChartData(BaseModel):
    """One slice of the stakers chart."""

    name: str
    value: int
    href: str
