"""Composes validator, staker and pool views from the registry and remote services."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

from ..core.config import get_settings
from ..core.contracts import PoolGlobalState
from ..core.errors import AggregationInconsistency, RetiError, ValidatorNotFound
from ..core.types import (
    Asset,
    GatingType,
    LocalPoolInfo,
    NfdRecord,
    NodePoolAssignment,
    PoolData,
    StakerChartData,
    StakerPoolData,
    StakerValidatorData,
    Validator,
    ValidatorConfig,
    ValidatorMetrics,
    ValidatorState,
)
from ..data.algod import AlgodClient
from ..data.cache import QueryCache, query_key
from ..data.gateway import LedgerGateway
from ..data.nfd import NfdClient
from ..data.registry import RegistryReader
from ..data.scheduler import QueryDescriptor, run_queued
from .metrics import calculate_validator_pool_metrics

logger = logging.getLogger(__name__)

PoolScope = Literal["all"] | int

METRICS_BATCH_SIZE = 4

# Remote failures and malformed payloads (pydantic's ValidationError is a ValueError)
ENRICHMENT_FAILURES = (RetiError, LookupError, TypeError, ValueError)


# Enrichment a validator's config asks for


@dataclass(frozen=True)
class RewardTokenPresent:
    asset_id: int


@dataclass(frozen=True)
class AssetGated:
    asset_ids: tuple[int, ...]


@dataclass(frozen=True)
class NfdLinked:
    nfd_app_id: int


Enrichment = RewardTokenPresent | AssetGated | NfdLinked


def enrichments_for(config: ValidatorConfig) -> list[Enrichment]:
    """Enrichment fetches the config signals, in a fixed order."""
    wanted: list[Enrichment] = []
    if config.reward_token_id > 0:
        wanted.append(RewardTokenPresent(config.reward_token_id))
    if config.entry_gating_type == GatingType.ASSET_ID:
        asset_ids = tuple(asset_id for asset_id in config.entry_gating_assets if asset_id > 0)
        if asset_ids:
            wanted.append(AssetGated(asset_ids))
    if config.nfd_for_info > 0:
        wanted.append(NfdLinked(config.nfd_for_info))
    return wanted


def fold_staker_pool_data(pools_data: list[StakerPoolData]) -> list[StakerValidatorData]:
    """
    Group per-pool staker records by validator.

    Amounts are summed; entry round and last payout each keep the largest
    value seen, independently of each other. Validators appear in the order
    their first pool was seen.
    """
    folded: dict[int, dict] = {}
    for pool in pools_data:
        validator_id = pool.pool_key.id
        current = folded.get(validator_id)
        if current is None:
            folded[validator_id] = {
                "validator_id": validator_id,
                "balance": pool.balance,
                "total_rewarded": pool.total_rewarded,
                "reward_token_balance": pool.reward_token_balance,
                "entry_round": pool.entry_round,
                "last_payout": pool.last_payout,
                "pools": [pool],
            }
            continue
        current["balance"] += pool.balance
        current["total_rewarded"] += pool.total_rewarded
        current["reward_token_balance"] += pool.reward_token_balance
        current["entry_round"] = max(current["entry_round"], pool.entry_round)
        current["last_payout"] = max(current["last_payout"], pool.last_payout)
        current["pools"].append(pool)
    return [StakerValidatorData(**data) for data in folded.values()]


def assemble_validator(
    validator_id: int,
    config: ValidatorConfig | None,
    state: ValidatorState | None,
    pools: list[LocalPoolInfo] | None,
    assignment: NodePoolAssignment | None,
) -> Validator:
    """Build a validator only when all four core reads are present."""
    missing = [
        name
        for name, part in (
            ("config", config),
            ("state", state),
            ("pools", pools),
            ("node pool assignment", assignment),
        )
        if part is None
    ]
    if missing:
        raise AggregationInconsistency(f"missing {', '.join(missing)}")
    return Validator(
        id=validator_id,
        config=config,
        state=state,
        pools=pools,
        node_pool_assignment=assignment,
    )


class ValidatorService:
    """Orchestrates registry, node and name-service reads into dashboard views."""

    def __init__(
        self,
        gateway: LedgerGateway,
        algod: AlgodClient | None = None,
        nfd: NfdClient | None = None,
        cache: QueryCache | None = None,
    ):
        settings = get_settings()
        self.cache = cache or QueryCache(
            default_ttl=settings.cache_ttl_seconds, max_size=settings.cache_max_size
        )
        self.gateway = gateway
        self.registry = RegistryReader(gateway, self.cache)
        self.algod = algod or AlgodClient(cache=self.cache)
        self.nfd = nfd or NfdClient(cache=self.cache)
        self.staker_batch_size = settings.staker_batch_size

    # Validators

    async def fetch_validator(self, validator_id: int, with_metrics: bool = False) -> Validator:
        """
        Assemble one validator from its four core reads plus enrichment.

        Raises ValidatorNotFound if any core read fails or comes back empty.
        """
        results = await asyncio.gather(
            self.registry.get_validator_config(validator_id),
            self.registry.get_validator_state(validator_id),
            self.registry.get_validator_pools(validator_id),
            self.registry.get_node_pool_assignments(validator_id),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) or result is None:
                if isinstance(result, BaseException):
                    logger.debug(f"Validator {validator_id} read failed: {result}")
                raise ValidatorNotFound(validator_id)

        validator = assemble_validator(validator_id, *results)
        validator = await self.enrich(validator)
        if with_metrics:
            validator = await self.with_metrics(validator)
        return validator

    async def fetch_validators(self) -> list[Validator]:
        """
        Every registered validator, read in throttled waves.

        Validators missing any of their core reads are left out rather than
        returned partially built.
        """
        num_validators = await self.registry.get_num_validators()
        validator_ids = list(range(1, num_validators + 1))
        if not validator_ids:
            return []

        def queries(entity: str, read) -> list[QueryDescriptor]:
            return [
                QueryDescriptor(
                    key=query_key(entity, validator_id),
                    fetch=lambda validator_id=validator_id: read(validator_id),
                )
                for validator_id in validator_ids
            ]

        configs, states, pools, assignments = await asyncio.gather(
            run_queued(
                self.cache, queries("validator-config", self.registry.get_validator_config)
            ),
            run_queued(self.cache, queries("validator-state", self.registry.get_validator_state)),
            run_queued(self.cache, queries("validator-pools", self.registry.get_validator_pools)),
            run_queued(
                self.cache,
                queries("validator-node-pool-assignments", self.registry.get_node_pool_assignments),
            ),
        )

        assembled = []
        for i, validator_id in enumerate(validator_ids):
            try:
                assembled.append(
                    assemble_validator(
                        validator_id,
                        configs.data[i],
                        states.data[i],
                        pools.data[i],
                        assignments.data[i],
                    )
                )
            except AggregationInconsistency as e:
                logger.debug(f"Skipping validator {validator_id}: {e}")

        enriched = await asyncio.gather(*(self.enrich(v) for v in assembled))
        return await self._attach_metrics(list(enriched))

    async def _attach_metrics(self, validators: list[Validator]) -> list[Validator]:
        """Metrics for a listing, read in waves of four; validators whose read fails keep none."""
        if not validators:
            return validators
        metrics = await run_queued(
            self.cache,
            [
                QueryDescriptor(
                    key=query_key("validator-metrics", v.id),
                    fetch=lambda validator_id=v.id: self.fetch_validator_metrics(validator_id),
                )
                for v in validators
            ],
            batch_size=METRICS_BATCH_SIZE,
        )
        with_metrics = []
        for validator, validator_metrics in zip(validators, metrics.data):
            if validator_metrics is None:
                logger.warning(f"Metrics for validator {validator.id} unavailable")
                with_metrics.append(validator)
            else:
                with_metrics.append(validator.model_copy(update=validator_metrics.model_dump()))
        return with_metrics

    async def enrich(self, validator: Validator) -> Validator:
        """Attach the reward token, gating assets and NFD the config refers to."""
        wanted = enrichments_for(validator.config)
        results = await asyncio.gather(
            *(self._fetch_enrichment(enrichment) for enrichment in wanted),
            return_exceptions=True,
        )
        update: dict = {}
        for enrichment, result in zip(wanted, results):
            if isinstance(result, ENRICHMENT_FAILURES):
                logger.warning(
                    f"Validator {validator.id}: {type(enrichment).__name__} failed: {result}"
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                update.update(result)
        return validator.model_copy(update=update) if update else validator

    async def _fetch_enrichment(self, enrichment: Enrichment) -> dict:
        if isinstance(enrichment, RewardTokenPresent):
            reward_token: Asset = await self.algod.get_asset(enrichment.asset_id)
            return {"reward_token": reward_token}
        if isinstance(enrichment, AssetGated):
            gating_assets = await asyncio.gather(
                *(self.algod.get_asset(asset_id) for asset_id in enrichment.asset_ids)
            )
            return {"gating_assets": list(gating_assets)}
        if isinstance(enrichment, NfdLinked):
            nfd: NfdRecord = await self.nfd.lookup(enrichment.nfd_app_id, view="full")
            return {"nfd": nfd}
        raise TypeError(f"Unknown enrichment {enrichment!r}")

    # Pools and metrics

    async def process_pool_data(self, pool: LocalPoolInfo) -> PoolData:
        """Spendable balance of a pool and, when funded, its payout data."""
        balance = await self.algod.get_account_balance(pool.pool_address, available_balance=True)
        if balance == 0:
            return PoolData(balance=0)

        global_state = await self.gateway.read_global_state(pool.pool_app_id)
        last_payout = global_state.get(PoolGlobalState.LAST_PAYOUT)
        ewma = global_state.get(PoolGlobalState.WEIGHTED_MOVING_AVERAGE)
        return PoolData(
            balance=balance,
            last_payout=int(last_payout) if last_payout is not None else None,
            apy_bps=int(ewma) if ewma is not None else None,
        )

    async def fetch_validator_metrics(self, validator_id: int) -> ValidatorMetrics:
        key = query_key("validator-metrics", validator_id)
        entry = self.cache.lookup(key)
        if entry is not None:
            return entry.value

        pools, state = await asyncio.gather(
            self.registry.get_validator_pools(validator_id),
            self.registry.get_validator_state(validator_id),
        )
        pools_data, current_round = await asyncio.gather(
            asyncio.gather(*(self.process_pool_data(pool) for pool in pools)),
            self.algod.get_current_round(),
        )
        metrics = calculate_validator_pool_metrics(
            pools_data, state.total_algo_staked, current_round
        )
        self.cache.set(key, metrics)
        return metrics

    async def with_metrics(self, validator: Validator) -> Validator:
        """Validator with its metrics attached; left unchanged if they cannot be read."""
        try:
            metrics = await self.fetch_validator_metrics(validator.id)
        except RetiError as e:
            logger.warning(f"Metrics for validator {validator.id} unavailable: {e}")
            return validator
        return validator.model_copy(update=metrics.model_dump())

    # Stakers

    async def fetch_staker_validator_data(self, staker: str) -> list[StakerValidatorData]:
        """A staker's positions, one entry per validator staked with."""
        key = query_key("stakes", staker)
        entry = self.cache.lookup(key)
        if entry is not None:
            return entry.value

        pool_keys = await self.registry.get_staked_pools_for_account(staker)

        pools_data: list[StakerPoolData] = []
        batch_size = self.staker_batch_size
        for i in range(0, len(pool_keys), batch_size):
            batch = pool_keys[i : i + batch_size]
            pools_data.extend(
                await asyncio.gather(
                    *(self.registry.get_staker_pool_data(pool_key, staker) for pool_key in batch)
                )
            )

        stakes = fold_staker_pool_data(pools_data)
        self.cache.set(key, stakes)
        return stakes

    async def fetch_stakers_chart_data(
        self, validator_id: int, pool: PoolScope = "all"
    ) -> list[StakerChartData]:
        """
        Stake per account for all pools or one pool (by 0-based index).

        Accounts staking in several in-scope pools are summed. Each entry is
        labelled with the account's NFD when one resolves, else its address.
        """
        pools = await self.registry.get_validator_pools(validator_id)
        if pool == "all":
            in_scope = pools
        elif isinstance(pool, int) and 0 <= pool < len(pools):
            in_scope = [pools[pool]]
        else:
            in_scope = []

        stakers_per_pool = await asyncio.gather(
            *(self.registry.get_staked_info_for_pool(p.pool_app_id) for p in in_scope)
        )
        totals: dict[str, int] = {}
        for stakers in stakers_per_pool:
            for staker in stakers:
                totals[staker.account] = totals.get(staker.account, 0) + staker.balance

        records = await asyncio.gather(*(self._reverse_lookup(account) for account in totals))
        return [
            self._chart_entry(account, value, record)
            for (account, value), record in zip(totals.items(), records)
        ]

    async def _reverse_lookup(self, address: str) -> NfdRecord | None:
        try:
            return await self.nfd.reverse_lookup(address)
        except RetiError as e:
            logger.warning(f"NFD lookup for {address} failed: {e}")
            return None

    def _chart_entry(self, account: str, value: int, record: NfdRecord | None) -> StakerChartData:
        settings = get_settings()
        if record is not None:
            return StakerChartData(
                name=record.name, value=value, href=self.nfd.profile_url_for(record.name)
            )
        return StakerChartData(
            name=account, value=value, href=f"{settings.explorer_account_url}/{account}"
        )
