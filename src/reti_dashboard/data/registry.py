"""Reads from the validator registry and staking pool applications."""

import asyncio
import logging
from typing import Any, Iterable, Sequence

from ..core.config import get_settings
from ..core.contracts import (
    ALGORAND_ZERO_ADDRESS,
    FIND_POOL_EXTRA_FEE,
    GET_STAKER_INFO_EXTRA_FEE,
    STAKERS_BOX,
    PoolGlobalState,
    PoolMethods,
    RegistryMethods,
)
from ..core.errors import NotFound, SimulationFailed
from ..core.types import (
    Constraints,
    FindPoolForStakerResponse,
    GatingType,
    LocalPoolInfo,
    MbrAmounts,
    NodePoolAssignment,
    StakedInfo,
    StakerPoolData,
    ValidatorConfig,
    ValidatorPoolKey,
    ValidatorState,
)
from .cache import QueryCache, cached
from .gateway import CallMode, LedgerGateway, method_call

logger = logging.getLogger(__name__)


def dedupe_pool_keys(raw_keys: Iterable[Sequence[int]]) -> list[ValidatorPoolKey]:
    """
    Collapse duplicate (validator, pool, pool app) triples, keeping first-seen order.

    The registry has been observed returning the same staked pool more than
    once for an account; the cause upstream is not fixed, so every read of
    staked pools goes through here.
    """
    seen: set[tuple[int, int, int]] = set()
    keys = []
    for raw in raw_keys:
        triple = (int(raw[0]), int(raw[1]), int(raw[2]))
        if triple in seen:
            continue
        seen.add(triple)
        keys.append(ValidatorPoolKey(id=triple[0], pool_id=triple[1], pool_app_id=triple[2]))
    return keys


def staked_info_from_tuple(data: Sequence[Any]) -> StakedInfo:
    return StakedInfo(
        account=data[0],
        balance=data[1],
        total_rewarded=data[2],
        reward_token_balance=data[3],
        entry_round=data[4],
    )


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").rstrip("\x00")
    return str(value)


class RegistryReader:
    """Typed accessors over the registry and pool contracts."""

    def __init__(
        self,
        gateway: LedgerGateway,
        cache: QueryCache | None = None,
        registry_app_id: int | None = None,
    ):
        self.gateway = gateway
        self.cache = cache or QueryCache()
        self.registry_app_id = registry_app_id or get_settings().registry_app_id

    async def _call(self, method: str, args: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.gateway.call_method(
            self.registry_app_id, method, args or {}, CallMode.SIMULATE, **kwargs
        )

    @cached("num-validators")
    async def get_num_validators(self) -> int:
        return int(await self._call(RegistryMethods.GET_NUM_VALIDATORS))

    @cached("validator-config")
    async def get_validator_config(self, validator_id: int) -> ValidatorConfig:
        """Get validator config by ID."""
        data = await self._call(RegistryMethods.GET_VALIDATOR_CONFIG, {"validatorId": validator_id})
        return ValidatorConfig(
            id=data[0],
            owner=data[1],
            manager=data[2],
            nfd_for_info=data[3],
            entry_gating_type=GatingType(data[4]),
            entry_gating_address=data[5],
            entry_gating_assets=list(data[6]),
            gating_asset_min_balance=data[7],
            reward_token_id=data[8],
            reward_per_payout=data[9],
            epoch_round_length=data[10],
            percent_to_validator=data[11],
            validator_commission_address=data[12],
            min_entry_stake=data[13],
            max_algo_per_pool=data[14],
            pools_per_node=data[15],
            sunsetting_on=data[16],
            sunsetting_to=data[17],
        )

    @cached("validator-state")
    async def get_validator_state(self, validator_id: int) -> ValidatorState:
        data = await self._call(RegistryMethods.GET_VALIDATOR_STATE, {"validatorId": validator_id})
        return ValidatorState(
            num_pools=data[0],
            total_stakers=data[1],
            total_algo_staked=data[2],
            reward_token_held_back=data[3],
        )

    @cached("validator-pools")
    async def get_validator_pools(self, validator_id: int) -> list[LocalPoolInfo]:
        """Get the validator's pools, with each pool's address and reported node version."""
        pools_data = await self._call(RegistryMethods.GET_POOLS, {"validatorId": validator_id})
        versions = await asyncio.gather(
            *(self.gateway.read_global_state(pool[0]) for pool in pools_data)
        )
        return [
            LocalPoolInfo(
                pool_id=i + 1,
                pool_app_id=pool[0],
                total_stakers=pool[1],
                total_algo_staked=pool[2],
                pool_address=self.gateway.app_address(pool[0]),
                algod_version=_as_str(state.get(PoolGlobalState.ALGOD_VERSION)),
            )
            for i, (pool, state) in enumerate(zip(pools_data, versions))
        ]

    @cached("validator-node-pool-assignments")
    async def get_node_pool_assignments(self, validator_id: int) -> NodePoolAssignment:
        data = await self._call(
            RegistryMethods.GET_NODE_POOL_ASSIGNMENTS, {"validatorId": validator_id}
        )
        (nodes,) = data
        return NodePoolAssignment(nodes=[list(node[0]) for node in nodes])

    @cached("mbr")
    async def get_mbr_amounts(self) -> MbrAmounts:
        data = await self._call(RegistryMethods.GET_MBR_AMOUNTS)
        return MbrAmounts(
            add_validator_mbr=data[0],
            add_pool_mbr=data[1],
            pool_init_mbr=data[2],
            add_staker_mbr=data[3],
        )

    @cached("constraints")
    async def get_protocol_constraints(self) -> Constraints:
        data = await self._call(RegistryMethods.GET_PROTOCOL_CONSTRAINTS)
        return Constraints(
            epoch_payout_rounds_min=data[0],
            epoch_payout_rounds_max=data[1],
            min_pct_to_validator=data[2],
            max_pct_to_validator=data[3],
            min_entry_stake=data[4],
            max_algo_per_pool=data[5],
            max_algo_per_validator=data[6],
            amt_considered_saturated=data[7],
            max_nodes=data[8],
            max_pools_per_node=data[9],
            max_stakers_per_pool=data[10],
        )

    async def get_staked_pools_for_account(self, staker: str) -> list[ValidatorPoolKey]:
        data = await self._call(RegistryMethods.GET_STAKED_POOLS_FOR_ACCOUNT, {"staker": staker})
        return dedupe_pool_keys(data)

    async def get_pool_info(self, pool_key: ValidatorPoolKey) -> LocalPoolInfo:
        data = await self._call(RegistryMethods.GET_POOL_INFO, {"poolKey": pool_key.as_tuple()})
        return LocalPoolInfo(
            pool_id=pool_key.pool_id,
            pool_app_id=data[0],
            total_stakers=data[1],
            total_algo_staked=data[2],
            pool_address=self.gateway.app_address(pool_key.pool_app_id),
        )

    async def get_staker_pool_data(self, pool_key: ValidatorPoolKey, staker: str) -> StakerPoolData:
        """Staker's position in one pool, with the pool's last payout round."""
        global_state = await self.gateway.read_global_state(pool_key.pool_app_id)
        last_payout = int(global_state.get(PoolGlobalState.LAST_PAYOUT) or 0)

        data = await self.gateway.call_method(
            pool_key.pool_app_id,
            PoolMethods.GET_STAKER_INFO,
            {"staker": staker},
            CallMode.SIMULATE,
            extra_fee=GET_STAKER_INFO_EXTRA_FEE,
        )
        staked = staked_info_from_tuple(data)
        return StakerPoolData(**staked.model_dump(), pool_key=pool_key, last_payout=last_payout)

    @cached("staked-info")
    async def get_staked_info_for_pool(self, pool_app_id: int) -> list[StakedInfo]:
        """All stakers of a pool; empty (zero address) slots are dropped."""
        stakers = await self.gateway.read_box(pool_app_id, STAKERS_BOX)
        return [
            info
            for info in (staked_info_from_tuple(s) for s in stakers or [])
            if info.account != ALGORAND_ZERO_ADDRESS
        ]

    @cached("pool-apy")
    async def get_pool_apy(self, pool_app_id: int) -> int:
        """Pool APY in parts-per-ten-thousand, from the weighted moving average."""
        global_state = await self.gateway.read_global_state(pool_app_id)
        ewma = global_state.get(PoolGlobalState.WEIGHTED_MOVING_AVERAGE)
        if not ewma:
            raise NotFound(f"No moving average for pool {pool_app_id}")
        return int(ewma)

    async def does_staker_need_to_pay_mbr(self, staker: str) -> bool:
        result = await self._call(RegistryMethods.DOES_STAKER_NEED_TO_PAY_MBR, {"staker": staker})
        if result is None:
            raise NotFound("Error checking if staker needs to pay MBR")
        return bool(result)

    async def find_pool_for_staker(
        self, validator_id: int, amount_to_stake: int, staker: str
    ) -> FindPoolForStakerResponse:
        """Simulate where a stake would be placed. Raises SimulationFailed."""
        group = [
            method_call(staker, self.registry_app_id, RegistryMethods.GAS),
            method_call(
                staker,
                self.registry_app_id,
                RegistryMethods.FIND_POOL_FOR_STAKER,
                args={
                    "validatorId": validator_id,
                    "staker": staker,
                    "amountToStake": amount_to_stake,
                },
                extra_fee=FIND_POOL_EXTRA_FEE,
            ),
        ]
        result = await self.gateway.simulate(
            group, skip_signatures=True, allow_unnamed_resources=True
        )
        returned = result.returns[1] if len(result.returns) > 1 else None
        if result.failure_message or not returned:
            raise SimulationFailed(
                f"Error finding pool for staker: {result.failure_message or 'No pool found'}"
            )

        (val_id, pool_id, pool_app_id), new_to_validator, new_to_protocol = returned
        return FindPoolForStakerResponse(
            pool_key=ValidatorPoolKey(id=val_id, pool_id=pool_id, pool_app_id=pool_app_id),
            is_new_staker_to_validator=new_to_validator,
            is_new_staker_to_protocol=new_to_protocol,
        )

    async def is_new_staker_to_validator(
        self, validator_id: int, staker: str, min_entry_stake: int
    ) -> bool:
        result = await self._call(
            RegistryMethods.FIND_POOL_FOR_STAKER,
            {"validatorId": validator_id, "staker": staker, "amountToStake": min_entry_stake},
        )
        return bool(result[1])
