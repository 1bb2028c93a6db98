"""Write actions against the registry and staking pools."""

import base64
import logging
from typing import Any

from ..core.contracts import (
    ADD_POOL_VALIDITY_WINDOW,
    ADD_STAKE_VALIDITY_WINDOW,
    CHANGE_NFD_EXTRA_FEE,
    MAX_GATING_ASSETS,
    NFD_BOX_STORAGE_MBR,
    NFD_POOL_LINK_FIELD,
    REWARD_TOKEN_OPT_IN_MBR,
    PoolMethods,
    RegistryMethods,
)
from ..core.types import ValidatorConfig, ValidatorPoolKey
from ..data.algod import AlgodClient
from ..data.gateway import Signer, Txn, TxnType, asset_opt_in, method_call, payment
from ..data.registry import RegistryReader
from .composer import (
    NO_PADDING,
    STAKE_PADDING,
    STANDARD_PADDING,
    ActionPlan,
    FeeSimulatingComposer,
    main_call_fees,
)

logger = logging.getLogger(__name__)


def address_public_key(address: str) -> bytes:
    """The 32-byte public key inside an Algorand address."""
    return base64.b32decode(address + "=" * (-len(address) % 8))[:32]


def _pool_key(value: Any) -> ValidatorPoolKey:
    validator_id, pool_id, pool_app_id = value
    return ValidatorPoolKey(id=validator_id, pool_id=pool_id, pool_app_id=pool_app_id)


class StakingActions:
    """Builds each action's group and runs it through the composer."""

    def __init__(
        self,
        composer: FeeSimulatingComposer,
        registry: RegistryReader,
        algod: AlgodClient,
    ):
        self.composer = composer
        self.registry = registry
        self.algod = algod
        self.gateway = composer.gateway

    @property
    def registry_app_id(self) -> int:
        return self.registry.registry_app_id

    async def _reward_token_opt_in(self, sender: str, reward_token_id: int) -> Txn | None:
        """Opt-in transfer when the sender could not yet receive the reward token."""
        if reward_token_id <= 0:
            return None
        if await self.algod.is_opted_in_to_asset(sender, reward_token_id):
            return None
        return asset_opt_in(sender, reward_token_id)

    def _invalidate_validator(self, validator_id: int) -> None:
        cache = self.registry.cache
        for entity in (
            "validator-state",
            "validator-pools",
            "validator-node-pool-assignments",
            "validator-metrics",
        ):
            cache.invalidate(entity, validator_id)

    def _invalidate_stake(self, validator_id: int, pool_app_id: int, staker: str) -> None:
        self._invalidate_validator(validator_id)
        self.registry.cache.invalidate("staked-info", pool_app_id)
        self.registry.cache.invalidate("stakes", staker)

    async def add_validator(
        self, config: ValidatorConfig, nfd_name: str, sender: str, signer: Signer
    ) -> int:
        """Register a new validator; returns its assigned id."""
        mbr = await self.registry.get_mbr_amounts()
        registry_address = self.gateway.app_address(self.registry_app_id)
        config_args = config.model_dump(mode="json") | {"id": 0}

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                payment(sender, registry_address, mbr.add_validator_mbr),
                method_call(
                    sender,
                    self.registry_app_id,
                    RegistryMethods.ADD_VALIDATOR,
                    args={"nfdName": nfd_name, "config": config_args},
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(label="Add validator", build=build, return_index=0, parse=int)
        outcome = await self.composer.execute(plan, sender, signer)
        self.registry.cache.invalidate("num-validators")
        return outcome.value

    async def add_staking_pool(
        self, validator_id: int, node_num: int, pool_mbr: int, sender: str, signer: Signer
    ) -> ValidatorPoolKey:
        """Create a pool on a node slot; returns the new pool's key."""
        registry_address = self.gateway.app_address(self.registry_app_id)

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                *STANDARD_PADDING.build(
                    sender, self.registry_app_id, RegistryMethods.GAS, simulate
                ),
                payment(sender, registry_address, pool_mbr),
                method_call(
                    sender,
                    self.registry_app_id,
                    RegistryMethods.ADD_POOL,
                    args={"validatorId": validator_id, "nodeNum": node_num},
                    validity_window=ADD_POOL_VALIDITY_WINDOW,
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(
            label="Add staking pool",
            build=build,
            padding=STANDARD_PADDING,
            return_index=2,
            parse=_pool_key,
        )
        outcome = await self.composer.execute(plan, sender, signer)
        self._invalidate_validator(validator_id)
        return outcome.value

    async def init_staking_pool_storage(
        self,
        pool_app_id: int,
        pool_init_mbr: int,
        opt_in_reward_token: bool,
        sender: str,
        signer: Signer,
    ) -> None:
        """Pay for a new pool's storage, plus its reward token opt-in when needed."""
        mbr_amount = pool_init_mbr + (REWARD_TOKEN_OPT_IN_MBR if opt_in_reward_token else 0)
        pool_address = self.gateway.app_address(pool_app_id)

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                *STANDARD_PADDING.build(sender, pool_app_id, PoolMethods.GAS, simulate),
                payment(sender, pool_address, mbr_amount),
                method_call(
                    sender,
                    pool_app_id,
                    PoolMethods.INIT_STORAGE,
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(
            label="Pool storage requirement payment", build=build, padding=STANDARD_PADDING
        )
        await self.composer.execute(plan, sender, signer)

    async def add_stake(
        self,
        validator_id: int,
        stake_amount: int,
        value_to_verify: int,
        reward_token_id: int,
        sender: str,
        signer: Signer,
    ) -> ValidatorPoolKey:
        """Stake with a validator; returns the pool the stake landed in."""
        registry_address = self.gateway.app_address(self.registry_app_id)
        opt_in = await self._reward_token_opt_in(sender, reward_token_id)

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                *STAKE_PADDING.build(sender, self.registry_app_id, RegistryMethods.GAS, simulate),
                payment(sender, registry_address, stake_amount),
                method_call(
                    sender,
                    self.registry_app_id,
                    RegistryMethods.ADD_STAKE,
                    args={"validatorId": validator_id, "valueToVerify": value_to_verify},
                    validity_window=ADD_STAKE_VALIDITY_WINDOW,
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(
            label="Add stake",
            build=build,
            padding=STAKE_PADDING,
            opt_in=opt_in,
            return_index=2,
            parse=_pool_key,
        )
        outcome = await self.composer.execute(plan, sender, signer)
        self._invalidate_stake(validator_id, outcome.value.pool_app_id, sender)
        return outcome.value

    async def remove_stake(
        self,
        validator_id: int,
        pool_app_id: int,
        amount_to_unstake: int,
        reward_token_id: int,
        sender: str,
        signer: Signer,
    ) -> None:
        """Unstake from a pool (zero unstakes everything)."""
        opt_in = await self._reward_token_opt_in(sender, reward_token_id)

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                *STANDARD_PADDING.build(sender, pool_app_id, PoolMethods.GAS, simulate),
                method_call(
                    sender,
                    pool_app_id,
                    PoolMethods.REMOVE_STAKE,
                    args={"staker": sender, "amountToUnstake": amount_to_unstake},
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(
            label="Remove stake", build=build, padding=STANDARD_PADDING, opt_in=opt_in
        )
        await self.composer.execute(plan, sender, signer)
        self._invalidate_stake(validator_id, pool_app_id, sender)

    async def epoch_balance_update(self, pool_app_id: int, sender: str, signer: Signer) -> None:
        """Trigger the epoch payout of a pool."""

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                *STANDARD_PADDING.build(sender, pool_app_id, PoolMethods.GAS, simulate),
                method_call(
                    sender,
                    pool_app_id,
                    PoolMethods.EPOCH_BALANCE_UPDATE,
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(label="Epoch balance update", build=build, padding=STANDARD_PADDING)
        await self.composer.execute(plan, sender, signer)

    async def claim_tokens(self, pool_app_ids: list[int], sender: str, signer: Signer) -> None:
        """Claim reward tokens from several pools in one group."""
        if not pool_app_ids:
            raise ValueError("No pools to claim from")
        padding = STANDARD_PADDING.repeated(len(pool_app_ids))

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            group: list[Txn] = []
            for i, pool_app_id in enumerate(pool_app_ids):
                # the whole group's extra fee rides on the first claim call
                fees = main_call_fees(simulate, extra_fee if i == 0 else 0)
                group.extend(STANDARD_PADDING.build(sender, pool_app_id, PoolMethods.GAS, simulate))
                group.append(method_call(sender, pool_app_id, PoolMethods.CLAIM_TOKENS, **fees))
            return group

        plan = ActionPlan(label="Claim tokens", build=build, padding=padding)
        await self.composer.execute(plan, sender, signer)

    async def link_pool_to_nfd(
        self, pool_app_id: int, nfd_name: str, nfd_app_id: int, sender: str, signer: Signer
    ) -> None:
        """Point an NFD's verified pool field at a pool and record the link in the pool."""
        nfd_app_address = self.gateway.app_address(nfd_app_id)
        pool_app_address = self.gateway.app_address(pool_app_id)
        update_field_call = Txn(
            type=TxnType.APP_CALL,
            sender=sender,
            app_id=nfd_app_id,
            app_args=[
                b"update_field",
                NFD_POOL_LINK_FIELD.encode(),
                address_public_key(pool_app_address),
            ],
        )

        def build(simulate: bool, extra_fee: int) -> list[Txn]:
            return [
                payment(sender, nfd_app_address, NFD_BOX_STORAGE_MBR),
                update_field_call,
                method_call(
                    sender,
                    pool_app_id,
                    PoolMethods.LINK_TO_NFD,
                    args={"nfdAppId": nfd_app_id, "nfdName": nfd_name},
                    **main_call_fees(simulate, extra_fee),
                ),
            ]

        plan = ActionPlan(label="Link pool to NFD", build=build, padding=NO_PADDING)
        await self.composer.execute(plan, sender, signer)

    async def _change_validator(
        self,
        label: str,
        method: str,
        validator_id: int,
        args: dict[str, Any],
        sender: str,
        signer: Signer,
        extra_fee: int = 0,
    ) -> None:
        call = method_call(
            sender,
            self.registry_app_id,
            method,
            args={"validatorId": validator_id, **args},
            extra_fee=extra_fee,
        )
        await self.composer.execute_fixed(label, [call], sender, signer)
        self.registry.cache.invalidate("validator-config", validator_id)

    async def change_validator_manager(
        self, validator_id: int, manager: str, sender: str, signer: Signer
    ) -> None:
        await self._change_validator(
            "Change validator manager",
            RegistryMethods.CHANGE_VALIDATOR_MANAGER,
            validator_id,
            {"manager": manager},
            sender,
            signer,
        )

    async def change_validator_sunset_info(
        self, validator_id: int, sunsetting_on: int, sunsetting_to: int, sender: str, signer: Signer
    ) -> None:
        await self._change_validator(
            "Change validator sunset info",
            RegistryMethods.CHANGE_VALIDATOR_SUNSET_INFO,
            validator_id,
            {"sunsettingOn": sunsetting_on, "sunsettingTo": sunsetting_to},
            sender,
            signer,
        )

    async def change_validator_nfd(
        self, validator_id: int, nfd_app_id: int, nfd_name: str, sender: str, signer: Signer
    ) -> None:
        await self._change_validator(
            "Change validator NFD",
            RegistryMethods.CHANGE_VALIDATOR_NFD,
            validator_id,
            {"nfdAppId": nfd_app_id, "nfdName": nfd_name},
            sender,
            signer,
            extra_fee=CHANGE_NFD_EXTRA_FEE,
        )

    async def change_validator_commission_address(
        self, validator_id: int, commission_address: str, sender: str, signer: Signer
    ) -> None:
        await self._change_validator(
            "Change validator commission address",
            RegistryMethods.CHANGE_VALIDATOR_COMMISSION_ADDRESS,
            validator_id,
            {"commissionAddress": commission_address},
            sender,
            signer,
        )

    async def change_validator_reward_info(
        self,
        validator_id: int,
        entry_gating_type: int,
        entry_gating_address: str,
        entry_gating_assets: list[int],
        gating_asset_min_balance: int,
        reward_per_payout: int,
        sender: str,
        signer: Signer,
    ) -> None:
        if len(entry_gating_assets) != MAX_GATING_ASSETS:
            raise ValueError(f"entry_gating_assets must hold {MAX_GATING_ASSETS} asset ids")
        await self._change_validator(
            "Change validator reward info",
            RegistryMethods.CHANGE_VALIDATOR_REWARD_INFO,
            validator_id,
            {
                "entryGatingType": entry_gating_type,
                "entryGatingAddress": entry_gating_address,
                "entryGatingAssets": list(entry_gating_assets),
                "gatingAssetMinBalance": gating_asset_min_balance,
                "rewardPerPayout": reward_per_payout,
            },
            sender,
            signer,
        )
