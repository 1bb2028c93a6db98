"""Tests for the write actions built on the composer."""

import pytest

from conftest import OWNER, STAKER, validator_config_tuple
from reti_dashboard.core.errors import InsufficientBalance
from reti_dashboard.core.types import ValidatorConfig, ValidatorPoolKey
from reti_dashboard.data.cache import query_key
from reti_dashboard.data.gateway import SendResult, SimulateResult, TxnType
from reti_dashboard.data.registry import RegistryReader
from reti_dashboard.services.actions import StakingActions, address_public_key
from reti_dashboard.services.composer import FeeSimulatingComposer

REGISTRY_APP_ID = 1000


@pytest.fixture
def actions(gateway, algod, cache):
    registry = RegistryReader(gateway, cache, registry_app_id=REGISTRY_APP_ID)
    return StakingActions(FeeSimulatingComposer(gateway, algod), registry, algod)


@pytest.fixture
def funded(algod):
    algod.balances[STAKER] = 100_000_000
    algod.balances[OWNER] = 100_000_000
    return algod


def methods(group):
    return [t.method or t.type.value for t in group]


class TestAddStake:
    async def test_group_layout_and_return(self, actions, gateway, funded, signer, cache):
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        gateway.send_result = SendResult(returns=[None, None, [1, 2, 101]])
        cache.set(query_key("validator-state", 1), "stale")
        cache.set(query_key("validator-metrics", 1), "stale")
        cache.set(query_key("staked-info", 101), "stale")
        cache.set(query_key("stakes", STAKER), "stale")

        pool_key = await actions.add_stake(1, 5_000_000, 0, 0, STAKER, signer)

        assert pool_key == ValidatorPoolKey(id=1, pool_id=2, pool_app_id=101)
        assert methods(gateway.simulated[0]) == ["gas", "gas", "pay", "addStake"]

        committed = gateway.sent[0]
        assert committed[2].amount == 5_000_000
        assert committed[2].receiver == "APP1000"
        # two gas calls at normal fee, one credited
        assert committed[-1].extra_fee == 2000
        assert committed[-1].validity_window == 200
        for key in (
            query_key("validator-state", 1),
            query_key("validator-metrics", 1),
            query_key("staked-info", 101),
            query_key("stakes", STAKER),
        ):
            assert not cache.contains(key)

    async def test_reward_token_opt_in_when_missing(self, actions, gateway, funded, signer):
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        gateway.send_result = SendResult(returns=[None, None, [1, 1, 100]])

        await actions.add_stake(1, 5_000_000, 0, 77, STAKER, signer)

        for group in (gateway.simulated[0], gateway.sent[0]):
            assert group[-1].type is TxnType.ASSET_TRANSFER
            assert group[-1].asset_id == 77

    async def test_no_opt_in_when_already_opted_in(self, actions, gateway, funded, signer):
        funded.opted_in.add((STAKER, 77))
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        gateway.send_result = SendResult(returns=[None, None, [1, 1, 100]])

        await actions.add_stake(1, 5_000_000, 0, 77, STAKER, signer)

        assert methods(gateway.sent[0]) == ["gas", "gas", "pay", "addStake"]

    async def test_insufficient_balance(self, actions, gateway, algod, signer):
        algod.balances[STAKER] = 1_000_000
        gateway.simulate_result = SimulateResult(app_budget_added=1400)

        with pytest.raises(InsufficientBalance):
            await actions.add_stake(1, 5_000_000, 0, 0, STAKER, signer)
        assert gateway.sent == []


class TestPoolActions:
    async def test_remove_stake(self, actions, gateway, funded, signer, cache):
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        stale = [
            query_key("stakes", STAKER),
            query_key("staked-info", 100),
            query_key("validator-state", 1),
            query_key("validator-pools", 1),
        ]
        for key in stale:
            cache.set(key, "stale")

        await actions.remove_stake(1, 100, 0, 0, STAKER, signer)

        assert not any(cache.contains(key) for key in stale)

        committed = gateway.sent[0]
        assert methods(committed) == ["gas", "gas", "removeStake"]
        assert committed[-1].args == {"staker": STAKER, "amountToUnstake": 0}
        assert committed[-1].extra_fee == 1000

    async def test_claim_tokens_fee_on_first_claim(self, actions, gateway, funded, signer):
        gateway.simulate_result = SimulateResult(app_budget_added=2800)

        await actions.claim_tokens([100, 101], STAKER, signer)

        committed = gateway.sent[0]
        assert methods(committed) == ["gas", "gas", "claimTokens"] * 2
        claims = [t for t in committed if t.method == "claimTokens"]
        assert [c.app_id for c in claims] == [100, 101]
        assert [c.extra_fee for c in claims] == [1000, 0]

    async def test_claim_tokens_requires_pools(self, actions, signer):
        with pytest.raises(ValueError):
            await actions.claim_tokens([], STAKER, signer)

    async def test_epoch_balance_update(self, actions, gateway, funded, signer):
        gateway.simulate_result = SimulateResult(app_budget_added=700)

        await actions.epoch_balance_update(100, STAKER, signer)

        assert methods(gateway.sent[0]) == ["gas", "gas", "epochBalanceUpdate"]

    async def test_init_storage_includes_token_mbr(self, actions, gateway, funded, signer):
        gateway.simulate_result = SimulateResult(app_budget_added=1400)

        await actions.init_staking_pool_storage(100, 50_000, True, OWNER, signer)

        payment = [t for t in gateway.sent[0] if t.type is TxnType.PAYMENT][0]
        assert payment.amount == 150_000
        assert payment.receiver == "APP100"

    async def test_link_pool_to_nfd(self, actions, gateway, funded, signer):
        gateway.app_address = lambda app_id: "A" * 58

        await actions.link_pool_to_nfd(100, "alice.algo", 555, OWNER, signer)

        committed = gateway.sent[0]
        assert [t.type for t in committed] == [
            TxnType.PAYMENT,
            TxnType.APP_CALL,
            TxnType.APP_CALL,
        ]
        assert committed[0].amount == 20_500
        assert committed[1].app_args[:2] == [b"update_field", b"u.cav.algo.a"]
        assert committed[1].app_args[2] == bytes(32)
        assert committed[2].method == "linkToNfd"


class TestValidatorActions:
    async def test_add_validator(self, actions, gateway, funded, signer):
        gateway.on("getMbrAmounts", [10_000_000, 1_000_000, 100_000, 50_000])
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        gateway.send_result = SendResult(returns=[7])
        config = ValidatorConfig(
            **dict(zip(ValidatorConfig.model_fields, validator_config_tuple(0)))
        )

        validator_id = await actions.add_validator(config, "", OWNER, signer)

        assert validator_id == 7
        assert gateway.sent[0][0].amount == 10_000_000

    async def test_add_staking_pool(self, actions, gateway, funded, signer, cache):
        gateway.simulate_result = SimulateResult(app_budget_added=1400)
        gateway.send_result = SendResult(returns=[None, None, [3, 2, 205]])
        cache.set(query_key("validator-pools", 3), "stale")

        pool_key = await actions.add_staking_pool(3, 1, 1_000_000, OWNER, signer)

        assert pool_key.as_tuple() == (3, 2, 205)
        assert gateway.sent[0][-1].validity_window == 100
        assert not cache.contains(query_key("validator-pools", 3))

    async def test_change_validator_nfd_fixed_fee(self, actions, gateway, algod, signer, cache):
        algod.balances[OWNER] = 2000
        cache.set(query_key("validator-config", 4), "stale")

        await actions.change_validator_nfd(4, 555, "alice.algo", OWNER, signer)

        assert gateway.simulated == []
        (call,) = gateway.sent[0]
        assert call.method == "changeValidatorNfd"
        assert call.extra_fee == 1000
        assert not cache.contains(query_key("validator-config", 4))

    async def test_change_manager_insufficient(self, actions, gateway, algod, signer):
        algod.balances[OWNER] = 999

        with pytest.raises(InsufficientBalance):
            await actions.change_validator_manager(4, STAKER, OWNER, signer)
        assert gateway.sent == []

    async def test_reward_info_requires_four_assets(self, actions, funded, signer):
        with pytest.raises(ValueError):
            await actions.change_validator_reward_info(4, 1, OWNER, [1, 2], 0, 0, OWNER, signer)


def test_address_public_key_length():
    assert len(address_public_key("A" * 58)) == 32
