"""
Tests for batched reward claims in stakeflow/composer.py
"""

import logging

import pytest
import trio
from solders.pubkey import Pubkey

from stakeflow.composer import (
    WorkflowComposer,
    ClaimPoolRewardsParams,
    ClaimRewardsRequest,
    gather,
)
from stakeflow.errors import AccountDecodeError, PreconditionError
from stakeflow.pda import find_reward_distributor_id, find_reward_entry_id, get_associated_token_address
from stakeflow.programs.accounts import RewardEntry

from fake_ledger import (
    FakeLedger,
    create_mint,
    create_reward_distributor,
    create_stake_entry,
    create_stake_pool,
)


ATA = "create_associated_token_account_idempotent"


def create_staked_entry(ledger: FakeLedger, wallet: Pubkey, pool_id: Pubkey) -> Pubkey:
    return create_stake_entry(ledger, wallet, pool_id, create_mint(ledger), amount=1)


# ============================================================================
# CLAIM REWARDS TESTS
# ============================================================================

class TestClaimRewards:
    """Tests for WorkflowComposer.claim_rewards."""

    @pytest.mark.timeout(30)
    def test_lazy_reward_entry(self):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        create_reward_distributor(ledger, pool_id, Pubkey.new_unique())
        entry_id = create_staked_entry(ledger, composer.wallet, pool_id)

        async def run_test():
            results = await composer.claim_rewards([ClaimRewardsRequest(pool_id, entry_id)])
            assert len(results) == 1
            assert results[0].ok
            assert results[0].key == entry_id
            assert results[0].transaction.names() == [
                "update_total_stake_seconds", ATA, "init_reward_entry", "claim_rewards",
            ]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_existing_reward_entry(self):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        create_reward_distributor(ledger, pool_id, Pubkey.new_unique())
        entry_id = create_staked_entry(ledger, composer.wallet, pool_id)
        distributor_id = find_reward_distributor_id(pool_id)
        ledger.put(
            find_reward_entry_id(distributor_id, entry_id),
            RewardEntry(bump=1, stake_entry=entry_id, reward_distributor=distributor_id),
        )

        async def run_test():
            results = await composer.claim_rewards([
                ClaimRewardsRequest(pool_id, entry_id, skip_reward_mint_token_account=True)
            ])
            assert results[0].transaction.names() == ["update_total_stake_seconds", "claim_rewards"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_rewards_paid_to_last_staker(self):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        distributor = create_reward_distributor(ledger, pool_id, Pubkey.new_unique())
        entry_id = create_staked_entry(ledger, composer.wallet, pool_id)
        staker = Pubkey.new_unique()

        async def run_test():
            results = await composer.claim_rewards([
                ClaimRewardsRequest(pool_id, entry_id, last_staker=staker)
            ])
            claim = results[0].transaction.instructions[-1]
            assert claim.accounts[5].pubkey == get_associated_token_address(
                distributor.reward_mint, staker
            )

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_batch_isolation(self, caplog):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        rewarded_pool = create_stake_pool(ledger, Pubkey.new_unique())
        bare_pool = create_stake_pool(ledger, Pubkey.new_unique())
        create_reward_distributor(ledger, rewarded_pool, Pubkey.new_unique())
        good_entry = create_staked_entry(ledger, composer.wallet, rewarded_pool)
        bad_entry = create_staked_entry(ledger, composer.wallet, bare_pool)

        async def run_test():
            with caplog.at_level(logging.WARNING, logger="stakeflow.composer"):
                results = await composer.claim_rewards([
                    ClaimRewardsRequest(bare_pool, bad_entry),
                    ClaimRewardsRequest(rewarded_pool, good_entry),
                ])
            assert [r.key for r in results] == [bad_entry, good_entry]
            assert not results[0].ok
            assert isinstance(results[0].error, PreconditionError)
            assert "No reward distributor found" in str(results[0].error)
            assert results[1].ok
            assert results[1].transaction.names()[-1] == "claim_rewards"

        trio.run(run_test)
        assert "skipping stake entry" in caplog.text

    @pytest.mark.timeout(30)
    def test_undecodable_distributor(self):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        broken_pool = create_stake_pool(ledger, Pubkey.new_unique())
        good_pool = create_stake_pool(ledger, Pubkey.new_unique())
        ledger.put(find_reward_distributor_id(broken_pool), b"\x00" * 40)
        create_reward_distributor(ledger, good_pool, Pubkey.new_unique())
        broken_entry = create_staked_entry(ledger, composer.wallet, broken_pool)
        good_entry = create_staked_entry(ledger, composer.wallet, good_pool)

        async def run_test():
            results = await composer.claim_rewards([
                ClaimRewardsRequest(broken_pool, broken_entry),
                ClaimRewardsRequest(good_pool, good_entry),
            ])
            assert isinstance(results[0].error, AccountDecodeError)
            assert results[1].ok

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_distributors_read_once_per_pool(self):
        ledger = FakeLedger()
        composer = WorkflowComposer(ledger, Pubkey.new_unique())
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        create_reward_distributor(ledger, pool_id, Pubkey.new_unique())
        entries = [create_staked_entry(ledger, composer.wallet, pool_id) for _ in range(3)]

        async def run_test():
            results = await composer.claim_pool_rewards(ClaimPoolRewardsParams(pool_id, entries))
            assert [r.key for r in results] == entries
            assert all(r.ok for r in results)

        trio.run(run_test)
        assert sorted(len(batch) for batch in ledger.reads) == [1, 3]

    @pytest.mark.timeout(30)
    def test_empty_batch(self):
        composer = WorkflowComposer(FakeLedger(), Pubkey.new_unique())

        async def run_test():
            assert await composer.claim_rewards([]) == []

        trio.run(run_test)


# ============================================================================
# GATHER TESTS
# ============================================================================

class TestGather:
    """Tests for the concurrent read helper."""

    @pytest.mark.timeout(30)
    def test_results_in_call_order(self):
        async def slow(value):
            await trio.sleep(0.01)
            return value

        async def fast(value):
            return value

        async def run_test():
            assert await gather((slow, 1), (fast, 2)) == [1, 2]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_first_error_raised(self):
        async def fail(message):
            raise PreconditionError(message)

        async def ok():
            return True

        async def run_test():
            with pytest.raises(PreconditionError, match="first"):
                await gather((ok,), (fail, "first"), (fail, "second"))

        trio.run(run_test)
