"""
Tests for the unstake workflow in stakeflow/composer.py
"""

import pytest
import trio
from solders.pubkey import Pubkey

from stakeflow.composer import WorkflowComposer, UnstakeParams, should_return_receipt
from stakeflow.errors import PreconditionError
from stakeflow.pda import find_reward_distributor_id, find_reward_entry_id
from stakeflow.programs.accounts import RewardEntry, StakeEntry, StakePool

from fake_ledger import (
    FakeLedger,
    create_metadata,
    create_mint,
    create_reward_distributor,
    create_stake_entry,
    create_stake_pool,
    create_token_manager,
)


ATA = "create_associated_token_account_idempotent"


def create_composer(ledger: FakeLedger, now: float = 1_700_000_000) -> WorkflowComposer:
    return WorkflowComposer(ledger, Pubkey.new_unique(), clock=lambda: now)


# ============================================================================
# UNSTAKE TESTS
# ============================================================================

class TestUnstake:
    """Tests for WorkflowComposer.unstake."""

    @pytest.mark.timeout(30)
    def test_without_distributor(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert composed.transaction.names() == [ATA, "unstake"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_rewards_claimed_before_unstake(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)
        create_reward_distributor(ledger, pool_id, Pubkey.new_unique())

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            names = composed.transaction.names()
            assert names == [
                ATA,
                "update_total_stake_seconds",
                ATA,
                "init_reward_entry",
                "claim_rewards",
                "unstake",
            ]
            assert names.index("claim_rewards") < names.index("unstake")

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_existing_reward_entry_and_skip_token_account(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        entry_id = create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)
        create_reward_distributor(ledger, pool_id, Pubkey.new_unique())
        distributor_id = find_reward_distributor_id(pool_id)
        ledger.put(
            find_reward_entry_id(distributor_id, entry_id),
            RewardEntry(bump=1, stake_entry=entry_id, reward_distributor=distributor_id),
        )

        async def run_test():
            composed = await composer.unstake(
                UnstakeParams(pool_id, mint_id, skip_reward_mint_token_account=True)
            )
            assert composed.transaction.names() == [
                ATA, "update_total_stake_seconds", "claim_rewards", "unstake",
            ]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_programmable_unstake(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_metadata(ledger, mint_id, programmable=True)
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert composed.transaction.names() == ["unstake_programmable"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_pool_not_found(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        mint_id = create_mint(ledger)

        async def run_test():
            with pytest.raises(PreconditionError, match="Stake pool not found"):
                await composer.unstake(UnstakeParams(Pubkey.new_unique(), mint_id))

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_entry_not_found(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)

        async def run_test():
            with pytest.raises(PreconditionError, match="Stake entry not found"):
                await composer.unstake(UnstakeParams(pool_id, mint_id))

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_stake_mint_passed_to_unstake(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        stake_mint = Pubkey.new_unique()
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1, stake_mint=stake_mint)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert len(composed.transaction.instructions[-1].accounts) == 8

        trio.run(run_test)


# ============================================================================
# RECEIPT RETURN TESTS
# ============================================================================

class TestReceiptReturn:
    """Claimed receipts go back to their token manager before unstaking."""

    def _setup(self, ledger: FakeLedger, composer: WorkflowComposer, cooldown_seconds=None):
        pool_id = create_stake_pool(ledger, Pubkey.new_unique(), cooldown_seconds=cooldown_seconds)
        mint_id = create_mint(ledger)
        create_stake_entry(
            ledger, composer.wallet, pool_id, mint_id,
            amount=1, original_mint_claimed=True, cooldown_start_seconds=1000,
        )
        create_token_manager(ledger, mint_id)
        return pool_id, mint_id

    @pytest.mark.timeout(30)
    def test_return_without_cooldown(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id, mint_id = self._setup(ledger, composer)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert composed.transaction.names() == [ATA, "return_receipt_mint", "unstake"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_cooldown_not_elapsed(self):
        ledger = FakeLedger()
        composer = create_composer(ledger, now=1300)
        pool_id, mint_id = self._setup(ledger, composer, cooldown_seconds=600)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert composed.transaction.names() == [ATA, "unstake"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_cooldown_elapsed(self):
        ledger = FakeLedger()
        composer = create_composer(ledger, now=1600)
        pool_id, mint_id = self._setup(ledger, composer, cooldown_seconds=600)

        async def run_test():
            composed = await composer.unstake(UnstakeParams(pool_id, mint_id))
            assert composed.transaction.names() == [ATA, "return_receipt_mint", "unstake"]

        trio.run(run_test)


class TestShouldReturnReceipt:
    """Tests for the cooldown predicate."""

    def _entry(self, cooldown_start_seconds=None) -> StakeEntry:
        return StakeEntry(
            bump=1, pool=Pubkey.new_unique(), amount=1, original_mint=Pubkey.new_unique(),
            original_mint_claimed=True, last_staker=Pubkey.new_unique(),
            cooldown_start_seconds=cooldown_start_seconds,
        )

    def _pool(self, cooldown_seconds=None) -> StakePool:
        return StakePool(bump=1, identifier=1, authority=Pubkey.new_unique(), cooldown_seconds=cooldown_seconds)

    def test_no_cooldown(self):
        assert should_return_receipt(self._pool(), self._entry(), 0)

    def test_cooldown_not_started(self):
        assert not should_return_receipt(self._pool(60), self._entry(), 10_000)

    def test_boundary(self):
        assert should_return_receipt(self._pool(60), self._entry(100), 160)
        assert not should_return_receipt(self._pool(60), self._entry(100), 159)
