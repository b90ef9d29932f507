"""
Tests for the stake workflow and stake entry administration in stakeflow/composer.py
"""

import pytest
import trio
from solders.pubkey import Pubkey

from stakeflow.composer import (
    WorkflowComposer,
    AuthorizeStakeEntryParams,
    CreateRewardDistributorParams,
    CreateStakeEntryAndStakeMintParams,
    CreateStakeEntryParams,
    CreateStakePoolParams,
    InitializeRewardEntryParams,
    RewardDistributorSettings,
    StakeParams,
    stake as compose_stake,
)
from stakeflow.errors import PreconditionError
from stakeflow.pda import (
    find_identifier_id,
    find_reward_distributor_id,
    find_stake_entry_id,
    find_stake_pool_id,
    get_associated_token_address,
)
from stakeflow.programs.accounts import Identifier, ReceiptType, RewardDistributorKind
from stakeflow.programs.stake_pool import INIT_STAKE_MINT_ARGS

from fake_ledger import (
    FakeLedger,
    create_metadata,
    create_mint,
    create_stake_entry,
    create_stake_pool,
)


ATA = "create_associated_token_account_idempotent"


def create_composer(ledger: FakeLedger, wallet=None) -> WorkflowComposer:
    return WorkflowComposer(ledger, wallet or Pubkey.new_unique())


# ============================================================================
# STAKE TESTS
# ============================================================================

class TestStake:
    """Tests for WorkflowComposer.stake."""

    @pytest.mark.timeout(30)
    def test_fresh_stake(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)

        async def run_test():
            composed = await composer.stake(StakeParams(pool_id, mint_id))
            assert composed.transaction.names() == ["init_entry", ATA, "stake"]
            assert composed.addresses["stake_entry"] == find_stake_entry_id(
                composer.wallet, pool_id, mint_id, False
            )
            assert composed.addresses["user_original_mint_token_account"] == \
                get_associated_token_address(mint_id, composer.wallet)

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_restake_skips_init(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)

        async def run_test():
            composed = await composer.stake(
                StakeParams(pool_id, mint_id, receipt_type=ReceiptType.ORIGINAL)
            )
            # Entry already holds the asset, so no receipt is claimed again
            assert composed.transaction.names() == [ATA, "stake"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_original_receipt_claim(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)

        async def run_test():
            composed = await composer.stake(
                StakeParams(pool_id, mint_id, receipt_type=ReceiptType.ORIGINAL)
            )
            assert composed.transaction.names() == [
                "init_entry", ATA, "stake", ATA, "claim_receipt_mint",
            ]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_stake_mint_receipt_claim(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        stake_mint = Pubkey.new_unique()
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, stake_mint=stake_mint)

        async def run_test():
            composed = await composer.stake(
                StakeParams(pool_id, mint_id, receipt_type=ReceiptType.RECEIPT)
            )
            names = composed.transaction.names()
            assert names == [ATA, "stake", ATA, "claim_receipt_mint"]
            claim = composed.transaction.instructions[-1]
            assert claim.accounts[2].pubkey == stake_mint

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_receipt_already_claimed(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_stake_entry(
            ledger, composer.wallet, pool_id, mint_id,
            stake_mint=Pubkey.new_unique(), stake_mint_claimed=True,
        )

        async def run_test():
            with pytest.raises(PreconditionError, match="already been claimed"):
                await composer.stake(
                    StakeParams(pool_id, mint_id, receipt_type=ReceiptType.ORIGINAL)
                )

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_stake_twice_rereads_entry(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        params = StakeParams(pool_id, mint_id, receipt_type=ReceiptType.ORIGINAL)

        async def first_stake():
            composed = await composer.stake(params)
            assert composed.transaction.names() == [
                "init_entry", ATA, "stake", ATA, "claim_receipt_mint",
            ]
            return composed.addresses["stake_entry"]

        entry_id = trio.run(first_stake)
        # Land the first transaction's effects on the ledger
        assert create_stake_entry(
            ledger, composer.wallet, pool_id, mint_id, amount=1, original_mint_claimed=True,
        ) == entry_id

        async def second_stake():
            with pytest.raises(PreconditionError, match="already been claimed"):
                await composer.stake(params)

        trio.run(second_stake)

    @pytest.mark.timeout(30)
    def test_stake_twice_without_receipt(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        params = StakeParams(pool_id, mint_id)

        async def run_test():
            first = await composer.stake(params)
            assert first.transaction.names() == ["init_entry", ATA, "stake"]

            create_stake_entry(ledger, composer.wallet, pool_id, mint_id, amount=1)
            second = await composer.stake(params)
            assert second.transaction.names() == [ATA, "stake"]
            assert second.addresses["stake_entry"] == first.addresses["stake_entry"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_receipt_without_stake_mint(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)

        async def run_test():
            with pytest.raises(PreconditionError, match="Initialize stake mint first"):
                await composer.stake(
                    StakeParams(pool_id, mint_id, receipt_type=ReceiptType.RECEIPT)
                )

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_programmable_stake(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        metadata = create_metadata(ledger, mint_id, programmable=True)

        async def run_test():
            composed = await composer.stake(
                StakeParams(pool_id, mint_id, receipt_type=ReceiptType.ORIGINAL)
            )
            assert composed.transaction.names() == ["init_entry", "stake_programmable"]
            accounts = [m.pubkey for m in composed.transaction.instructions[-1].accounts]
            assert metadata.rule_set in accounts

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_fungible_entry_is_per_wallet(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger, supply=1_000_000)

        async def run_test():
            composed = await composer.stake(StakeParams(pool_id, mint_id, amount=500))
            assert composed.addresses["stake_entry"] == find_stake_entry_id(
                composer.wallet, pool_id, mint_id, True
            )
            assert bytes(composed.transaction.instructions[-1].data)[8:] == \
                (500).to_bytes(8, "little")

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_missing_mint(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())

        async def run_test():
            with pytest.raises(PreconditionError, match="not found"):
                await composer.stake(StakeParams(pool_id, Pubkey.new_unique()))

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_custom_token_account(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        token_account = Pubkey.new_unique()

        async def run_test():
            composed = await compose_stake(
                ledger, composer.wallet, StakeParams(pool_id, mint_id, token_account)
            )
            stake_ix = composed.transaction.instructions[-1]
            assert stake_ix.accounts[5].pubkey == token_account

        trio.run(run_test)


# ============================================================================
# POOL ADMINISTRATION TESTS
# ============================================================================

class TestPoolAdministration:
    """Tests for pool, distributor and stake entry creation."""

    @pytest.mark.timeout(30)
    def test_first_pool_creates_identifier(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)

        async def run_test():
            composed = await composer.create_stake_pool(CreateStakePoolParams())
            assert composed.transaction.names() == ["init_identifier", "init_pool"]
            assert composed.addresses["stake_pool"] == find_stake_pool_id(1)

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_pool_uses_identifier_count(self):
        ledger = FakeLedger()
        ledger.put(find_identifier_id(), Identifier(bump=255, count=5))
        composer = create_composer(ledger)

        async def run_test():
            composed = await composer.create_stake_pool(CreateStakePoolParams(cooldown_seconds=60))
            assert composed.transaction.names() == ["init_pool"]
            assert composed.addresses["stake_pool"] == find_stake_pool_id(5)

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_pool_with_treasury_distributor(self):
        ledger = FakeLedger()
        ledger.put(find_identifier_id(), Identifier(bump=255, count=2))
        composer = create_composer(ledger)
        settings = RewardDistributorSettings(
            Pubkey.new_unique(), kind=RewardDistributorKind.TREASURY, supply=1000
        )

        async def run_test():
            composed = await composer.create_stake_pool(
                CreateStakePoolParams(reward_distributor=settings)
            )
            assert composed.transaction.names() == ["init_pool", ATA, "init_reward_distributor"]
            assert composed.addresses["reward_distributor"] == \
                find_reward_distributor_id(find_stake_pool_id(2))

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_create_reward_distributor(self):
        composer = create_composer(FakeLedger())
        pool_id = Pubkey.new_unique()

        async def run_test():
            composed = await composer.create_reward_distributor(
                CreateRewardDistributorParams(pool_id, RewardDistributorSettings(Pubkey.new_unique()))
            )
            assert composed.transaction.names() == ["init_reward_distributor"]
            assert composed.addresses["reward_distributor"] == find_reward_distributor_id(pool_id)

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_authorize_stake_entry(self):
        composer = create_composer(FakeLedger())

        async def run_test():
            composed = await composer.authorize_stake_entry(
                AuthorizeStakeEntryParams(Pubkey.new_unique(), Pubkey.new_unique())
            )
            assert composed.transaction.names() == ["authorize_mint"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_create_stake_entry(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        mint_id = create_mint(ledger)
        pool_id = Pubkey.new_unique()

        async def run_test():
            composed = await composer.create_stake_entry(CreateStakeEntryParams(pool_id, mint_id))
            assert composed.transaction.names() == ["init_entry"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_create_stake_entry_and_stake_mint(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique(), identifier=3)
        mint_id = create_mint(ledger)

        async def run_test():
            composed = await composer.create_stake_entry_and_stake_mint(
                CreateStakeEntryAndStakeMintParams(pool_id, mint_id)
            )
            assert composed.transaction.names() == ["init_entry", "init_stake_mint"]
            assert len(composed.signers) == 1
            assert composed.addresses["stake_mint"] == composed.signers[0].pubkey()
            args = INIT_STAKE_MINT_ARGS.parse(bytes(composed.transaction.instructions[-1].data)[8:])
            assert args.name == "POOl3 RECEIPT"
            assert args.symbol == "POOl3"

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_existing_stake_mint_is_kept(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)
        create_stake_entry(ledger, composer.wallet, pool_id, mint_id, stake_mint=Pubkey.new_unique())

        async def run_test():
            composed = await composer.create_stake_entry_and_stake_mint(
                CreateStakeEntryAndStakeMintParams(pool_id, mint_id)
            )
            assert len(composed.transaction) == 0
            assert composed.signers == []

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_stake_mint_needs_pool(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        mint_id = create_mint(ledger)

        async def run_test():
            with pytest.raises(PreconditionError, match="Stake pool not found"):
                await composer.create_stake_entry_and_stake_mint(
                    CreateStakeEntryAndStakeMintParams(Pubkey.new_unique(), mint_id)
                )

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_initialize_reward_entry(self):
        ledger = FakeLedger()
        composer = create_composer(ledger)
        pool_id = create_stake_pool(ledger, Pubkey.new_unique())
        mint_id = create_mint(ledger)

        async def run_test():
            composed = await composer.initialize_reward_entry(
                InitializeRewardEntryParams(pool_id, mint_id, multiplier=4)
            )
            assert composed.transaction.names() == [
                "init_entry", "init_reward_entry", "update_reward_entry",
            ]
            assert bytes(composed.transaction.instructions[-1].data)[8:] == (4).to_bytes(8, "little")

        trio.run(run_test)
