"""
stakeflow/composer.py

Workflow Composer: turns high-level staking operations into unsigned
instruction sequences.

Every operation follows the same shape:
1. Derive the addresses it needs
2. Read the current ledger state (concurrently where reads are independent)
3. Walk a list of guarded steps, appending instructions for the steps whose
   guard holds

Guards are evaluated against state read during the same call, so running an
operation again after its transaction landed skips the steps that already
took effect. Nothing is signed or submitted here.

Example:
    from stakeflow import WorkflowComposer, RPCClient, StakeParams

    client = RPCClient.from_config()
    composer = WorkflowComposer(client, wallet.pubkey())

    composed = trio.run(composer.stake, StakeParams(pool_id, mint_id))
    message = composed.transaction.compile(wallet.pubkey(), blockhash)
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import trio
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .config import NetworkConfig, get_config
from .errors import AccountDecodeError, PreconditionError
from .pda import (
    find_identifier_id,
    find_stake_pool_id,
    find_stake_entry_id,
    find_reward_distributor_id,
    find_reward_entry_id,
    find_group_entry_id,
    find_group_reward_distributor_id,
    find_group_reward_entry_id,
    find_group_reward_counter_id,
    find_token_manager_id,
    find_mint_metadata_id,
    get_associated_token_address,
)
from .programs import stake_pool as pool_ix
from .programs import reward_distributor as reward_ix
from .programs import group_reward_distributor as group_ix
from .programs.accounts import (
    AssetTransferMode,
    GroupRewardCounter,
    GroupRewardDistributor,
    GroupRewardDistributorKind,
    GroupRewardDistributorMetadataKind,
    GroupRewardDistributorPoolKind,
    GroupRewardEntry,
    Identifier,
    Metadata,
    Mint,
    ReceiptType,
    RewardDistributor,
    RewardDistributorKind,
    RewardEntry,
    StakeEntry,
    StakePool,
    TokenManager,
)
from .programs.common import create_associated_token_account_idempotent
from .reader import AccountReader
from .transaction import BatchResult, ComposedTransaction, Ensured, TransactionBuffer

logger = logging.getLogger("stakeflow.composer")


# ============================================================================
# PARAMETERS
# ============================================================================

@dataclass
class RewardDistributorSettings:
    """Reward distributor configuration, shared by pool creation and standalone creation."""
    reward_mint: Pubkey
    reward_amount: int = 1
    reward_duration_seconds: int = 1
    kind: RewardDistributorKind = RewardDistributorKind.MINT
    supply: Optional[int] = None
    max_supply: Optional[int] = None
    default_multiplier: Optional[int] = None
    multiplier_decimals: Optional[int] = None
    max_reward_seconds_received: Optional[int] = None


@dataclass
class CreateStakePoolParams:
    requires_collections: List[Pubkey] = field(default_factory=list)
    requires_creators: List[Pubkey] = field(default_factory=list)
    requires_authorization: bool = False
    overlay_text: str = "STAKED"
    image_uri: str = ""
    reset_on_stake: bool = False
    cooldown_seconds: Optional[int] = None
    min_stake_seconds: Optional[int] = None
    end_date: Optional[int] = None
    double_or_reset_enabled: Optional[bool] = None
    reward_distributor: Optional[RewardDistributorSettings] = None


@dataclass
class CreateRewardDistributorParams:
    stake_pool: Pubkey
    settings: RewardDistributorSettings


@dataclass
class CreateStakeEntryParams:
    stake_pool: Pubkey
    original_mint: Pubkey


@dataclass
class CreateStakeEntryAndStakeMintParams:
    stake_pool: Pubkey
    original_mint: Pubkey
    receipt_name: Optional[str] = None


@dataclass
class InitializeRewardEntryParams:
    stake_pool: Pubkey
    original_mint: Pubkey
    multiplier: int = 1


@dataclass
class AuthorizeStakeEntryParams:
    stake_pool: Pubkey
    original_mint: Pubkey


@dataclass
class StakeParams:
    """
    Stake one asset.

    user_original_mint_token_account defaults to the wallet's associated
    token account for the mint. receipt_type NONE claims no receipt.
    """
    stake_pool: Pubkey
    original_mint: Pubkey
    user_original_mint_token_account: Optional[Pubkey] = None
    receipt_type: ReceiptType = ReceiptType.NONE
    amount: int = 1


@dataclass
class UnstakeParams:
    stake_pool: Pubkey
    original_mint: Pubkey
    skip_reward_mint_token_account: bool = False


@dataclass
class ClaimRewardsRequest:
    """One stake entry to claim for; last_staker defaults to the wallet."""
    stake_pool: Pubkey
    stake_entry: Pubkey
    last_staker: Optional[Pubkey] = None
    skip_reward_mint_token_account: bool = False


@dataclass
class ClaimPoolRewardsParams:
    stake_pool: Pubkey
    stake_entries: List[Pubkey]
    last_staker: Optional[Pubkey] = None
    skip_reward_mint_token_account: bool = False

    def requests(self) -> List[ClaimRewardsRequest]:
        return [
            ClaimRewardsRequest(
                self.stake_pool,
                entry,
                last_staker=self.last_staker,
                skip_reward_mint_token_account=self.skip_reward_mint_token_account,
            )
            for entry in self.stake_entries
        ]


@dataclass
class CreateGroupEntryParams:
    stake_entries: List[Pubkey]
    group_cooldown_seconds: Optional[int] = None
    group_stake_seconds: Optional[int] = None


@dataclass
class GroupRewardTuning:
    """Optional multipliers and limits of a group reward distributor; None leaves the program default."""
    base_adder: Optional[int] = None
    base_adder_decimals: Optional[int] = None
    base_multiplier: Optional[int] = None
    base_multiplier_decimals: Optional[int] = None
    multiplier_decimals: Optional[int] = None
    max_supply: Optional[int] = None
    min_cooldown_seconds: Optional[int] = None
    min_stake_seconds: Optional[int] = None
    group_count_multiplier: Optional[int] = None
    group_count_multiplier_decimals: Optional[int] = None
    min_group_size: Optional[int] = None
    max_reward_seconds_received: Optional[int] = None


@dataclass
class CreateGroupRewardDistributorParams:
    reward_mint: Pubkey
    authorized_pools: List[Pubkey]
    reward_amount: int = 1
    reward_duration_seconds: int = 1
    reward_kind: GroupRewardDistributorKind = GroupRewardDistributorKind.MINT
    pool_kind: GroupRewardDistributorPoolKind = GroupRewardDistributorPoolKind.NO_RESTRICTION
    metadata_kind: GroupRewardDistributorMetadataKind = GroupRewardDistributorMetadataKind.NO_RESTRICTION
    supply: Optional[int] = None
    tuning: GroupRewardTuning = field(default_factory=GroupRewardTuning)


@dataclass
class UpdateGroupRewardDistributorParams:
    group_reward_distributor: Pubkey
    authorized_pools: List[Pubkey]
    reward_amount: int = 1
    reward_duration_seconds: int = 1
    pool_kind: GroupRewardDistributorPoolKind = GroupRewardDistributorPoolKind.NO_RESTRICTION
    metadata_kind: GroupRewardDistributorMetadataKind = GroupRewardDistributorMetadataKind.NO_RESTRICTION
    tuning: GroupRewardTuning = field(default_factory=GroupRewardTuning)


@dataclass
class ClaimGroupRewardsParams:
    """stake_entries are only read when the group reward entry does not exist yet."""
    group_reward_distributor: Pubkey
    group_entry: Pubkey
    stake_entries: List[Pubkey] = field(default_factory=list)


@dataclass
class CloseGroupEntryParams:
    group_reward_distributor: Pubkey
    group_entry: Pubkey
    stake_entries: List[Pubkey] = field(default_factory=list)


@dataclass
class InitUngroupingParams:
    group_entry: Pubkey


# ============================================================================
# HELPERS
# ============================================================================

def should_return_receipt(pool: StakePool, entry: StakeEntry, now: float) -> bool:
    """
    Whether a claimed receipt can go back to its token manager yet.

    True when the pool has no cooldown, or the entry's cooldown started at
    least cooldown_seconds before now.
    """
    if not pool.cooldown_seconds:
        return True
    return (
        entry.cooldown_start_seconds is not None
        and now - entry.cooldown_start_seconds >= pool.cooldown_seconds
    )


async def gather(*calls: Tuple[Callable[..., Awaitable[Any]], ...]) -> List[Any]:
    """
    Run independent coroutines concurrently and return their results in order.

    Each call is (async_fn, *args). If any call fails, the first failure (in
    call order) is raised once all of them have finished.
    """
    results: List[Any] = [None] * len(calls)
    errors: List[Optional[Exception]] = [None] * len(calls)

    async def run(index: int, fn, args) -> None:
        try:
            results[index] = await fn(*args)
        except Exception as e:
            errors[index] = e

    async with trio.open_nursery() as nursery:
        for index, (fn, *args) in enumerate(calls):
            nursery.start_soon(run, index, fn, args)

    for error in errors:
        if error is not None:
            raise error
    return results


# ============================================================================
# WORKFLOW COMPOSER
# ============================================================================

class WorkflowComposer:
    """
    Composes staking workflows for one wallet.

    Args:
        client: Ledger client with an async get_multiple_accounts
        wallet: Public key that signs and pays for the composed transactions
        config: Network configuration (defaults to the active one)
        clock: Returns the current unix time; used for cooldown checks
    """

    def __init__(
        self,
        client,
        wallet: Pubkey,
        config: Optional[NetworkConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.reader = AccountReader(client)
        self.wallet = wallet
        self.config = config or get_config()
        self.clock = clock

    def _finish(self, operation: str, composed: ComposedTransaction) -> ComposedTransaction:
        for buffer in composed.buffers:
            logger.info(f"{operation}: {len(buffer)} instructions {buffer.names()}")
        return composed

    async def _read_mint(self, mint_id: Pubkey) -> Tuple[Mint, Optional[Metadata]]:
        mint, metadata = await self.reader.fetch_many([
            (mint_id, Mint),
            (find_mint_metadata_id(mint_id), Metadata),
        ])
        if mint is None:
            raise PreconditionError(f"Mint {mint_id} not found")
        return mint, metadata

    def _stake_entry_id(self, stake_pool: Pubkey, original_mint: Pubkey, mint: Mint) -> Pubkey:
        entry_id = find_stake_entry_id(
            self.wallet, stake_pool, original_mint, mint.is_fungible, self.config
        )
        logger.debug(
            f"Stake entry {entry_id} for mint {original_mint} "
            f"({'fungible' if mint.is_fungible else 'shared'} seed)"
        )
        return entry_id

    # ========================================================================
    # LAZY CREATION
    # ========================================================================

    def ensure_reward_entry(
        self,
        reward_distributor_id: Pubkey,
        stake_entry_id: Pubkey,
        existing: Optional[RewardEntry],
    ) -> Ensured:
        """
        Resolve the reward entry of a stake entry.

        Args:
            reward_distributor_id: Distributor the entry accrues under
            stake_entry_id: Stake entry the reward entry tracks
            existing: The reward entry as just read, or None if absent

        Returns:
            Ensured with the init instruction when the entry is absent
        """
        address = find_reward_entry_id(reward_distributor_id, stake_entry_id, self.config)
        if existing is not None:
            return Ensured(address)
        logger.debug(f"Reward entry {address} absent, initializing")
        return Ensured(
            address,
            reward_ix.init_reward_entry(
                address, reward_distributor_id, stake_entry_id, self.wallet, self.config
            ),
        )

    def ensure_group_reward_counter(
        self,
        group_reward_distributor_id: Pubkey,
        existing: Optional[GroupRewardCounter],
    ) -> Ensured:
        """Resolve the wallet's group reward counter, initializing it when absent."""
        address = find_group_reward_counter_id(
            group_reward_distributor_id, self.wallet, self.config
        )
        if existing is not None:
            return Ensured(address)
        logger.debug(f"Group reward counter {address} absent, initializing")
        return Ensured(
            address,
            group_ix.init_group_reward_counter(
                address, group_reward_distributor_id, self.wallet, self.config
            ),
        )

    # ========================================================================
    # POOL ADMINISTRATION
    # ========================================================================

    async def create_stake_pool(self, params: CreateStakePoolParams) -> ComposedTransaction:
        """
        Create a stake pool, and optionally its reward distributor.

        The pool takes the next identifier from the global counter; the
        counter itself is created on first use.

        Returns:
            ComposedTransaction with addresses "stake_pool" and, if requested,
            "reward_distributor"
        """
        identifier_id = find_identifier_id(self.config)
        identifier = await self.reader.fetch(identifier_id, Identifier)

        buffer = TransactionBuffer()
        if identifier is None:
            buffer.add(pool_ix.init_identifier(identifier_id, self.wallet, self.config))
            count = 1
        else:
            count = identifier.count

        stake_pool_id = find_stake_pool_id(count, self.config)
        buffer.add(pool_ix.init_pool(
            stake_pool_id,
            identifier_id,
            self.wallet,
            authority=self.wallet,
            requires_collections=params.requires_collections,
            requires_creators=params.requires_creators,
            requires_authorization=params.requires_authorization,
            overlay_text=params.overlay_text,
            image_uri=params.image_uri,
            reset_on_stake=params.reset_on_stake,
            cooldown_seconds=params.cooldown_seconds,
            min_stake_seconds=params.min_stake_seconds,
            end_date=params.end_date,
            double_or_reset_enabled=params.double_or_reset_enabled,
            config=self.config,
        ))

        addresses = {"stake_pool": stake_pool_id}
        if params.reward_distributor is not None:
            addresses["reward_distributor"] = self._add_reward_distributor(
                buffer, stake_pool_id, params.reward_distributor
            )
        return self._finish("create_stake_pool", ComposedTransaction([buffer], addresses))

    def _add_reward_distributor(
        self,
        buffer: TransactionBuffer,
        stake_pool_id: Pubkey,
        settings: RewardDistributorSettings,
    ) -> Pubkey:
        reward_distributor_id = find_reward_distributor_id(stake_pool_id, self.config)
        if settings.kind == RewardDistributorKind.TREASURY:
            buffer.add(create_associated_token_account_idempotent(
                self.wallet,
                get_associated_token_address(settings.reward_mint, reward_distributor_id),
                reward_distributor_id,
                settings.reward_mint,
            ))
        buffer.add(reward_ix.init_reward_distributor(
            reward_distributor_id,
            stake_pool_id,
            settings.reward_mint,
            self.wallet,
            kind=settings.kind,
            reward_amount=settings.reward_amount,
            reward_duration_seconds=settings.reward_duration_seconds,
            supply=settings.supply,
            max_supply=settings.max_supply,
            default_multiplier=settings.default_multiplier,
            multiplier_decimals=settings.multiplier_decimals,
            max_reward_seconds_received=settings.max_reward_seconds_received,
            config=self.config,
        ))
        return reward_distributor_id

    async def create_reward_distributor(
        self, params: CreateRewardDistributorParams
    ) -> ComposedTransaction:
        buffer = TransactionBuffer()
        reward_distributor_id = self._add_reward_distributor(
            buffer, params.stake_pool, params.settings
        )
        return self._finish(
            "create_reward_distributor",
            ComposedTransaction([buffer], {"reward_distributor": reward_distributor_id}),
        )

    async def authorize_stake_entry(self, params: AuthorizeStakeEntryParams) -> ComposedTransaction:
        buffer = TransactionBuffer().add(pool_ix.authorize_mint(
            params.stake_pool, params.original_mint, self.wallet, self.config
        ))
        return self._finish("authorize_stake_entry", ComposedTransaction([buffer]))

    # ========================================================================
    # STAKE ENTRIES
    # ========================================================================

    def _init_entry(self, stake_entry_id: Pubkey, stake_pool: Pubkey, original_mint: Pubkey):
        return pool_ix.init_entry(
            stake_entry_id, stake_pool, original_mint, self.wallet, self.wallet, self.config
        )

    async def create_stake_entry(self, params: CreateStakeEntryParams) -> ComposedTransaction:
        mint, _ = await self._read_mint(params.original_mint)
        stake_entry_id = self._stake_entry_id(params.stake_pool, params.original_mint, mint)
        buffer = TransactionBuffer().add(
            self._init_entry(stake_entry_id, params.stake_pool, params.original_mint)
        )
        return self._finish(
            "create_stake_entry",
            ComposedTransaction([buffer], {"stake_entry": stake_entry_id}),
        )

    async def create_stake_entry_and_stake_mint(
        self, params: CreateStakeEntryAndStakeMintParams
    ) -> ComposedTransaction:
        """
        Make sure a stake entry exists and has a stake mint.

        A fresh stake mint keypair is generated when the entry has none; it
        is returned in signers and must co-sign the transaction.
        """
        mint, _ = await self._read_mint(params.original_mint)
        stake_entry_id = self._stake_entry_id(params.stake_pool, params.original_mint, mint)
        entry, pool = await self.reader.fetch_many([
            (stake_entry_id, StakeEntry),
            (params.stake_pool, StakePool),
        ])

        buffer = TransactionBuffer()
        if entry is None:
            buffer.add(self._init_entry(stake_entry_id, params.stake_pool, params.original_mint))

        composed = ComposedTransaction([buffer], {"stake_entry": stake_entry_id})
        if entry is None or entry.stake_mint is None:
            if pool is None:
                raise PreconditionError("Stake pool not found")
            stake_mint = Keypair()
            buffer.add(pool_ix.init_stake_mint(
                stake_entry_id,
                params.stake_pool,
                params.original_mint,
                stake_mint.pubkey(),
                self.wallet,
                name=params.receipt_name or f"POOl{pool.identifier} RECEIPT",
                symbol=f"POOl{pool.identifier}",
                config=self.config,
            ))
            composed.signers.append(stake_mint)
            composed.addresses["stake_mint"] = stake_mint.pubkey()
        return self._finish("create_stake_entry_and_stake_mint", composed)

    async def initialize_reward_entry(
        self, params: InitializeRewardEntryParams
    ) -> ComposedTransaction:
        mint, _ = await self._read_mint(params.original_mint)
        stake_entry_id = self._stake_entry_id(params.stake_pool, params.original_mint, mint)
        reward_distributor_id = find_reward_distributor_id(params.stake_pool, self.config)
        entry, reward_entry = await self.reader.fetch_many([
            (stake_entry_id, StakeEntry),
            (find_reward_entry_id(reward_distributor_id, stake_entry_id, self.config), RewardEntry),
        ])

        buffer = TransactionBuffer()
        if entry is None:
            buffer.add(self._init_entry(stake_entry_id, params.stake_pool, params.original_mint))
        reward_entry_id = buffer.ensure(
            self.ensure_reward_entry(reward_distributor_id, stake_entry_id, reward_entry)
        )
        buffer.add(reward_ix.update_reward_entry(
            reward_entry_id, reward_distributor_id, self.wallet, params.multiplier, self.config
        ))
        return self._finish(
            "initialize_reward_entry",
            ComposedTransaction(
                [buffer],
                {"stake_entry": stake_entry_id, "reward_entry": reward_entry_id},
            ),
        )

    # ========================================================================
    # STAKE
    # ========================================================================

    async def stake(self, params: StakeParams) -> ComposedTransaction:
        """
        Stake an asset into a pool.

        Steps:
        1. init_entry if the stake entry does not exist
        2. stake_programmable for programmable assets, otherwise create the
           entry's token account and stake
        3. Standard path with a receipt requested: claim_receipt_mint when
           nothing was staked in the entry before

        Raises:
            PreconditionError: Mint missing, stake mint receipt requested
                without a stake mint, or a receipt already claimed
        """
        mint, metadata = await self._read_mint(params.original_mint)
        stake_entry_id = self._stake_entry_id(params.stake_pool, params.original_mint, mint)
        entry = await self.reader.fetch(stake_entry_id, StakeEntry)
        mode = AssetTransferMode.from_metadata(metadata)
        user_token_account = params.user_original_mint_token_account or get_associated_token_address(
            params.original_mint, self.wallet
        )

        buffer = TransactionBuffer()
        if entry is None:
            buffer.add(self._init_entry(stake_entry_id, params.stake_pool, params.original_mint))

        if mode.is_programmable:
            buffer.add(pool_ix.stake_programmable(
                stake_entry_id,
                params.stake_pool,
                params.original_mint,
                self.wallet,
                user_token_account,
                mode.rule_set,
                params.amount,
                self.config,
            ))
            if params.receipt_type != ReceiptType.NONE:
                logger.debug("Receipts are not issued for programmable assets, skipping")
        else:
            buffer.add(
                create_associated_token_account_idempotent(
                    self.wallet,
                    get_associated_token_address(params.original_mint, stake_entry_id),
                    stake_entry_id,
                    params.original_mint,
                ),
                pool_ix.stake(
                    stake_entry_id,
                    params.stake_pool,
                    params.original_mint,
                    self.wallet,
                    user_token_account,
                    params.amount,
                    self.config,
                ),
            )
            if params.receipt_type != ReceiptType.NONE:
                self._add_receipt_claim(buffer, params, stake_entry_id, entry)

        return self._finish(
            "stake",
            ComposedTransaction(
                [buffer],
                {"stake_entry": stake_entry_id, "user_original_mint_token_account": user_token_account},
            ),
        )

    def _add_receipt_claim(
        self,
        buffer: TransactionBuffer,
        params: StakeParams,
        stake_entry_id: Pubkey,
        entry: Optional[StakeEntry],
    ) -> None:
        if params.receipt_type == ReceiptType.RECEIPT:
            receipt_mint = entry.stake_mint if entry is not None else None
        else:
            receipt_mint = params.original_mint
        if receipt_mint is None:
            raise PreconditionError("Stake entry has no stake mint. Initialize stake mint first.")
        if entry is not None and entry.receipt_claimed:
            raise PreconditionError("Receipt has already been claimed.")
        if entry is not None and entry.amount != 0:
            logger.debug(f"Stake entry {stake_entry_id} already holds {entry.amount}, no receipt claim")
            return

        token_manager_id = find_token_manager_id(receipt_mint, self.config)
        buffer.add(
            create_associated_token_account_idempotent(
                self.wallet,
                get_associated_token_address(receipt_mint, token_manager_id),
                token_manager_id,
                receipt_mint,
            ),
            pool_ix.claim_receipt_mint(
                stake_entry_id,
                params.original_mint,
                receipt_mint,
                self.wallet,
                params.receipt_type,
                self.config,
            ),
        )

    # ========================================================================
    # UNSTAKE
    # ========================================================================

    async def unstake(self, params: UnstakeParams) -> ComposedTransaction:
        """
        Unstake an asset, settling rewards first.

        Steps:
        1. Standard path: create the wallet's token account for the asset
        2. With a reward distributor: update_total_stake_seconds, reward
           entry (lazily), claim_rewards
        3. unstake_programmable for programmable assets; otherwise return a
           claimed receipt when its cooldown allows, then unstake

        Reward accounting always precedes the instruction that releases the
        asset, since accrual stops once the entry is unstaked.

        Raises:
            PreconditionError: Missing stake pool, mint, or (standard path)
                stake entry
        """
        reward_distributor_id = find_reward_distributor_id(params.stake_pool, self.config)
        mint, metadata, distributor, pool = await self.reader.fetch_many([
            (params.original_mint, Mint),
            (find_mint_metadata_id(params.original_mint), Metadata),
            (reward_distributor_id, RewardDistributor),
            (params.stake_pool, StakePool),
        ])
        if pool is None:
            raise PreconditionError("Stake pool not found")
        if mint is None:
            raise PreconditionError(f"Mint {params.original_mint} not found")

        stake_entry_id = self._stake_entry_id(params.stake_pool, params.original_mint, mint)
        reward_entry_id = find_reward_entry_id(reward_distributor_id, stake_entry_id, self.config)
        entry, reward_entry = await self.reader.fetch_many([
            (stake_entry_id, StakeEntry),
            (reward_entry_id, RewardEntry),
        ])
        mode = AssetTransferMode.from_metadata(metadata)
        user_token_account = get_associated_token_address(params.original_mint, self.wallet)

        buffer = TransactionBuffer()
        if not mode.is_programmable:
            buffer.add(create_associated_token_account_idempotent(
                self.wallet, user_token_account, self.wallet, params.original_mint
            ))

        if distributor is not None:
            buffer.add(pool_ix.update_total_stake_seconds(stake_entry_id, self.wallet, self.config))
            if not params.skip_reward_mint_token_account:
                buffer.add(create_associated_token_account_idempotent(
                    self.wallet,
                    get_associated_token_address(distributor.reward_mint, self.wallet),
                    self.wallet,
                    distributor.reward_mint,
                ))
            buffer.ensure(self.ensure_reward_entry(reward_distributor_id, stake_entry_id, reward_entry))
            buffer.add(reward_ix.claim_rewards(
                reward_entry_id,
                reward_distributor_id,
                stake_entry_id,
                params.stake_pool,
                distributor.reward_mint,
                self.wallet,
                config=self.config,
            ))

        if mode.is_programmable:
            buffer.add(pool_ix.unstake_programmable(
                stake_entry_id,
                params.stake_pool,
                params.original_mint,
                self.wallet,
                user_token_account,
                mode.rule_set,
                self.config,
            ))
        else:
            if entry is None:
                raise PreconditionError("Stake entry not found")
            if entry.receipt_claimed:
                await self._add_receipt_return(buffer, pool, stake_entry_id, entry)
            buffer.add(pool_ix.unstake(
                params.stake_pool,
                stake_entry_id,
                params.original_mint,
                self.wallet,
                user_token_account,
                entry.stake_mint,
                self.config,
            ))

        return self._finish(
            "unstake",
            ComposedTransaction(
                [buffer],
                {"stake_entry": stake_entry_id, "reward_distributor": reward_distributor_id},
            ),
        )

    async def _add_receipt_return(
        self,
        buffer: TransactionBuffer,
        pool: StakePool,
        stake_entry_id: Pubkey,
        entry: StakeEntry,
    ) -> None:
        receipt_mint = entry.receipt_mint
        token_manager_id = find_token_manager_id(receipt_mint, self.config)
        token_manager = await self.reader.fetch(token_manager_id, TokenManager)
        if token_manager is None:
            logger.debug(f"No token manager for receipt {receipt_mint}, nothing to return")
            return
        if not should_return_receipt(pool, entry, self.clock()):
            logger.debug(f"Receipt {receipt_mint} still cooling down")
            return
        buffer.add(pool_ix.return_receipt_mint(
            stake_entry_id,
            receipt_mint,
            token_manager_id,
            token_manager,
            self.wallet,
            self.config,
        ))

    # ========================================================================
    # REWARDS
    # ========================================================================

    async def claim_rewards(self, requests: Sequence[ClaimRewardsRequest]) -> List[BatchResult]:
        """
        Claim rewards for many stake entries, one transaction per entry.

        Entries fail independently: a missing distributor or an undecodable
        account is reported in that entry's result and the others are still
        composed.

        Args:
            requests: Stake entries to claim for, with their pools

        Returns:
            One BatchResult per request, in request order
        """
        pools = list(dict.fromkeys(request.stake_pool for request in requests))
        distributor_ids = {
            pool: find_reward_distributor_id(pool, self.config) for pool in pools
        }
        reward_entry_ids = [
            find_reward_entry_id(distributor_ids[r.stake_pool], r.stake_entry, self.config)
            for r in requests
        ]

        distributors, reward_entries = await gather(
            (
                self.reader.fetch_many,
                [(distributor_ids[pool], RewardDistributor) for pool in pools],
                True,
            ),
            (
                self.reader.fetch_many,
                [(address, RewardEntry) for address in reward_entry_ids],
                True,
            ),
        )
        distributor_by_pool = dict(zip(pools, distributors))

        results: List[BatchResult] = []
        for request, reward_entry in zip(requests, reward_entries):
            try:
                buffer = self._compose_claim(
                    request,
                    distributor_ids[request.stake_pool],
                    distributor_by_pool[request.stake_pool],
                    reward_entry,
                )
            except (PreconditionError, AccountDecodeError) as e:
                logger.warning(f"claim_rewards: skipping stake entry {request.stake_entry}: {e}")
                results.append(BatchResult(request.stake_entry, error=e))
                continue
            logger.info(f"claim_rewards: {len(buffer)} instructions {buffer.names()}")
            results.append(BatchResult(request.stake_entry, transaction=buffer))
        return results

    def _compose_claim(
        self,
        request: ClaimRewardsRequest,
        reward_distributor_id: Pubkey,
        distributor,
        reward_entry,
    ) -> TransactionBuffer:
        if isinstance(distributor, Exception):
            raise distributor
        if distributor is None:
            raise PreconditionError("No reward distributor found")
        if isinstance(reward_entry, Exception):
            raise reward_entry

        recipient = request.last_staker or self.wallet
        buffer = TransactionBuffer()
        buffer.add(pool_ix.update_total_stake_seconds(request.stake_entry, self.wallet, self.config))
        if not request.skip_reward_mint_token_account:
            buffer.add(create_associated_token_account_idempotent(
                self.wallet,
                get_associated_token_address(distributor.reward_mint, recipient),
                recipient,
                distributor.reward_mint,
            ))
        reward_entry_id = buffer.ensure(
            self.ensure_reward_entry(reward_distributor_id, request.stake_entry, reward_entry)
        )
        buffer.add(reward_ix.claim_rewards(
            reward_entry_id,
            reward_distributor_id,
            request.stake_entry,
            request.stake_pool,
            distributor.reward_mint,
            self.wallet,
            recipient=recipient,
            config=self.config,
        ))
        return buffer

    async def claim_pool_rewards(self, params: ClaimPoolRewardsParams) -> List[BatchResult]:
        """Claim for several stake entries of the same pool."""
        return await self.claim_rewards(params.requests())

    # ========================================================================
    # GROUPS
    # ========================================================================

    async def create_group_entry(self, params: CreateGroupEntryParams) -> ComposedTransaction:
        """
        Group stake entries under a fresh group entry.

        Returns:
            ComposedTransaction with addresses "group_entry" and "group_id"
        """
        if not params.stake_entries:
            raise PreconditionError("No stake entry found")

        group_id = Keypair().pubkey()
        group_entry_id = find_group_entry_id(group_id, self.config)
        buffer = TransactionBuffer().add(pool_ix.init_group_entry(
            group_entry_id,
            group_id,
            self.wallet,
            params.group_cooldown_seconds,
            params.group_stake_seconds,
            self.config,
        ))
        for stake_entry_id in params.stake_entries:
            buffer.add(pool_ix.add_to_group_entry(
                group_entry_id, stake_entry_id, self.wallet, self.wallet, self.config
            ))
        return self._finish(
            "create_group_entry",
            ComposedTransaction([buffer], {"group_entry": group_entry_id, "group_id": group_id}),
        )

    async def create_group_reward_distributor(
        self, params: CreateGroupRewardDistributorParams
    ) -> ComposedTransaction:
        distributor_id = Keypair().pubkey()
        group_reward_distributor_id = find_group_reward_distributor_id(distributor_id, self.config)

        buffer = TransactionBuffer()
        if params.reward_kind == GroupRewardDistributorKind.TREASURY:
            buffer.add(create_associated_token_account_idempotent(
                self.wallet,
                get_associated_token_address(params.reward_mint, group_reward_distributor_id),
                group_reward_distributor_id,
                params.reward_mint,
            ))
        buffer.add(group_ix.init_group_reward_distributor(
            group_reward_distributor_id,
            distributor_id,
            params.reward_mint,
            self.wallet,
            params.authorized_pools,
            reward_amount=params.reward_amount,
            reward_duration_seconds=params.reward_duration_seconds,
            reward_kind=params.reward_kind,
            metadata_kind=params.metadata_kind,
            pool_kind=params.pool_kind,
            supply=params.supply,
            config=self.config,
            **asdict(params.tuning),
        ))
        return self._finish(
            "create_group_reward_distributor",
            ComposedTransaction([buffer], {"group_reward_distributor": group_reward_distributor_id}),
        )

    async def update_group_reward_distributor(
        self, params: UpdateGroupRewardDistributorParams
    ) -> ComposedTransaction:
        buffer = TransactionBuffer().add(group_ix.update_group_reward_distributor(
            params.group_reward_distributor,
            self.wallet,
            params.authorized_pools,
            reward_amount=params.reward_amount,
            reward_duration_seconds=params.reward_duration_seconds,
            metadata_kind=params.metadata_kind,
            pool_kind=params.pool_kind,
            config=self.config,
            **asdict(params.tuning),
        ))
        return self._finish("update_group_reward_distributor", ComposedTransaction([buffer]))

    async def _add_group_claim(
        self,
        buffer: TransactionBuffer,
        group_reward_distributor_id: Pubkey,
        group_entry_id: Pubkey,
        stake_entry_ids: Sequence[Pubkey],
    ) -> Tuple[Pubkey, Pubkey]:
        group_reward_entry_id = find_group_reward_entry_id(
            group_reward_distributor_id, group_entry_id, self.config
        )
        counter_id = find_group_reward_counter_id(
            group_reward_distributor_id, self.wallet, self.config
        )
        group_reward_entry, distributor, counter = await self.reader.fetch_many([
            (group_reward_entry_id, GroupRewardEntry),
            (group_reward_distributor_id, GroupRewardDistributor),
            (counter_id, GroupRewardCounter),
        ])
        if distributor is None:
            raise PreconditionError("No group reward distributor found")

        if group_reward_entry is None:
            if not stake_entry_ids:
                raise PreconditionError("No stake entry found")
            entries = await self.reader.fetch_all(stake_entry_ids, StakeEntry)
            members = []
            for stake_entry_id, entry in zip(stake_entry_ids, entries):
                if entry is None:
                    raise PreconditionError(f"Stake entry {stake_entry_id} not found")
                reward_distributor_id = find_reward_distributor_id(entry.pool, self.config)
                members.append(group_ix.GroupMember(
                    stake_entry_id,
                    entry.original_mint,
                    find_reward_entry_id(reward_distributor_id, stake_entry_id, self.config),
                ))
            counter_id = buffer.ensure(
                self.ensure_group_reward_counter(group_reward_distributor_id, counter)
            )
            buffer.add(group_ix.init_group_reward_entry(
                group_reward_entry_id,
                counter_id,
                group_entry_id,
                group_reward_distributor_id,
                self.wallet,
                members,
                self.config,
            ))

        buffer.add(
            create_associated_token_account_idempotent(
                self.wallet,
                get_associated_token_address(distributor.reward_mint, self.wallet),
                self.wallet,
                distributor.reward_mint,
            ),
            group_ix.claim_group_rewards(
                group_reward_entry_id,
                group_reward_distributor_id,
                counter_id,
                group_entry_id,
                distributor.reward_mint,
                self.wallet,
                self.config,
            ),
        )
        return group_reward_entry_id, counter_id

    async def claim_group_rewards(self, params: ClaimGroupRewardsParams) -> ComposedTransaction:
        """
        Claim a group's rewards, opening its group reward entry first if needed.

        Opening the entry needs each member's stake entry, which is read to
        find its pool's reward distributor.
        """
        buffer = TransactionBuffer()
        group_reward_entry_id, _ = await self._add_group_claim(
            buffer, params.group_reward_distributor, params.group_entry, params.stake_entries
        )
        return self._finish(
            "claim_group_rewards",
            ComposedTransaction([buffer], {"group_reward_entry": group_reward_entry_id}),
        )

    async def close_group_entry(self, params: CloseGroupEntryParams) -> ComposedTransaction:
        """
        Dissolve a group: claim, close its reward entry, then remove every member.

        Members are removed last; removing them before the claim forfeits
        the group's unclaimed rewards.
        """
        buffer = TransactionBuffer()
        group_reward_entry_id, counter_id = await self._add_group_claim(
            buffer, params.group_reward_distributor, params.group_entry, params.stake_entries
        )
        buffer.add(group_ix.close_group_reward_entry(
            group_reward_entry_id,
            params.group_reward_distributor,
            counter_id,
            params.group_entry,
            self.wallet,
            self.config,
        ))
        for stake_entry_id in params.stake_entries:
            buffer.add(pool_ix.remove_from_group_entry(
                params.group_entry, stake_entry_id, self.wallet, self.config
            ))
        return self._finish("close_group_entry", ComposedTransaction([buffer]))

    async def init_ungrouping(self, params: InitUngroupingParams) -> ComposedTransaction:
        buffer = TransactionBuffer().add(
            pool_ix.init_ungrouping(params.group_entry, self.wallet, self.config)
        )
        return self._finish("init_ungrouping", ComposedTransaction([buffer]))


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

async def create_stake_pool(client, wallet: Pubkey, params: CreateStakePoolParams, config=None):
    return await WorkflowComposer(client, wallet, config).create_stake_pool(params)


async def create_reward_distributor(client, wallet: Pubkey, params: CreateRewardDistributorParams, config=None):
    return await WorkflowComposer(client, wallet, config).create_reward_distributor(params)


async def create_stake_entry(client, wallet: Pubkey, params: CreateStakeEntryParams, config=None):
    return await WorkflowComposer(client, wallet, config).create_stake_entry(params)


async def create_stake_entry_and_stake_mint(
    client, wallet: Pubkey, params: CreateStakeEntryAndStakeMintParams, config=None
):
    return await WorkflowComposer(client, wallet, config).create_stake_entry_and_stake_mint(params)


async def initialize_reward_entry(client, wallet: Pubkey, params: InitializeRewardEntryParams, config=None):
    return await WorkflowComposer(client, wallet, config).initialize_reward_entry(params)


async def authorize_stake_entry(client, wallet: Pubkey, params: AuthorizeStakeEntryParams, config=None):
    return await WorkflowComposer(client, wallet, config).authorize_stake_entry(params)


async def stake(client, wallet: Pubkey, params: StakeParams, config=None) -> ComposedTransaction:
    """
    Convenience function to compose a stake.

    Args:
        client: Ledger client
        wallet: Staker's public key
        params: What to stake where
        config: Optional network configuration

    Returns:
        ComposedTransaction
    """
    return await WorkflowComposer(client, wallet, config).stake(params)


async def unstake(client, wallet: Pubkey, params: UnstakeParams, config=None) -> ComposedTransaction:
    return await WorkflowComposer(client, wallet, config).unstake(params)


async def claim_rewards(
    client, wallet: Pubkey, requests: Sequence[ClaimRewardsRequest], config=None
) -> List[BatchResult]:
    return await WorkflowComposer(client, wallet, config).claim_rewards(requests)


async def claim_pool_rewards(client, wallet: Pubkey, params: ClaimPoolRewardsParams, config=None):
    return await WorkflowComposer(client, wallet, config).claim_pool_rewards(params)


async def create_group_entry(client, wallet: Pubkey, params: CreateGroupEntryParams, config=None):
    return await WorkflowComposer(client, wallet, config).create_group_entry(params)


async def create_group_reward_distributor(
    client, wallet: Pubkey, params: CreateGroupRewardDistributorParams, config=None
):
    return await WorkflowComposer(client, wallet, config).create_group_reward_distributor(params)


async def update_group_reward_distributor(
    client, wallet: Pubkey, params: UpdateGroupRewardDistributorParams, config=None
):
    return await WorkflowComposer(client, wallet, config).update_group_reward_distributor(params)


async def claim_group_rewards(client, wallet: Pubkey, params: ClaimGroupRewardsParams, config=None):
    return await WorkflowComposer(client, wallet, config).claim_group_rewards(params)


async def close_group_entry(client, wallet: Pubkey, params: CloseGroupEntryParams, config=None):
    return await WorkflowComposer(client, wallet, config).close_group_entry(params)


async def init_ungrouping(client, wallet: Pubkey, params: InitUngroupingParams, config=None):
    return await WorkflowComposer(client, wallet, config).init_ungrouping(params)
