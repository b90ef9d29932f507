"""
stakeflow - Client SDK for stake pools on a Solana-style ledger

Derives program addresses, reads and decodes on-chain state, and composes
unsigned instruction sequences for the stake pool, reward distributor and
group reward distributor programs. Signing and submission stay with the
caller.

Usage:
    import trio
    from stakeflow import RPCClient, WorkflowComposer, StakeParams, UnstakeParams

    client = RPCClient.from_config()
    composer = WorkflowComposer(client, wallet.pubkey())

    composed = trio.run(composer.stake, StakeParams(pool_id, mint_id))
    for name in composed.transaction.names():
        print(name)

Configuration:
    from stakeflow import configure, NetworkConfig

    configure(NetworkConfig.devnet())
    configure(NetworkConfig.from_env())   # STAKEFLOW_* variables
"""

from .config import (
    ProgramIds,
    NetworkConfig,
    configure,
    get_config,
    reset_config,
)
from .errors import (
    StakeflowError,
    DerivationError,
    PreconditionError,
    AccountDecodeError,
    RPCError,
)
from .rpc import RPCClient, AccountInfo
from .reader import AccountReader
from .transaction import (
    Ensured,
    TransactionBuffer,
    ComposedTransaction,
    BatchResult,
)
from .programs import (
    ReceiptType,
    RewardDistributorKind,
    GroupRewardDistributorKind,
    AssetTransferMode,
)
from .composer import (
    WorkflowComposer,
    RewardDistributorSettings,
    CreateStakePoolParams,
    CreateRewardDistributorParams,
    CreateStakeEntryParams,
    CreateStakeEntryAndStakeMintParams,
    InitializeRewardEntryParams,
    AuthorizeStakeEntryParams,
    StakeParams,
    UnstakeParams,
    ClaimRewardsRequest,
    ClaimPoolRewardsParams,
    CreateGroupEntryParams,
    GroupRewardTuning,
    CreateGroupRewardDistributorParams,
    UpdateGroupRewardDistributorParams,
    ClaimGroupRewardsParams,
    CloseGroupEntryParams,
    InitUngroupingParams,
    should_return_receipt,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ProgramIds",
    "NetworkConfig",
    "configure",
    "get_config",
    "reset_config",
    # Errors
    "StakeflowError",
    "DerivationError",
    "PreconditionError",
    "AccountDecodeError",
    "RPCError",
    # Ledger access
    "RPCClient",
    "AccountInfo",
    "AccountReader",
    # Results
    "Ensured",
    "TransactionBuffer",
    "ComposedTransaction",
    "BatchResult",
    # Program types
    "ReceiptType",
    "RewardDistributorKind",
    "GroupRewardDistributorKind",
    "AssetTransferMode",
    # Workflows
    "WorkflowComposer",
    "RewardDistributorSettings",
    "CreateStakePoolParams",
    "CreateRewardDistributorParams",
    "CreateStakeEntryParams",
    "CreateStakeEntryAndStakeMintParams",
    "InitializeRewardEntryParams",
    "AuthorizeStakeEntryParams",
    "StakeParams",
    "UnstakeParams",
    "ClaimRewardsRequest",
    "ClaimPoolRewardsParams",
    "CreateGroupEntryParams",
    "GroupRewardTuning",
    "CreateGroupRewardDistributorParams",
    "UpdateGroupRewardDistributorParams",
    "ClaimGroupRewardsParams",
    "CloseGroupEntryParams",
    "InitUngroupingParams",
    "should_return_receipt",
]
