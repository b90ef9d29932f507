"""
stakeflow/programs - External program bindings.

Account layouts and typed records for everything the workflows read, plus
one instruction builder module per program:

- stake_pool: pools, stake entries, receipts, groups
- reward_distributor: per-pool rewards
- group_reward_distributor: rewards paid to groups of stake entries
"""

from .accounts import (
    ReceiptType,
    RewardDistributorKind,
    GroupRewardDistributorKind,
    GroupRewardDistributorPoolKind,
    GroupRewardDistributorMetadataKind,
    TokenManagerKind,
    TokenManagerState,
    TokenStandard,
    Identifier,
    StakePool,
    StakeEntry,
    GroupStakeEntry,
    RewardDistributor,
    RewardEntry,
    GroupRewardDistributor,
    GroupRewardEntry,
    GroupRewardCounter,
    TokenManager,
    Mint,
    Creator,
    Metadata,
    TransferKind,
    AssetTransferMode,
)
from .common import instruction_name, create_associated_token_account_idempotent

__all__ = [
    "ReceiptType",
    "RewardDistributorKind",
    "GroupRewardDistributorKind",
    "GroupRewardDistributorPoolKind",
    "GroupRewardDistributorMetadataKind",
    "TokenManagerKind",
    "TokenManagerState",
    "TokenStandard",
    "Identifier",
    "StakePool",
    "StakeEntry",
    "GroupStakeEntry",
    "RewardDistributor",
    "RewardEntry",
    "GroupRewardDistributor",
    "GroupRewardEntry",
    "GroupRewardCounter",
    "TokenManager",
    "Mint",
    "Creator",
    "Metadata",
    "TransferKind",
    "AssetTransferMode",
    "instruction_name",
    "create_associated_token_account_idempotent",
]
