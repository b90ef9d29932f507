"""
stakeflow/programs/group_reward_distributor.py

Instruction builders for the group reward distributor program, which pays
rewards to a group entry as a whole rather than to individual stake entries.
"""

from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from borsh_construct import CStruct, Option, Vec, U8, U32, U64, U128
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..config import NetworkConfig, get_config, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from ..pda import get_associated_token_address, find_mint_metadata_id
from .accounts import (
    GroupRewardDistributorKind,
    GroupRewardDistributorMetadataKind,
    GroupRewardDistributorPoolKind,
)
from .common import anchor_instruction, readonly, writable, signer
from .layouts import PUBKEY
from .reward_distributor import treasury_accounts


# ============================================================================
# ARGUMENT LAYOUTS
# ============================================================================

# Options shared by init and update, in wire order after the kinds
_TUNING_FIELDS = (
    "base_adder" / Option(U64),
    "base_adder_decimals" / Option(U8),
    "base_multiplier" / Option(U64),
    "base_multiplier_decimals" / Option(U8),
    "multiplier_decimals" / Option(U8),
    "max_supply" / Option(U64),
    "min_cooldown_seconds" / Option(U32),
    "min_stake_seconds" / Option(U32),
    "group_count_multiplier" / Option(U64),
    "group_count_multiplier_decimals" / Option(U8),
    "min_group_size" / Option(U8),
    "max_reward_seconds_received" / Option(U128),
)

TUNING_OPTIONS = tuple(f.name for f in _TUNING_FIELDS)

INIT_GROUP_REWARD_DISTRIBUTOR_ARGS = CStruct(
    "reward_amount" / U64,
    "reward_duration_seconds" / U128,
    "reward_kind" / U8,
    "metadata_kind" / U8,
    "pool_kind" / U8,
    "authorized_pools" / Vec(PUBKEY),
    "supply" / Option(U64),
    *_TUNING_FIELDS,
)

UPDATE_GROUP_REWARD_DISTRIBUTOR_ARGS = CStruct(
    "reward_amount" / U64,
    "reward_duration_seconds" / U128,
    "metadata_kind" / U8,
    "pool_kind" / U8,
    "authorized_pools" / Vec(PUBKEY),
    *_TUNING_FIELDS,
)


class GroupMember(NamedTuple):
    """Accounts the program checks for each member when opening a group reward entry."""
    stake_entry_id: Pubkey
    original_mint_id: Pubkey
    reward_entry_id: Pubkey


def _program_id(config: Optional[NetworkConfig]) -> Pubkey:
    return (config or get_config()).programs.group_reward_distributor


def _tuning(options: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(options) - set(TUNING_OPTIONS)
    if unknown:
        raise TypeError(f"Unknown group reward distributor options: {sorted(unknown)}")
    return {name: options.get(name) for name in TUNING_OPTIONS}


# ============================================================================
# DISTRIBUTOR ADMINISTRATION
# ============================================================================

def init_group_reward_distributor(
    group_reward_distributor_id: Pubkey,
    distributor_id: Pubkey,
    reward_mint_id: Pubkey,
    authority: Pubkey,
    authorized_pools: Sequence[Pubkey],
    reward_amount: int = 1,
    reward_duration_seconds: int = 1,
    reward_kind: GroupRewardDistributorKind = GroupRewardDistributorKind.MINT,
    metadata_kind: GroupRewardDistributorMetadataKind = GroupRewardDistributorMetadataKind.NO_RESTRICTION,
    pool_kind: GroupRewardDistributorPoolKind = GroupRewardDistributorPoolKind.NO_RESTRICTION,
    supply: Optional[int] = None,
    config: Optional[NetworkConfig] = None,
    **options,
) -> Instruction:
    """
    Create a group reward distributor.

    Args:
        group_reward_distributor_id: Address derived from distributor_id
        distributor_id: Random seed key identifying the distributor
        reward_mint_id: Reward token mint
        authority: Distributor authority (signer and payer)
        authorized_pools: Pools whose entries may form rewarded groups
        **options: Any of TUNING_OPTIONS; unset options stay None

    Returns:
        solders Instruction
    """
    accounts = [
        writable(group_reward_distributor_id),
        readonly(distributor_id),
        writable(reward_mint_id),
        signer(authority),
        readonly(TOKEN_PROGRAM_ID),
        readonly(SYSTEM_PROGRAM_ID),
    ]
    if reward_kind == GroupRewardDistributorKind.TREASURY:
        accounts.extend(treasury_accounts(group_reward_distributor_id, reward_mint_id, authority))

    args = INIT_GROUP_REWARD_DISTRIBUTOR_ARGS.build({
        "reward_amount": reward_amount,
        "reward_duration_seconds": reward_duration_seconds,
        "reward_kind": int(reward_kind),
        "metadata_kind": int(metadata_kind),
        "pool_kind": int(pool_kind),
        "authorized_pools": list(authorized_pools),
        "supply": supply,
        **_tuning(options),
    })
    return anchor_instruction(_program_id(config), "init_group_reward_distributor", accounts, args)


def update_group_reward_distributor(
    group_reward_distributor_id: Pubkey,
    authority: Pubkey,
    authorized_pools: Sequence[Pubkey],
    reward_amount: int = 1,
    reward_duration_seconds: int = 1,
    metadata_kind: GroupRewardDistributorMetadataKind = GroupRewardDistributorMetadataKind.NO_RESTRICTION,
    pool_kind: GroupRewardDistributorPoolKind = GroupRewardDistributorPoolKind.NO_RESTRICTION,
    config: Optional[NetworkConfig] = None,
    **options,
) -> Instruction:
    """Overwrite distributor settings. The reward kind and supply are fixed at creation."""
    args = UPDATE_GROUP_REWARD_DISTRIBUTOR_ARGS.build({
        "reward_amount": reward_amount,
        "reward_duration_seconds": reward_duration_seconds,
        "metadata_kind": int(metadata_kind),
        "pool_kind": int(pool_kind),
        "authorized_pools": list(authorized_pools),
        **_tuning(options),
    })
    return anchor_instruction(
        _program_id(config),
        "update_group_reward_distributor",
        [writable(group_reward_distributor_id), signer(authority, is_writable=False)],
        args,
    )


# ============================================================================
# GROUP REWARD ENTRIES
# ============================================================================

def init_group_reward_counter(
    group_reward_counter_id: Pubkey,
    group_reward_distributor_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "init_group_reward_counter",
        [
            writable(group_reward_counter_id),
            readonly(group_reward_distributor_id),
            signer(authority),
            readonly(SYSTEM_PROGRAM_ID),
        ],
    )


def init_group_reward_entry(
    group_reward_entry_id: Pubkey,
    group_reward_counter_id: Pubkey,
    group_entry_id: Pubkey,
    group_reward_distributor_id: Pubkey,
    authority: Pubkey,
    members: Sequence[GroupMember],
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Open the reward entry of a group.

    Members must be given in the group entry's own order; each contributes
    four remaining accounts (stake entry, original mint, mint metadata,
    reward entry).
    """
    accounts = [
        writable(group_reward_entry_id),
        writable(group_reward_counter_id),
        writable(group_entry_id),
        writable(group_reward_distributor_id),
        signer(authority),
        readonly(SYSTEM_PROGRAM_ID),
    ]
    accounts.extend(readonly(address) for address in member_accounts(members))
    return anchor_instruction(_program_id(config), "init_group_reward_entry", accounts)


def claim_group_rewards(
    group_reward_entry_id: Pubkey,
    group_reward_distributor_id: Pubkey,
    group_reward_counter_id: Pubkey,
    group_entry_id: Pubkey,
    reward_mint_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    cfg = config or get_config()
    return anchor_instruction(
        _program_id(cfg),
        "claim_group_rewards",
        [
            writable(group_reward_entry_id),
            writable(group_reward_distributor_id),
            readonly(group_reward_counter_id),
            readonly(group_entry_id),
            writable(reward_mint_id),
            writable(get_associated_token_address(reward_mint_id, authority)),
            writable(cfg.programs.reward_manager),
            signer(authority),
            readonly(TOKEN_PROGRAM_ID),
            readonly(SYSTEM_PROGRAM_ID),
            writable(get_associated_token_address(reward_mint_id, group_reward_distributor_id)),
        ],
    )


def close_group_reward_entry(
    group_reward_entry_id: Pubkey,
    group_reward_distributor_id: Pubkey,
    group_reward_counter_id: Pubkey,
    group_entry_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """Close the group's reward entry and release its slot in the authority's counter."""
    return anchor_instruction(
        _program_id(config),
        "close_group_reward_entry",
        [
            writable(group_reward_entry_id),
            readonly(group_reward_distributor_id),
            writable(group_reward_counter_id),
            readonly(group_entry_id),
            signer(authority),
        ],
    )


def member_accounts(members: Sequence[GroupMember]) -> List[Pubkey]:
    """Flattened remaining-account addresses for members, in instruction order."""
    out: List[Pubkey] = []
    for member in members:
        out.extend([
            member.stake_entry_id,
            member.original_mint_id,
            find_mint_metadata_id(member.original_mint_id),
            member.reward_entry_id,
        ])
    return out
