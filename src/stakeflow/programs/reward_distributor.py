"""
stakeflow/programs/reward_distributor.py

Instruction builders for the per-pool reward distributor program.
"""

from typing import List, Optional

from borsh_construct import CStruct, Option, U8, U64, U128
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..config import NetworkConfig, get_config, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from ..pda import get_associated_token_address
from .accounts import RewardDistributorKind
from .common import anchor_instruction, readonly, writable, signer


INIT_REWARD_DISTRIBUTOR_ARGS = CStruct(
    "reward_amount" / U64,
    "reward_duration_seconds" / U128,
    "kind" / U8,
    "supply" / Option(U64),
    "max_supply" / Option(U64),
    "default_multiplier" / Option(U64),
    "multiplier_decimals" / Option(U8),
    "max_reward_seconds_received" / Option(U128),
)

UPDATE_REWARD_ENTRY_ARGS = CStruct("multiplier" / U64)


def _program_id(config: Optional[NetworkConfig]) -> Pubkey:
    return (config or get_config()).programs.reward_distributor


def treasury_accounts(
    reward_distributor_id: Pubkey,
    reward_mint_id: Pubkey,
    authority: Pubkey,
) -> List[AccountMeta]:
    """Token accounts a treasury-funded distributor moves rewards between."""
    return [
        writable(get_associated_token_address(reward_mint_id, reward_distributor_id)),
        writable(get_associated_token_address(reward_mint_id, authority)),
    ]


def init_reward_distributor(
    reward_distributor_id: Pubkey,
    stake_pool_id: Pubkey,
    reward_mint_id: Pubkey,
    authority: Pubkey,
    kind: RewardDistributorKind = RewardDistributorKind.MINT,
    reward_amount: int = 1,
    reward_duration_seconds: int = 1,
    supply: Optional[int] = None,
    max_supply: Optional[int] = None,
    default_multiplier: Optional[int] = None,
    multiplier_decimals: Optional[int] = None,
    max_reward_seconds_received: Optional[int] = None,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Create the reward distributor of a stake pool.

    Mint distributors take over the reward mint's authority and need no
    extra accounts. Treasury distributors are funded from the authority's
    token account, so both token accounts follow the declared accounts.

    Args:
        reward_distributor_id: Derived distributor address
        stake_pool_id: Pool the distributor pays out for
        reward_mint_id: Mint of the reward token
        authority: Pool authority (signer and payer)
        kind: MINT or TREASURY
        reward_amount: Tokens paid per reward_duration_seconds
        reward_duration_seconds: Accrual period
        supply: Treasury kind only, amount moved in at creation

    Returns:
        solders Instruction
    """
    accounts = [
        writable(reward_distributor_id),
        readonly(stake_pool_id),
        writable(reward_mint_id),
        signer(authority),
        signer(authority),
        readonly(TOKEN_PROGRAM_ID),
        readonly(SYSTEM_PROGRAM_ID),
    ]
    if kind == RewardDistributorKind.TREASURY:
        accounts.extend(treasury_accounts(reward_distributor_id, reward_mint_id, authority))

    args = INIT_REWARD_DISTRIBUTOR_ARGS.build({
        "reward_amount": reward_amount,
        "reward_duration_seconds": reward_duration_seconds,
        "kind": int(kind),
        "supply": supply,
        "max_supply": max_supply,
        "default_multiplier": default_multiplier,
        "multiplier_decimals": multiplier_decimals,
        "max_reward_seconds_received": max_reward_seconds_received,
    })
    return anchor_instruction(_program_id(config), "init_reward_distributor", accounts, args)


def init_reward_entry(
    reward_entry_id: Pubkey,
    reward_distributor_id: Pubkey,
    stake_entry_id: Pubkey,
    payer: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "init_reward_entry",
        [
            writable(reward_entry_id),
            readonly(stake_entry_id),
            writable(reward_distributor_id),
            signer(payer),
            readonly(SYSTEM_PROGRAM_ID),
        ],
    )


def update_reward_entry(
    reward_entry_id: Pubkey,
    reward_distributor_id: Pubkey,
    authority: Pubkey,
    multiplier: int = 1,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "update_reward_entry",
        [
            writable(reward_entry_id),
            readonly(reward_distributor_id),
            signer(authority, is_writable=False),
        ],
        UPDATE_REWARD_ENTRY_ARGS.build({"multiplier": multiplier}),
    )


def claim_rewards(
    reward_entry_id: Pubkey,
    reward_distributor_id: Pubkey,
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    reward_mint_id: Pubkey,
    user: Pubkey,
    recipient: Optional[Pubkey] = None,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Pay accrued rewards of one stake entry into recipient's token account.

    user signs and pays; recipient defaults to user.

    The distributor's own reward token account is always passed as a
    remaining account; the program only draws from it for treasury kinds.
    """
    cfg = config or get_config()
    return anchor_instruction(
        _program_id(cfg),
        "claim_rewards",
        [
            writable(reward_entry_id),
            writable(reward_distributor_id),
            readonly(stake_entry_id),
            readonly(stake_pool_id),
            writable(reward_mint_id),
            writable(get_associated_token_address(reward_mint_id, recipient or user)),
            writable(cfg.programs.reward_manager),
            signer(user),
            readonly(TOKEN_PROGRAM_ID),
            readonly(SYSTEM_PROGRAM_ID),
            writable(get_associated_token_address(reward_mint_id, reward_distributor_id)),
        ],
    )
