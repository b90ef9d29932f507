"""
stakeflow/programs/stake_pool.py

Instruction builders for the stake pool program.

Builders take already-derived addresses and decoded state; they never read
the ledger. Where the program expects different account sets for
programmable and standard assets, the caller picks the builder from the
resolved AssetTransferMode.
"""

from typing import List, Optional, Sequence

from borsh_construct import CStruct, Option, Vec, Bool, String, U32, U64, I64
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..config import (
    NetworkConfig,
    get_config,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    TOKEN_AUTH_RULES_PROGRAM_ID,
    SYSVAR_RENT_ID,
    SYSVAR_INSTRUCTIONS_ID,
)
from ..pda import (
    find_mint_metadata_id,
    find_mint_edition_id,
    find_mint_counter_id,
    find_mint_manager_id,
    find_token_manager_id,
    find_token_record_id,
    find_stake_authorization_id,
    get_associated_token_address,
)
from .accounts import TokenManager, TokenManagerKind, TokenManagerState, ReceiptType
from .common import anchor_instruction, readonly, writable, signer
from .layouts import PUBKEY


# ============================================================================
# ARGUMENT LAYOUTS
# ============================================================================

INIT_POOL_ARGS = CStruct(
    "overlay_text" / String,
    "image_uri" / String,
    "requires_collections" / Vec(PUBKEY),
    "requires_creators" / Vec(PUBKEY),
    "requires_authorization" / Bool,
    "authority" / PUBKEY,
    "reset_on_stake" / Bool,
    "cooldown_seconds" / Option(U32),
    "min_stake_seconds" / Option(U32),
    "end_date" / Option(I64),
    "double_or_reset_enabled" / Option(Bool),
)

INIT_STAKE_MINT_ARGS = CStruct(
    "name" / String,
    "symbol" / String,
)

INIT_GROUP_ENTRY_ARGS = CStruct(
    "group_id" / PUBKEY,
    "group_cooldown_seconds" / Option(U32),
    "group_stake_seconds" / Option(U32),
)

AMOUNT_ARGS = CStruct("amount" / U64)
USER_ARGS = CStruct("user" / PUBKEY)
MINT_ARGS = CStruct("mint" / PUBKEY)


def _program_id(config: Optional[NetworkConfig]) -> Pubkey:
    return (config or get_config()).programs.stake_pool


# ============================================================================
# POOL ADMINISTRATION
# ============================================================================

def init_identifier(
    identifier_id: Pubkey,
    payer: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "init_identifier",
        [writable(identifier_id), signer(payer), readonly(SYSTEM_PROGRAM_ID)],
    )


def init_pool(
    stake_pool_id: Pubkey,
    identifier_id: Pubkey,
    payer: Pubkey,
    authority: Pubkey,
    requires_collections: Sequence[Pubkey] = (),
    requires_creators: Sequence[Pubkey] = (),
    requires_authorization: bool = False,
    overlay_text: str = "STAKED",
    image_uri: str = "",
    reset_on_stake: bool = False,
    cooldown_seconds: Optional[int] = None,
    min_stake_seconds: Optional[int] = None,
    end_date: Optional[int] = None,
    double_or_reset_enabled: Optional[bool] = None,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    args = INIT_POOL_ARGS.build({
        "overlay_text": overlay_text,
        "image_uri": image_uri,
        "requires_collections": list(requires_collections),
        "requires_creators": list(requires_creators),
        "requires_authorization": requires_authorization,
        "authority": authority,
        "reset_on_stake": reset_on_stake,
        "cooldown_seconds": cooldown_seconds,
        "min_stake_seconds": min_stake_seconds,
        "end_date": end_date,
        "double_or_reset_enabled": double_or_reset_enabled,
    })
    return anchor_instruction(
        _program_id(config),
        "init_pool",
        [
            writable(stake_pool_id),
            writable(identifier_id),
            signer(payer),
            readonly(SYSTEM_PROGRAM_ID),
        ],
        args,
    )


def authorize_mint(
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    payer: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """Allow original_mint_id into a pool that requires authorization."""
    return anchor_instruction(
        _program_id(config),
        "authorize_mint",
        [
            writable(stake_pool_id),
            writable(find_stake_authorization_id(stake_pool_id, original_mint_id, config)),
            signer(payer),
            readonly(SYSTEM_PROGRAM_ID),
        ],
        MINT_ARGS.build({"mint": original_mint_id}),
    )


# ============================================================================
# STAKE ENTRIES
# ============================================================================

def init_entry(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    payer: Pubkey,
    user: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Create the stake entry for an asset.

    The stake authorization record is passed as a remaining account; the
    program only inspects it when the pool requires authorization.
    """
    return anchor_instruction(
        _program_id(config),
        "init_entry",
        [
            writable(stake_entry_id),
            writable(stake_pool_id),
            readonly(original_mint_id),
            readonly(find_mint_metadata_id(original_mint_id)),
            signer(payer),
            readonly(SYSTEM_PROGRAM_ID),
            readonly(find_stake_authorization_id(stake_pool_id, original_mint_id, config)),
        ],
        USER_ARGS.build({"user": user}),
    )


def init_stake_mint(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    stake_mint_id: Pubkey,
    payer: Pubkey,
    name: str,
    symbol: str,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """Create the receipt mint for a stake entry. stake_mint_id must sign."""
    cfg = config or get_config()
    return anchor_instruction(
        _program_id(cfg),
        "init_stake_mint",
        [
            writable(stake_entry_id),
            writable(stake_pool_id),
            readonly(original_mint_id),
            readonly(find_mint_metadata_id(original_mint_id)),
            signer(stake_mint_id),
            writable(find_mint_metadata_id(stake_mint_id)),
            writable(get_associated_token_address(stake_mint_id, stake_entry_id)),
            writable(find_mint_manager_id(stake_mint_id, cfg)),
            signer(payer),
            readonly(SYSVAR_RENT_ID),
            readonly(TOKEN_PROGRAM_ID),
            readonly(METADATA_PROGRAM_ID),
            readonly(ASSOCIATED_TOKEN_PROGRAM_ID),
            readonly(cfg.programs.token_manager),
            readonly(SYSTEM_PROGRAM_ID),
        ],
        INIT_STAKE_MINT_ARGS.build({"name": name, "symbol": symbol}),
    )


def update_total_stake_seconds(
    stake_entry_id: Pubkey,
    last_staker: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "update_total_stake_seconds",
        [writable(stake_entry_id), signer(last_staker)],
    )


# ============================================================================
# STAKE / UNSTAKE
# ============================================================================

def stake(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    user: Pubkey,
    user_original_mint_token_account: Pubkey,
    amount: int = 1,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """Standard path: move the asset into the entry's token account."""
    return anchor_instruction(
        _program_id(config),
        "stake",
        [
            writable(stake_entry_id),
            writable(stake_pool_id),
            writable(get_associated_token_address(original_mint_id, stake_entry_id)),
            readonly(original_mint_id),
            signer(user),
            writable(user_original_mint_token_account),
            readonly(TOKEN_PROGRAM_ID),
        ],
        AMOUNT_ARGS.build({"amount": amount}),
    )


def _programmable_accounts(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    user: Pubkey,
    user_original_mint_token_account: Pubkey,
    rule_set: Pubkey,
) -> List[AccountMeta]:
    return [
        writable(stake_entry_id),
        writable(stake_pool_id),
        readonly(original_mint_id),
        signer(user),
        writable(user_original_mint_token_account),
        writable(find_token_record_id(original_mint_id, user_original_mint_token_account)),
        writable(find_mint_metadata_id(original_mint_id)),
        readonly(find_mint_edition_id(original_mint_id)),
        readonly(rule_set),
        readonly(SYSVAR_INSTRUCTIONS_ID),
        readonly(TOKEN_PROGRAM_ID),
        readonly(METADATA_PROGRAM_ID),
        readonly(TOKEN_AUTH_RULES_PROGRAM_ID),
        readonly(SYSTEM_PROGRAM_ID),
    ]


def stake_programmable(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    user: Pubkey,
    user_original_mint_token_account: Pubkey,
    rule_set: Pubkey,
    amount: int = 1,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Programmable path: delegate and lock the asset in place.

    The program runs the transfer through the rule engine itself, so this
    one instruction replaces token-account creation plus stake.
    """
    return anchor_instruction(
        _program_id(config),
        "stake_programmable",
        _programmable_accounts(
            stake_entry_id, stake_pool_id, original_mint_id,
            user, user_original_mint_token_account, rule_set,
        ),
        AMOUNT_ARGS.build({"amount": amount}),
    )


def unstake(
    stake_pool_id: Pubkey,
    stake_entry_id: Pubkey,
    original_mint_id: Pubkey,
    user: Pubkey,
    user_original_mint_token_account: Pubkey,
    stake_mint: Optional[Pubkey] = None,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    accounts = [
        writable(stake_pool_id),
        writable(stake_entry_id),
        readonly(original_mint_id),
        writable(get_associated_token_address(original_mint_id, stake_entry_id)),
        signer(user),
        writable(user_original_mint_token_account),
        readonly(TOKEN_PROGRAM_ID),
    ]
    if stake_mint is not None:
        accounts.append(readonly(get_associated_token_address(stake_mint, stake_entry_id)))
    return anchor_instruction(_program_id(config), "unstake", accounts)


def unstake_programmable(
    stake_entry_id: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    user: Pubkey,
    user_original_mint_token_account: Pubkey,
    rule_set: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "unstake_programmable",
        _programmable_accounts(
            stake_entry_id, stake_pool_id, original_mint_id,
            user, user_original_mint_token_account, rule_set,
        ),
    )


# ============================================================================
# RECEIPTS
# ============================================================================

def remaining_accounts_for_kind(mint: Pubkey, kind: int, config: Optional[NetworkConfig] = None) -> List[AccountMeta]:
    """Extra accounts the token manager program needs for a given lock kind."""
    if kind == TokenManagerKind.MANAGED:
        return [writable(find_mint_manager_id(mint, config))]
    if kind == TokenManagerKind.EDITION:
        return [readonly(find_mint_edition_id(mint)), readonly(METADATA_PROGRAM_ID)]
    return []


def claim_receipt_mint(
    stake_entry_id: Pubkey,
    original_mint_id: Pubkey,
    receipt_mint_id: Pubkey,
    user: Pubkey,
    receipt_type: ReceiptType,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Hand the staker a receipt locked under a token manager.

    Original-mint receipts lock the asset's edition; stake-mint receipts are
    managed through the stake mint's mint manager.
    """
    cfg = config or get_config()
    token_manager_id = find_token_manager_id(receipt_mint_id, cfg)
    kind = TokenManagerKind.EDITION if receipt_type == ReceiptType.ORIGINAL else TokenManagerKind.MANAGED
    accounts = [
        writable(stake_entry_id),
        readonly(original_mint_id),
        writable(receipt_mint_id),
        writable(get_associated_token_address(receipt_mint_id, stake_entry_id)),
        signer(user),
        writable(get_associated_token_address(receipt_mint_id, user)),
        writable(get_associated_token_address(receipt_mint_id, token_manager_id)),
        writable(token_manager_id),
        writable(find_mint_counter_id(receipt_mint_id, cfg)),
        readonly(TOKEN_PROGRAM_ID),
        readonly(cfg.programs.token_manager),
        readonly(ASSOCIATED_TOKEN_PROGRAM_ID),
        readonly(SYSTEM_PROGRAM_ID),
        readonly(SYSVAR_RENT_ID),
    ]
    accounts.extend(remaining_accounts_for_kind(receipt_mint_id, kind, cfg))
    return anchor_instruction(_program_id(cfg), "claim_receipt_mint", accounts)


def return_receipt_mint(
    stake_entry_id: Pubkey,
    receipt_mint_id: Pubkey,
    token_manager_id: Pubkey,
    token_manager: TokenManager,
    user: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """
    Move receipt custody back so the underlying asset can be released.

    A claimed token manager also needs its kind-specific accounts. The
    entry's receipt token account is assumed to exist already.
    """
    cfg = config or get_config()
    accounts = [
        writable(stake_entry_id),
        writable(receipt_mint_id),
        writable(token_manager_id),
        writable(get_associated_token_address(receipt_mint_id, token_manager_id)),
        writable(get_associated_token_address(receipt_mint_id, user)),
        signer(user),
        writable(cfg.programs.collector),
        readonly(TOKEN_PROGRAM_ID),
        readonly(cfg.programs.token_manager),
        readonly(SYSVAR_RENT_ID),
    ]
    if token_manager.state == TokenManagerState.CLAIMED:
        accounts.extend(remaining_accounts_for_kind(receipt_mint_id, token_manager.kind, cfg))
    accounts.append(writable(get_associated_token_address(receipt_mint_id, stake_entry_id)))
    return anchor_instruction(_program_id(cfg), "return_receipt_mint", accounts)


# ============================================================================
# GROUPS
# ============================================================================

def init_group_entry(
    group_entry_id: Pubkey,
    group_id: Pubkey,
    authority: Pubkey,
    group_cooldown_seconds: Optional[int] = None,
    group_stake_seconds: Optional[int] = None,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "init_group_entry",
        [writable(group_entry_id), signer(authority), readonly(SYSTEM_PROGRAM_ID)],
        INIT_GROUP_ENTRY_ARGS.build({
            "group_id": group_id,
            "group_cooldown_seconds": group_cooldown_seconds,
            "group_stake_seconds": group_stake_seconds,
        }),
    )


def add_to_group_entry(
    group_entry_id: Pubkey,
    stake_entry_id: Pubkey,
    authority: Pubkey,
    payer: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "add_to_group_entry",
        [
            writable(group_entry_id),
            writable(stake_entry_id),
            signer(authority, is_writable=False),
            signer(payer),
            readonly(SYSTEM_PROGRAM_ID),
        ],
    )


def remove_from_group_entry(
    group_entry_id: Pubkey,
    stake_entry_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    return anchor_instruction(
        _program_id(config),
        "remove_from_group_entry",
        [writable(group_entry_id), writable(stake_entry_id), signer(authority)],
    )


def init_ungrouping(
    group_entry_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Instruction:
    """Start the group's cooldown; members can be removed once it elapses."""
    return anchor_instruction(
        _program_id(config),
        "init_ungrouping",
        [writable(group_entry_id), signer(authority)],
    )
