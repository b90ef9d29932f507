"""
stakeflow/programs/layouts.py

Binary layouts of the accounts owned by the external programs.

Anchor accounts carry an 8-byte discriminator, sha256("account:<Name>")[:8],
ahead of their borsh body. Token program mints and metadata records are
untagged and laid out by their own programs.
"""

import hashlib

import construct
from borsh_construct import CStruct, Option, Vec, Bool, String, U8, U16, U32, U64, U128, I64
from solders.pubkey import Pubkey

DISCRIMINATOR_SIZE = 8


class _PubkeyAdapter(construct.Adapter):
    """32 raw bytes <-> solders Pubkey."""

    def _decode(self, obj, context, path):
        return Pubkey.from_bytes(bytes(obj))

    def _encode(self, obj, context, path):
        return bytes(obj)


PUBKEY = _PubkeyAdapter(construct.Bytes(32))


def account_discriminator(name: str) -> bytes:
    """Anchor tag for the account type called name (CamelCase)."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


# ============================================================================
# STAKE POOL PROGRAM
# ============================================================================

IDENTIFIER_LAYOUT = CStruct(
    "bump" / U8,
    "count" / U64,
)

STAKE_POOL_LAYOUT = CStruct(
    "bump" / U8,
    "identifier" / U64,
    "authority" / PUBKEY,
    "requires_creators" / Vec(PUBKEY),
    "requires_collections" / Vec(PUBKEY),
    "requires_authorization" / Bool,
    "overlay_text" / String,
    "image_uri" / String,
    "reset_on_stake" / Bool,
    "total_staked" / U32,
    "cooldown_seconds" / Option(U32),
    "min_stake_seconds" / Option(U32),
    "end_date" / Option(I64),
    "double_or_reset_enabled" / Option(Bool),
)

STAKE_ENTRY_LAYOUT = CStruct(
    "bump" / U8,
    "pool" / PUBKEY,
    "amount" / U64,
    "original_mint" / PUBKEY,
    "original_mint_claimed" / Bool,
    "last_staker" / PUBKEY,
    "last_staked_at" / I64,
    "total_stake_seconds" / U128,
    "stake_mint_claimed" / Bool,
    "kind" / U8,
    "stake_mint" / Option(PUBKEY),
    "cooldown_start_seconds" / Option(I64),
    "last_updated_at" / Option(I64),
    "grouping_info" / Option(PUBKEY),
)

GROUP_STAKE_ENTRY_LAYOUT = CStruct(
    "bump" / U8,
    "group_id" / PUBKEY,
    "authority" / PUBKEY,
    "stake_entries" / Vec(PUBKEY),
    "changed_at" / I64,
    "group_cooldown_seconds" / U32,
    "group_stake_seconds" / U32,
    "group_cooldown_start_seconds" / Option(I64),
)


# ============================================================================
# REWARD DISTRIBUTOR PROGRAMS
# ============================================================================

REWARD_DISTRIBUTOR_LAYOUT = CStruct(
    "bump" / U8,
    "stake_pool" / PUBKEY,
    "kind" / U8,
    "authority" / PUBKEY,
    "reward_mint" / PUBKEY,
    "reward_amount" / U64,
    "reward_duration_seconds" / U128,
    "rewards_issued" / U128,
    "max_supply" / Option(U64),
    "default_multiplier" / U64,
    "multiplier_decimals" / U8,
    "max_reward_seconds_received" / Option(U128),
)

REWARD_ENTRY_LAYOUT = CStruct(
    "bump" / U8,
    "stake_entry" / PUBKEY,
    "reward_distributor" / PUBKEY,
    "reward_seconds_received" / U128,
    "multiplier" / U64,
)

GROUP_REWARD_DISTRIBUTOR_LAYOUT = CStruct(
    "bump" / U8,
    "id" / PUBKEY,
    "authority" / PUBKEY,
    "reward_mint" / PUBKEY,
    "reward_amount" / U64,
    "reward_duration_seconds" / U128,
    "reward_kind" / U8,
    "metadata_kind" / U8,
    "pool_kind" / U8,
    "authorized_pools" / Vec(PUBKEY),
    "authorized_creators" / Option(Vec(PUBKEY)),
    "rewards_issued" / U128,
    "max_supply" / Option(U64),
    "base_adder" / U64,
    "base_adder_decimals" / U8,
    "base_multiplier" / U64,
    "base_multiplier_decimals" / U8,
    "multiplier_decimals" / U8,
    "min_cooldown_seconds" / U32,
    "min_stake_seconds" / U32,
    "group_count_multiplier" / Option(U64),
    "group_count_multiplier_decimals" / Option(U8),
    "min_group_size" / Option(U8),
    "max_reward_seconds_received" / Option(U128),
)

GROUP_REWARD_ENTRY_LAYOUT = CStruct(
    "bump" / U8,
    "group_reward_distributor" / PUBKEY,
    "group_entry" / PUBKEY,
    "reward_seconds_received" / U128,
    "multiplier" / U64,
)

GROUP_REWARD_COUNTER_LAYOUT = CStruct(
    "bump" / U8,
    "group_reward_distributor" / PUBKEY,
    "authority" / PUBKEY,
    "count" / U64,
)


# ============================================================================
# TOKEN MANAGER PROGRAM
# ============================================================================

TOKEN_MANAGER_LAYOUT = CStruct(
    "version" / U8,
    "bump" / U8,
    "count" / U64,
    "num_invalidators" / U8,
    "issuer" / PUBKEY,
    "mint" / PUBKEY,
    "amount" / U64,
    "kind" / U8,
    "state" / U8,
    "state_changed_at" / I64,
    "invalidation_type" / U8,
    "recipient_token_account" / PUBKEY,
    "receipt_mint" / Option(PUBKEY),
    "claim_approver" / Option(PUBKEY),
    "transfer_authority" / Option(PUBKEY),
    "invalidators" / Vec(PUBKEY),
)


# ============================================================================
# TOKEN PROGRAM / TOKEN METADATA PROGRAM (untagged)
# ============================================================================

MINT_LAYOUT = construct.Struct(
    "mint_authority_option" / construct.Int32ul,
    "mint_authority" / PUBKEY,
    "supply" / construct.Int64ul,
    "decimals" / construct.Int8ul,
    "is_initialized" / construct.Flag,
    "freeze_authority_option" / construct.Int32ul,
    "freeze_authority" / PUBKEY,
)

MINT_SIZE = 82

CREATOR_LAYOUT = CStruct(
    "address" / PUBKEY,
    "verified" / Bool,
    "share" / U8,
)

COLLECTION_LAYOUT = CStruct(
    "verified" / Bool,
    "key" / PUBKEY,
)

USES_LAYOUT = CStruct(
    "use_method" / U8,
    "remaining" / U64,
    "total" / U64,
)

# Single-variant borsh enums: a u8 variant tag followed by the V1 body
COLLECTION_DETAILS_LAYOUT = CStruct(
    "variant" / U8,
    "size" / U64,
)

PROGRAMMABLE_CONFIG_LAYOUT = CStruct(
    "variant" / U8,
    "rule_set" / Option(PUBKEY),
)

METADATA_KEY = 4  # Key::MetadataV1

METADATA_LAYOUT = CStruct(
    "key" / U8,
    "update_authority" / PUBKEY,
    "mint" / PUBKEY,
    "name" / String,
    "symbol" / String,
    "uri" / String,
    "seller_fee_basis_points" / U16,
    "creators" / Option(Vec(CREATOR_LAYOUT)),
    "primary_sale_happened" / Bool,
    "is_mutable" / Bool,
    "edition_nonce" / Option(U8),
    "token_standard" / Option(U8),
    "collection" / Option(COLLECTION_LAYOUT),
    "uses" / Option(USES_LAYOUT),
    "collection_details" / Option(COLLECTION_DETAILS_LAYOUT),
    "programmable_config" / Option(PROGRAMMABLE_CONFIG_LAYOUT),
)
