"""
stakeflow/pda.py

Program derived address (PDA) derivation.

Every account the workflows touch is addressed deterministically from a
program id and an ordered list of seeds. Derivation is delegated to
solders so results match the ledger runtime bit for bit.

All find_* helpers return the address only; use find_program_address()
when the bump is needed.
"""

import logging
from typing import Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from .config import (
    NetworkConfig,
    get_config,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    MAX_SEEDS,
    MAX_SEED_LENGTH,
    IDENTIFIER_SEED,
    STAKE_POOL_SEED,
    STAKE_ENTRY_SEED,
    STAKE_AUTHORIZATION_SEED,
    GROUP_ENTRY_SEED,
    REWARD_DISTRIBUTOR_SEED,
    REWARD_ENTRY_SEED,
    GROUP_REWARD_DISTRIBUTOR_SEED,
    GROUP_REWARD_ENTRY_SEED,
    GROUP_REWARD_COUNTER_SEED,
    TOKEN_MANAGER_SEED,
    MINT_COUNTER_SEED,
    MINT_MANAGER_SEED,
    METADATA_SEED,
    EDITION_SEED,
    TOKEN_RECORD_SEED,
)
from .errors import DerivationError

logger = logging.getLogger("stakeflow.pda")

# Seed used for single-supply assets so every staker shares one entry
SHARED_STAKE_SEED = bytes(32)


# ============================================================================
# CORE DERIVATION
# ============================================================================

def validate_seeds(seeds: Sequence[bytes]) -> None:
    """
    Check seeds against the runtime limits.

    Raises:
        DerivationError: Too many seeds, a seed too long, or a non-bytes seed
    """
    if len(seeds) > MAX_SEEDS:
        raise DerivationError(f"Too many seeds: {len(seeds)} > {MAX_SEEDS}")
    for i, seed in enumerate(seeds):
        if not isinstance(seed, (bytes, bytearray)):
            raise DerivationError(f"Seed {i} must be bytes, got {type(seed).__name__}")
        if len(seed) > MAX_SEED_LENGTH:
            raise DerivationError(
                f"Seed {i} is {len(seed)} bytes, max is {MAX_SEED_LENGTH}"
            )


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """
    Derive the off-curve address and bump for seeds under program_id.

    Args:
        seeds: Ordered seed byte strings
        program_id: Owning program

    Returns:
        (address, bump) tuple
    """
    validate_seeds(seeds)
    return Pubkey.find_program_address([bytes(s) for s in seeds], program_id)


def _u64_seed(value: int) -> bytes:
    if value < 0 or value >= 2 ** 64:
        raise DerivationError(f"Identifier out of u64 range: {value}")
    return value.to_bytes(8, "little")


def _programs(config: Optional[NetworkConfig]):
    return (config or get_config()).programs


# ============================================================================
# STAKE POOL PROGRAM
# ============================================================================

def find_identifier_id(config: Optional[NetworkConfig] = None) -> Pubkey:
    """Global counter account used to number stake pools."""
    return find_program_address([IDENTIFIER_SEED], _programs(config).stake_pool)[0]


def find_stake_pool_id(identifier: int, config: Optional[NetworkConfig] = None) -> Pubkey:
    return find_program_address(
        [STAKE_POOL_SEED, _u64_seed(identifier)], _programs(config).stake_pool
    )[0]


def stake_seed(wallet: Pubkey, is_fungible: bool) -> bytes:
    """
    Staker component of the stake entry seeds.

    Multi-supply mints get one entry per staker; single-supply assets share
    a zeroed seed so the entry follows the asset rather than the owner.
    """
    return bytes(wallet) if is_fungible else SHARED_STAKE_SEED


def find_stake_entry_id(
    wallet: Pubkey,
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    is_fungible: bool,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    address = find_program_address(
        [
            STAKE_ENTRY_SEED,
            bytes(stake_pool_id),
            bytes(original_mint_id),
            stake_seed(wallet, is_fungible),
        ],
        _programs(config).stake_pool,
    )[0]
    logger.debug(f"Stake entry for {original_mint_id} in {stake_pool_id}: {address}")
    return address


def find_stake_authorization_id(
    stake_pool_id: Pubkey,
    original_mint_id: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [STAKE_AUTHORIZATION_SEED, bytes(stake_pool_id), bytes(original_mint_id)],
        _programs(config).stake_pool,
    )[0]


def find_group_entry_id(group_id: Pubkey, config: Optional[NetworkConfig] = None) -> Pubkey:
    return find_program_address(
        [GROUP_ENTRY_SEED, bytes(group_id)], _programs(config).stake_pool
    )[0]


# ============================================================================
# REWARD DISTRIBUTOR PROGRAMS
# ============================================================================

def find_reward_distributor_id(
    stake_pool_id: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [REWARD_DISTRIBUTOR_SEED, bytes(stake_pool_id)],
        _programs(config).reward_distributor,
    )[0]


def find_reward_entry_id(
    reward_distributor_id: Pubkey,
    stake_entry_id: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [REWARD_ENTRY_SEED, bytes(reward_distributor_id), bytes(stake_entry_id)],
        _programs(config).reward_distributor,
    )[0]


def find_group_reward_distributor_id(
    distributor_id: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [GROUP_REWARD_DISTRIBUTOR_SEED, bytes(distributor_id)],
        _programs(config).group_reward_distributor,
    )[0]


def find_group_reward_entry_id(
    group_reward_distributor_id: Pubkey,
    group_entry_id: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [GROUP_REWARD_ENTRY_SEED, bytes(group_reward_distributor_id), bytes(group_entry_id)],
        _programs(config).group_reward_distributor,
    )[0]


def find_group_reward_counter_id(
    group_reward_distributor_id: Pubkey,
    authority: Pubkey,
    config: Optional[NetworkConfig] = None,
) -> Pubkey:
    return find_program_address(
        [GROUP_REWARD_COUNTER_SEED, bytes(group_reward_distributor_id), bytes(authority)],
        _programs(config).group_reward_distributor,
    )[0]


# ============================================================================
# TOKEN MANAGER PROGRAM (receipts)
# ============================================================================

def find_token_manager_id(mint: Pubkey, config: Optional[NetworkConfig] = None) -> Pubkey:
    return find_program_address(
        [TOKEN_MANAGER_SEED, bytes(mint)], _programs(config).token_manager
    )[0]


def find_mint_counter_id(mint: Pubkey, config: Optional[NetworkConfig] = None) -> Pubkey:
    return find_program_address(
        [MINT_COUNTER_SEED, bytes(mint)], _programs(config).token_manager
    )[0]


def find_mint_manager_id(mint: Pubkey, config: Optional[NetworkConfig] = None) -> Pubkey:
    return find_program_address(
        [MINT_MANAGER_SEED, bytes(mint)], _programs(config).token_manager
    )[0]


# ============================================================================
# TOKEN METADATA / ASSOCIATED TOKEN ACCOUNTS
# ============================================================================

def find_mint_metadata_id(mint: Pubkey) -> Pubkey:
    return find_program_address(
        [METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(mint)], METADATA_PROGRAM_ID
    )[0]


def find_mint_edition_id(mint: Pubkey) -> Pubkey:
    return find_program_address(
        [METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(mint), EDITION_SEED],
        METADATA_PROGRAM_ID,
    )[0]


def find_token_record_id(mint: Pubkey, token_account: Pubkey) -> Pubkey:
    """Per token-account record kept by the metadata program for programmable assets."""
    return find_program_address(
        [
            METADATA_SEED,
            bytes(METADATA_PROGRAM_ID),
            bytes(mint),
            TOKEN_RECORD_SEED,
            bytes(token_account),
        ],
        METADATA_PROGRAM_ID,
    )[0]


def get_associated_token_address(mint: Pubkey, owner: Pubkey) -> Pubkey:
    """
    Associated token account of owner for mint.

    Owners may themselves be PDAs (stake entries, distributors, token
    managers); the derivation does not care.
    """
    return find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )[0]
