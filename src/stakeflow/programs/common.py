"""
stakeflow/programs/common.py

Shared pieces of the instruction builders: Anchor method discriminators,
account meta shorthands, the name registry used to label instructions, and
the associated token account instruction every workflow needs.
"""

import hashlib
from typing import Dict, Optional, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..config import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

# (program id, discriminator) -> instruction name
_INSTRUCTION_NAMES: Dict[Tuple[Pubkey, bytes], str] = {}

# Discriminator byte of CreateIdempotent in the associated token program
ATA_CREATE_IDEMPOTENT = bytes([1])
ATA_CREATE_IDEMPOTENT_NAME = "create_associated_token_account_idempotent"


def sighash(name: str) -> bytes:
    """Anchor method discriminator for the snake_case instruction name."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def anchor_instruction(
    program_id: Pubkey,
    name: str,
    accounts,
    args: bytes = b"",
) -> Instruction:
    """
    Build an Anchor instruction and remember its name.

    Args:
        program_id: Program to invoke
        name: snake_case method name
        accounts: Ordered AccountMeta list (declared accounts, then remaining)
        args: Borsh-encoded arguments

    Returns:
        solders Instruction
    """
    discriminator = sighash(name)
    _INSTRUCTION_NAMES[(program_id, discriminator)] = name
    return Instruction(program_id, discriminator + args, list(accounts))


def instruction_name(ix: Instruction) -> Optional[str]:
    """Name of a stakeflow-built instruction, or None if unknown."""
    if ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID and bytes(ix.data) == ATA_CREATE_IDEMPOTENT:
        return ATA_CREATE_IDEMPOTENT_NAME
    return _INSTRUCTION_NAMES.get((ix.program_id, bytes(ix.data[:8])))


# ============================================================================
# ACCOUNT META SHORTHANDS
# ============================================================================

def writable(pubkey: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=signer, is_writable=True)


def readonly(pubkey: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=signer, is_writable=False)


def signer(pubkey: Pubkey, is_writable: bool = True) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=True, is_writable=is_writable)


# ============================================================================
# ASSOCIATED TOKEN PROGRAM
# ============================================================================

def create_associated_token_account_idempotent(
    payer: Pubkey,
    associated_token: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
) -> Instruction:
    """
    Create owner's token account for mint unless it already exists.

    Safe to include unconditionally: the program succeeds without effect if
    the account is already initialized.
    """
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        ATA_CREATE_IDEMPOTENT,
        [
            signer(payer),
            writable(associated_token),
            readonly(owner),
            readonly(mint),
            readonly(SYSTEM_PROGRAM_ID),
            readonly(TOKEN_PROGRAM_ID),
        ],
    )
