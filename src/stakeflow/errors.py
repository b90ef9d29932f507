"""
stakeflow/errors.py

Exception hierarchy for stakeflow.

Absence of an account is never an error: readers return None for it.
"""

from typing import Optional

from solders.pubkey import Pubkey


class StakeflowError(Exception):
    """Base class for all stakeflow errors."""
    pass


class DerivationError(StakeflowError, ValueError):
    """Invalid seeds passed to an address derivation."""
    pass


class PreconditionError(StakeflowError):
    """On-chain state is incompatible with the requested operation."""
    pass


class AccountDecodeError(StakeflowError):
    """Account bytes failed discriminator or schema validation."""

    def __init__(self, message: str, address: Optional[Pubkey] = None, account: str = ""):
        super().__init__(message)
        self.address = address
        self.account = account


class RPCError(StakeflowError):
    """Exception raised for ledger RPC errors."""
    pass
