"""
stakeflow/transaction.py

Containers for composed, unsigned work.

A TransactionBuffer is an ordered instruction list; workflows only ever
append to it. ComposedTransaction bundles the buffers of one workflow with
the addresses it derived and any keypairs that must co-sign (freshly
generated mints). Signing and submission are left to the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Union

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey

from .programs.common import instruction_name


class Ensured(NamedTuple):
    """Address of an account plus the instruction that creates it, if it is missing."""
    address: Pubkey
    instruction: Optional[Instruction] = None

    @property
    def created(self) -> bool:
        return self.instruction is not None


# ============================================================================
# TRANSACTION BUFFER
# ============================================================================

@dataclass
class TransactionBuffer:
    """Append-only list of instructions destined for one transaction."""
    instructions: List[Instruction] = field(default_factory=list)

    def add(self, *instructions: Optional[Instruction]) -> "TransactionBuffer":
        """Append instructions in order. None entries are skipped."""
        for ix in instructions:
            if ix is not None:
                self.instructions.append(ix)
        return self

    def ensure(self, ensured: Ensured) -> Pubkey:
        """Append the creation instruction of ensured, if any, and return its address."""
        self.add(ensured.instruction)
        return ensured.address

    def names(self) -> List[str]:
        """Instruction names in order; unknown instructions show their program id."""
        return [instruction_name(ix) or str(ix.program_id) for ix in self.instructions]

    def compile(self, payer: Pubkey, blockhash: Union[str, Hash]) -> Message:
        """
        Compile the buffer into a legacy message ready to be signed.

        Args:
            payer: Fee payer
            blockhash: Recent blockhash (base58 string or solders Hash)
        """
        if isinstance(blockhash, str):
            blockhash = Hash.from_string(blockhash)
        return Message.new_with_blockhash(self.instructions, payer, blockhash)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instructions": [
                {
                    "name": name,
                    "program_id": str(ix.program_id),
                    "accounts": [str(meta.pubkey) for meta in ix.accounts],
                    "data": bytes(ix.data).hex(),
                }
                for name, ix in zip(self.names(), self.instructions)
            ],
        }

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class ComposedTransaction:
    """Everything one workflow produced."""
    buffers: List[TransactionBuffer]
    addresses: Dict[str, Pubkey] = field(default_factory=dict)
    signers: List[Keypair] = field(default_factory=list)

    @property
    def transaction(self) -> TransactionBuffer:
        """The single buffer of a one-transaction workflow."""
        if len(self.buffers) != 1:
            raise ValueError(f"Workflow produced {len(self.buffers)} transactions, not one")
        return self.buffers[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [buffer.to_dict() for buffer in self.buffers],
            "addresses": {name: str(address) for name, address in self.addresses.items()},
            "signers": [str(kp.pubkey()) for kp in self.signers],
        }


@dataclass
class BatchResult:
    """Outcome for one entry of a batch workflow: a transaction or the error that stopped it."""
    key: Pubkey
    transaction: Optional[TransactionBuffer] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": str(self.key),
            "ok": self.ok,
            "transaction": self.transaction.to_dict() if self.transaction is not None else None,
            "error": str(self.error) if self.error is not None else None,
        }
