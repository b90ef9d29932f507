"""
stakeflow/rpc - Ledger JSON-RPC access.

Account fetches for the reader and raw submission for callers that want
the SDK to carry their signed transactions to the network.
"""

from .client import RPCClient, AccountInfo
from ..errors import RPCError

__all__ = [
    "RPCClient",
    "AccountInfo",
    "RPCError",
]
