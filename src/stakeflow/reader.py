"""
stakeflow/reader.py

Account Reader: batched, absence-tolerant fetch of typed records.

"Not found" is data here: a missing account comes back as None. Accounts
that exist but do not decode as the requested kind raise
AccountDecodeError, since that means the caller passed the wrong address.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Type, TypeVar

from solders.pubkey import Pubkey

from .config import MAX_ACCOUNTS_PER_REQUEST
from .errors import AccountDecodeError

logger = logging.getLogger("stakeflow.reader")

T = TypeVar("T")


class AccountReader:
    """
    Reads and decodes ledger accounts.

    The client only needs an async get_multiple_accounts(addresses) that
    returns one AccountInfo-like object (with .data) or None per address.

    Example:
        reader = AccountReader(RPCClient.from_config())
        pool, entry = await reader.fetch_many([
            (pool_id, StakePool),
            (entry_id, StakeEntry),
        ])
    """

    def __init__(self, client):
        self.client = client

    async def fetch(self, address: Pubkey, kind: Type[T]) -> Optional[T]:
        """Fetch and decode one account, or None if it does not exist."""
        (record,) = await self.fetch_many([(address, kind)])
        return record

    async def fetch_many(
        self,
        requests: Sequence[Tuple[Pubkey, type]],
        return_exceptions: bool = False,
    ) -> List[Optional[object]]:
        """
        Fetch and decode several accounts of possibly different kinds.

        Args:
            requests: (address, record class) pairs; the class must provide
                decode(data, address)
            return_exceptions: Put decode errors in the result list instead
                of raising them

        Returns:
            Decoded records in request order, None where absent

        Raises:
            AccountDecodeError: An existing account did not match its kind
        """
        if not requests:
            return []

        addresses = [address for address, _ in requests]
        infos = []
        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_REQUEST):
            infos.extend(
                await self.client.get_multiple_accounts(
                    addresses[start:start + MAX_ACCOUNTS_PER_REQUEST]
                )
            )

        records: List[Optional[object]] = []
        for (address, kind), info in zip(requests, infos):
            if info is None:
                logger.debug(f"{kind.__name__} {address} absent")
                records.append(None)
            else:
                try:
                    records.append(kind.decode(bytes(info.data), address))
                except AccountDecodeError as e:
                    if not return_exceptions:
                        raise
                    records.append(e)
        return records

    async def fetch_all(self, addresses: Sequence[Pubkey], kind: Type[T]) -> List[Optional[T]]:
        """Fetch many accounts of a single kind."""
        return await self.fetch_many([(address, kind) for address in addresses])
