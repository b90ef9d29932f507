"""
stakeflow/rpc/client.py

JSON-RPC client for the ledger's HTTP endpoint.

Provides methods for:
- Batched account queries (for the account reader)
- Latest blockhash (for compiling messages)
- Raw transaction submission

Calls block on HTTP, so the coroutine methods hand them to a worker
thread with trio.to_thread. There are no retries; callers own
resubmission.
"""

import base64
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
import trio
from solders.pubkey import Pubkey

from ..config import NetworkConfig, get_config, MAX_ACCOUNTS_PER_REQUEST
from ..errors import RPCError

logger = logging.getLogger("stakeflow.rpc.client")

CLIENT_NAME = "stakeflow"
JSONRPC_VERSION = "2.0"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class AccountInfo:
    """Raw account as returned by the ledger."""
    address: Pubkey
    data: bytes
    owner: Pubkey
    lamports: int
    executable: bool = False

    def to_dict(self) -> dict:
        return {
            "address": str(self.address),
            "data": base64.b64encode(self.data).decode(),
            "owner": str(self.owner),
            "lamports": self.lamports,
            "executable": self.executable,
        }

    @classmethod
    def from_rpc(cls, address: Pubkey, value: Dict[str, Any]) -> "AccountInfo":
        """Parse one entry of a base64-encoded getAccountInfo/getMultipleAccounts value."""
        data_field = value.get("data") or ["", "base64"]
        if isinstance(data_field, list):
            encoded, encoding = data_field[0], data_field[1]
        else:
            encoded, encoding = data_field, "base64"
        if encoding != "base64":
            raise RPCError(f"Unexpected account encoding {encoding} for {address}")
        return cls(
            address=address,
            data=base64.b64decode(encoded),
            owner=Pubkey.from_string(value["owner"]),
            lamports=int(value.get("lamports", 0)),
            executable=bool(value.get("executable", False)),
        )


# ============================================================================
# RPC CLIENT
# ============================================================================

class RPCClient:
    """
    Ledger JSON-RPC client.

    Example:
        client = RPCClient.from_config(NetworkConfig.devnet())

        infos = trio.run(client.get_multiple_accounts, [pool_id, entry_id])
        blockhash = trio.run(client.get_latest_blockhash)

        client.close()
    """

    def __init__(
        self,
        url: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            url: HTTP(S) RPC endpoint
            commitment: Commitment level attached to every read
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session, shared by
                every worker thread; it must tolerate concurrent use
        """
        self.url = url
        self.commitment = commitment
        self.timeout = timeout

        self._shared_session = session
        if session is not None:
            session.headers.setdefault("Content-Type", "application/json")
        # One session per worker thread when the client owns them
        self._local = threading.local()
        self._owned_sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self._request_id = 0

    @classmethod
    def from_config(cls, config: Optional[NetworkConfig] = None) -> "RPCClient":
        config = config or get_config()
        return cls(config.rpc_url, commitment=config.commitment, timeout=config.timeout)

    @property
    def _session(self) -> requests.Session:
        """HTTP session for the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = CLIENT_NAME
            session.headers["Content-Type"] = "application/json"
            self._local.session = session
            with self._sessions_lock:
                self._owned_sessions.append(session)
        return session

    def close(self) -> None:
        """Close the underlying HTTP sessions."""
        if self._shared_session is not None:
            self._shared_session.close()
        with self._sessions_lock:
            sessions, self._owned_sessions = self._owned_sessions, []
        for session in sessions:
            session.close()

    def _next_id(self) -> int:
        """Get next request ID."""
        self._request_id += 1
        return self._request_id

    def _request(self, method: str, params: Sequence[Any]) -> Dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": self._next_id(),
            "method": method,
            "params": list(params),
        }

    def _post(self, request: Dict[str, Any]) -> Any:
        """
        Send a prepared JSON-RPC request and unwrap its result.

        Raises:
            RPCError: On transport, HTTP, or server error
        """
        method = request["method"]
        try:
            response = self._session.post(self.url, json=request, timeout=self.timeout)
        except requests.RequestException as e:
            raise RPCError(f"{method} request failed: {e}") from e

        if response.status_code != 200:
            raise RPCError(f"{method} returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise RPCError(f"{method} returned invalid JSON: {e}") from e

        if payload.get("error"):
            error = payload["error"]
            msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RPCError(f"Server error: {msg}")

        return payload.get("result")

    def _call(self, method: str, *params) -> Any:
        """
        Make a blocking JSON-RPC call.

        Args:
            method: RPC method name
            *params: Method parameters

        Returns:
            The "result" member of the response

        Raises:
            RPCError: On transport, HTTP, or server error
        """
        return self._post(self._request(method, params))

    async def _acall(self, method: str, *params) -> Any:
        # Request ids are taken on the trio thread; only the HTTP round trip runs in the worker
        request = self._request(method, params)
        return await trio.to_thread.run_sync(self._post, request)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def get_multiple_accounts(
        self,
        addresses: Sequence[Pubkey],
    ) -> List[Optional[AccountInfo]]:
        """
        Fetch many accounts, preserving order.

        Requests are chunked to the server's per-call key limit.

        Args:
            addresses: Accounts to fetch

        Returns:
            One AccountInfo per address, or None where the account is absent
        """
        results: List[Optional[AccountInfo]] = []
        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_REQUEST):
            chunk = list(addresses[start:start + MAX_ACCOUNTS_PER_REQUEST])
            result = await self._acall(
                "getMultipleAccounts",
                [str(a) for a in chunk],
                {"encoding": "base64", "commitment": self.commitment},
            )
            values = (result or {}).get("value") or []
            if len(values) != len(chunk):
                raise RPCError(
                    f"getMultipleAccounts returned {len(values)} values for {len(chunk)} keys"
                )
            for address, value in zip(chunk, values):
                results.append(AccountInfo.from_rpc(address, value) if value else None)

        logger.debug(
            f"Fetched {len(addresses)} accounts "
            f"({sum(1 for r in results if r is None)} absent)"
        )
        return results

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Fetch a single account, or None if it does not exist."""
        result = await self._acall(
            "getAccountInfo",
            str(address),
            {"encoding": "base64", "commitment": self.commitment},
        )
        value = (result or {}).get("value")
        return AccountInfo.from_rpc(address, value) if value else None

    async def get_latest_blockhash(self) -> str:
        """Return the latest blockhash as a base58 string."""
        result = await self._acall("getLatestBlockhash", {"commitment": self.commitment})
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as e:
            raise RPCError(f"Malformed getLatestBlockhash response: {result}") from e

    async def send_raw_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        """
        Submit a fully signed, serialized transaction.

        Args:
            raw: Wire-format transaction bytes
            skip_preflight: Skip the node's simulation step

        Returns:
            Transaction signature
        """
        encoded = base64.b64encode(raw).decode()
        signature = await self._acall(
            "sendTransaction",
            encoded,
            {
                "encoding": "base64",
                "skipPreflight": skip_preflight,
                "preflightCommitment": self.commitment,
            },
        )
        logger.info(f"Submitted transaction {signature}")
        return signature
