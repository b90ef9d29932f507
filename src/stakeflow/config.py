"""
stakeflow/config.py

Configuration constants and data classes for stakeflow.

Program ids are process-wide configuration rather than literals so the same
workflows can target alternate deployments (devnet, localnet, forks). Call
configure() once at startup; everything else reads get_config().
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

logger = logging.getLogger("stakeflow.config")


# ============================================================================
# WELL-KNOWN PROGRAMS
# ============================================================================

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
TOKEN_AUTH_RULES_PROGRAM_ID = Pubkey.from_string("auth9SigNpDKz4sJJ1DfCTuZrZNSAgh9sFD3rboVmgg")
SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")


# ============================================================================
# SEED PREFIXES
# ============================================================================

IDENTIFIER_SEED = b"identifier"
STAKE_POOL_SEED = b"stake-pool"
STAKE_ENTRY_SEED = b"stake-entry"
STAKE_AUTHORIZATION_SEED = b"stake-authorization"
GROUP_ENTRY_SEED = b"group-entry"
REWARD_DISTRIBUTOR_SEED = b"reward-distributor"
REWARD_ENTRY_SEED = b"reward-entry"
GROUP_REWARD_DISTRIBUTOR_SEED = b"group-reward-distributor"
GROUP_REWARD_ENTRY_SEED = b"group-reward-entry"
GROUP_REWARD_COUNTER_SEED = b"group-reward-counter"
TOKEN_MANAGER_SEED = b"token-manager"
MINT_COUNTER_SEED = b"mint-counter"
MINT_MANAGER_SEED = b"mint-manager"
METADATA_SEED = b"metadata"
EDITION_SEED = b"edition"
TOKEN_RECORD_SEED = b"token_record"

# Runtime limits for program derived addresses
MAX_SEEDS = 16
MAX_SEED_LENGTH = 32

# getMultipleAccounts accepts at most this many keys per request
MAX_ACCOUNTS_PER_REQUEST = 100

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEVNET_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_TIMEOUT = 30.0  # seconds

ENV_PREFIX = "STAKEFLOW_"


# ============================================================================
# CONFIGURATION CLASSES
# ============================================================================

@dataclass(frozen=True)
class ProgramIds:
    """Addresses of the external programs the workflows talk to."""

    stake_pool: Pubkey = Pubkey.from_string("stkBL96RZkjY5ine4TvPihGqW8UHJfch2cokjAPzV8i")
    reward_distributor: Pubkey = Pubkey.from_string("rwd2rAm24YWUrtK6VmaNgadvhxcX5tYmVpRH8Xiw4ad")
    group_reward_distributor: Pubkey = Pubkey.from_string("grwdQxwBsGBFQnNTjm5jXH7ytYkVCDMSpG5PfWyJHXd")
    token_manager: Pubkey = Pubkey.from_string("mgr99QFMYByTqGPWmNqunV7vBLmWWXdSrHUfV8Jf3JM")

    # Signs reward mints on behalf of distributors
    reward_manager: Pubkey = Pubkey.from_string("crkdpVWjHWdggGgBuSyAqSmZUmAjYLzD435tcLDRLXr")

    # Receives rent when a receipt token manager is closed
    collector: Pubkey = Pubkey.from_string("crkdpVWjHWdggGgBuSyAqSmZUmAjYLzD435tcLDRLXr")

    def to_dict(self) -> Dict[str, str]:
        return {
            "stake_pool": str(self.stake_pool),
            "reward_distributor": str(self.reward_distributor),
            "group_reward_distributor": str(self.group_reward_distributor),
            "token_manager": str(self.token_manager),
            "reward_manager": str(self.reward_manager),
            "collector": str(self.collector),
        }


@dataclass
class NetworkConfig:
    """
    Complete configuration for one ledger deployment.

    Usage:
        config = NetworkConfig.devnet()
        configure(config)
    """

    rpc_url: str = DEFAULT_RPC_URL
    commitment: str = DEFAULT_COMMITMENT
    timeout: float = DEFAULT_TIMEOUT
    programs: ProgramIds = field(default_factory=ProgramIds)

    @classmethod
    def mainnet(cls) -> "NetworkConfig":
        """Create mainnet configuration."""
        return cls()

    @classmethod
    def devnet(cls) -> "NetworkConfig":
        """Create devnet configuration (same program ids, devnet RPC)."""
        return cls(rpc_url=DEVNET_RPC_URL)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkConfig":
        """
        Create from a dictionary.

        Program ids are read from a nested "programs" mapping; missing keys
        keep their defaults.
        """
        programs = ProgramIds()
        overrides = {
            name: Pubkey.from_string(value)
            for name, value in (data.get("programs") or {}).items()
            if value
        }
        if overrides:
            programs = replace(programs, **overrides)
        return cls(
            rpc_url=data.get("rpc_url", DEFAULT_RPC_URL),
            commitment=data.get("commitment", DEFAULT_COMMITMENT),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            programs=programs,
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "NetworkConfig":
        """
        Create from STAKEFLOW_* environment variables.

        STAKEFLOW_RPC_URL, STAKEFLOW_COMMITMENT, STAKEFLOW_TIMEOUT and
        STAKEFLOW_<NAME>_PROGRAM_ID for each field of ProgramIds
        (e.g. STAKEFLOW_STAKE_POOL_PROGRAM_ID).
        """
        env = os.environ if environ is None else environ
        programs = {}
        for name in ProgramIds.__dataclass_fields__:
            value = env.get(f"{ENV_PREFIX}{name.upper()}_PROGRAM_ID")
            if value:
                programs[name] = value
        return cls.from_dict({
            "rpc_url": env.get(f"{ENV_PREFIX}RPC_URL", DEFAULT_RPC_URL),
            "commitment": env.get(f"{ENV_PREFIX}COMMITMENT", DEFAULT_COMMITMENT),
            "timeout": env.get(f"{ENV_PREFIX}TIMEOUT", DEFAULT_TIMEOUT),
            "programs": programs,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rpc_url": self.rpc_url,
            "commitment": self.commitment,
            "timeout": self.timeout,
            "programs": self.programs.to_dict(),
        }


# ============================================================================
# PROCESS-WIDE CONFIGURATION
# ============================================================================

_active_config: Optional[NetworkConfig] = None


def configure(config: NetworkConfig) -> NetworkConfig:
    """Install the configuration used when callers pass none explicitly."""
    global _active_config
    _active_config = config
    logger.info(f"Configured stakeflow for {config.rpc_url} (stake pool program {config.programs.stake_pool})")
    return config


def get_config() -> NetworkConfig:
    """Return the active configuration, defaulting to mainnet."""
    global _active_config
    if _active_config is None:
        _active_config = NetworkConfig.mainnet()
    return _active_config


def reset_config() -> None:
    """Forget the active configuration (next get_config() returns defaults)."""
    global _active_config
    _active_config = None
