"""
stakeflow/programs/accounts.py

Typed records for the accounts the workflows read.

Each record knows how to decode itself from raw account bytes and how to
encode itself back (the latter is what test ledgers use to hold real
account data). Decoding failures raise AccountDecodeError; they never mean
"absent".
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, List, Optional

import construct
from solders.pubkey import Pubkey

from ..errors import AccountDecodeError
from .layouts import (
    DISCRIMINATOR_SIZE,
    account_discriminator,
    IDENTIFIER_LAYOUT,
    STAKE_POOL_LAYOUT,
    STAKE_ENTRY_LAYOUT,
    GROUP_STAKE_ENTRY_LAYOUT,
    REWARD_DISTRIBUTOR_LAYOUT,
    REWARD_ENTRY_LAYOUT,
    GROUP_REWARD_DISTRIBUTOR_LAYOUT,
    GROUP_REWARD_ENTRY_LAYOUT,
    GROUP_REWARD_COUNTER_LAYOUT,
    TOKEN_MANAGER_LAYOUT,
    MINT_LAYOUT,
    MINT_SIZE,
    METADATA_LAYOUT,
    METADATA_KEY,
)

logger = logging.getLogger("stakeflow.programs.accounts")


# ============================================================================
# ENUMS
# ============================================================================

class ReceiptType(IntEnum):
    """What the staker receives back when staking through the standard path."""
    ORIGINAL = 1  # The original asset, locked by a token manager
    RECEIPT = 2   # A stake mint minted for the entry
    NONE = 3


class RewardDistributorKind(IntEnum):
    MINT = 1      # Distributor mints new reward tokens
    TREASURY = 2  # Distributor transfers from a funded token account


class GroupRewardDistributorKind(IntEnum):
    MINT = 1
    TREASURY = 2


class GroupRewardDistributorPoolKind(IntEnum):
    NO_RESTRICTION = 0
    ALL_FROM_SINGLE_POOL = 1
    EACH_FROM_SEPARATE_POOL = 2


class GroupRewardDistributorMetadataKind(IntEnum):
    NO_RESTRICTION = 0
    UNIQUE_NAMES = 1
    UNIQUE_SYMBOLS = 2


class TokenManagerKind(IntEnum):
    UNMANAGED = 1
    MANAGED = 2
    EDITION = 3
    PERMISSIONED = 4


class TokenManagerState(IntEnum):
    INITIALIZED = 0
    ISSUED = 1
    CLAIMED = 2
    INVALIDATED = 3


class TokenStandard(IntEnum):
    NON_FUNGIBLE = 0
    FUNGIBLE_ASSET = 1
    FUNGIBLE = 2
    NON_FUNGIBLE_EDITION = 3
    PROGRAMMABLE_NON_FUNGIBLE = 4


# ============================================================================
# ANCHOR RECORDS
# ============================================================================

def _plain(value: Any) -> Any:
    """Strip construct containers down to builtins."""
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class AnchorAccount:
    """
    Mixin for records stored by Anchor programs.

    Subclasses are dataclasses whose field names match LAYOUT exactly.
    """

    ACCOUNT_NAME: ClassVar[str] = ""
    LAYOUT: ClassVar[Any] = None

    @classmethod
    def discriminator(cls) -> bytes:
        return account_discriminator(cls.ACCOUNT_NAME)

    @classmethod
    def decode(cls, data: bytes, address: Optional[Pubkey] = None):
        """
        Decode raw account data.

        Raises:
            AccountDecodeError: Wrong discriminator or malformed body
        """
        if len(data) < DISCRIMINATOR_SIZE or data[:DISCRIMINATOR_SIZE] != cls.discriminator():
            raise AccountDecodeError(
                f"Account {address} is not a {cls.ACCOUNT_NAME} (discriminator mismatch)",
                address=address,
                account=cls.ACCOUNT_NAME,
            )
        try:
            parsed = cls.LAYOUT.parse(data[DISCRIMINATOR_SIZE:])
        except (construct.ConstructError, UnicodeDecodeError) as e:
            raise AccountDecodeError(
                f"Failed to decode {cls.ACCOUNT_NAME} at {address}: {e}",
                address=address,
                account=cls.ACCOUNT_NAME,
            ) from e
        return cls(**{f.name: _plain(parsed[f.name]) for f in fields(cls)})

    def encode(self) -> bytes:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        return self.discriminator() + self.LAYOUT.build(values)


@dataclass
class Identifier(AnchorAccount):
    """Global counter; the next stake pool takes `count` as its identifier."""
    ACCOUNT_NAME = "Identifier"
    LAYOUT = IDENTIFIER_LAYOUT

    bump: int
    count: int


@dataclass
class StakePool(AnchorAccount):
    ACCOUNT_NAME = "StakePool"
    LAYOUT = STAKE_POOL_LAYOUT

    bump: int
    identifier: int
    authority: Pubkey
    requires_creators: List[Pubkey] = field(default_factory=list)
    requires_collections: List[Pubkey] = field(default_factory=list)
    requires_authorization: bool = False
    overlay_text: str = ""
    image_uri: str = ""
    reset_on_stake: bool = False
    total_staked: int = 0
    cooldown_seconds: Optional[int] = None
    min_stake_seconds: Optional[int] = None
    end_date: Optional[int] = None
    double_or_reset_enabled: Optional[bool] = None


@dataclass
class StakeEntry(AnchorAccount):
    """
    Custody and accrual state of one staked asset.

    At most one of stake_mint_claimed / original_mint_claimed is set: the
    former means a stake mint receipt is out, the latter that the original
    asset itself was handed back under a token manager lock.
    """
    ACCOUNT_NAME = "StakeEntry"
    LAYOUT = STAKE_ENTRY_LAYOUT

    bump: int
    pool: Pubkey
    amount: int
    original_mint: Pubkey
    original_mint_claimed: bool
    last_staker: Pubkey
    last_staked_at: int = 0
    total_stake_seconds: int = 0
    stake_mint_claimed: bool = False
    kind: int = 0
    stake_mint: Optional[Pubkey] = None
    cooldown_start_seconds: Optional[int] = None
    last_updated_at: Optional[int] = None
    grouping_info: Optional[Pubkey] = None

    @property
    def receipt_claimed(self) -> bool:
        return self.stake_mint_claimed or self.original_mint_claimed

    @property
    def receipt_mint(self) -> Pubkey:
        """Mint whose custody a claimed receipt represents."""
        if self.stake_mint is not None and self.stake_mint_claimed:
            return self.stake_mint
        return self.original_mint


@dataclass
class GroupStakeEntry(AnchorAccount):
    ACCOUNT_NAME = "GroupStakeEntry"
    LAYOUT = GROUP_STAKE_ENTRY_LAYOUT

    bump: int
    group_id: Pubkey
    authority: Pubkey
    stake_entries: List[Pubkey] = field(default_factory=list)
    changed_at: int = 0
    group_cooldown_seconds: int = 0
    group_stake_seconds: int = 0
    group_cooldown_start_seconds: Optional[int] = None


@dataclass
class RewardDistributor(AnchorAccount):
    ACCOUNT_NAME = "RewardDistributor"
    LAYOUT = REWARD_DISTRIBUTOR_LAYOUT

    bump: int
    stake_pool: Pubkey
    kind: int
    authority: Pubkey
    reward_mint: Pubkey
    reward_amount: int = 1
    reward_duration_seconds: int = 1
    rewards_issued: int = 0
    max_supply: Optional[int] = None
    default_multiplier: int = 1
    multiplier_decimals: int = 0
    max_reward_seconds_received: Optional[int] = None


@dataclass
class RewardEntry(AnchorAccount):
    ACCOUNT_NAME = "RewardEntry"
    LAYOUT = REWARD_ENTRY_LAYOUT

    bump: int
    stake_entry: Pubkey
    reward_distributor: Pubkey
    reward_seconds_received: int = 0
    multiplier: int = 1


@dataclass
class GroupRewardDistributor(AnchorAccount):
    ACCOUNT_NAME = "GroupRewardDistributor"
    LAYOUT = GROUP_REWARD_DISTRIBUTOR_LAYOUT

    bump: int
    id: Pubkey
    authority: Pubkey
    reward_mint: Pubkey
    reward_amount: int = 1
    reward_duration_seconds: int = 1
    reward_kind: int = GroupRewardDistributorKind.MINT
    metadata_kind: int = GroupRewardDistributorMetadataKind.NO_RESTRICTION
    pool_kind: int = GroupRewardDistributorPoolKind.NO_RESTRICTION
    authorized_pools: List[Pubkey] = field(default_factory=list)
    authorized_creators: Optional[List[Pubkey]] = None
    rewards_issued: int = 0
    max_supply: Optional[int] = None
    base_adder: int = 0
    base_adder_decimals: int = 0
    base_multiplier: int = 1
    base_multiplier_decimals: int = 0
    multiplier_decimals: int = 0
    min_cooldown_seconds: int = 0
    min_stake_seconds: int = 0
    group_count_multiplier: Optional[int] = None
    group_count_multiplier_decimals: Optional[int] = None
    min_group_size: Optional[int] = None
    max_reward_seconds_received: Optional[int] = None


@dataclass
class GroupRewardEntry(AnchorAccount):
    ACCOUNT_NAME = "GroupRewardEntry"
    LAYOUT = GROUP_REWARD_ENTRY_LAYOUT

    bump: int
    group_reward_distributor: Pubkey
    group_entry: Pubkey
    reward_seconds_received: int = 0
    multiplier: int = 1


@dataclass
class GroupRewardCounter(AnchorAccount):
    ACCOUNT_NAME = "GroupRewardCounter"
    LAYOUT = GROUP_REWARD_COUNTER_LAYOUT

    bump: int
    group_reward_distributor: Pubkey
    authority: Pubkey
    count: int = 0


@dataclass
class TokenManager(AnchorAccount):
    """Receipt lock held by the external token manager program."""
    ACCOUNT_NAME = "TokenManager"
    LAYOUT = TOKEN_MANAGER_LAYOUT

    version: int
    bump: int
    count: int
    num_invalidators: int
    issuer: Pubkey
    mint: Pubkey
    amount: int
    kind: int
    state: int
    state_changed_at: int
    invalidation_type: int
    recipient_token_account: Pubkey
    receipt_mint: Optional[Pubkey] = None
    claim_approver: Optional[Pubkey] = None
    transfer_authority: Optional[Pubkey] = None
    invalidators: List[Pubkey] = field(default_factory=list)


# ============================================================================
# TOKEN PROGRAM MINT
# ============================================================================

@dataclass
class Mint:
    supply: int
    decimals: int = 0
    is_initialized: bool = True
    mint_authority: Optional[Pubkey] = None
    freeze_authority: Optional[Pubkey] = None

    @property
    def is_fungible(self) -> bool:
        """Multi-supply mints are staked per staker rather than per asset."""
        return self.supply > 1

    @classmethod
    def decode(cls, data: bytes, address: Optional[Pubkey] = None) -> "Mint":
        if len(data) < MINT_SIZE:
            raise AccountDecodeError(
                f"Account {address} is not a mint ({len(data)} bytes)",
                address=address,
                account="Mint",
            )
        try:
            parsed = MINT_LAYOUT.parse(data[:MINT_SIZE])
        except (construct.ConstructError, UnicodeDecodeError) as e:
            raise AccountDecodeError(
                f"Failed to decode mint {address}: {e}", address=address, account="Mint"
            ) from e
        return cls(
            supply=parsed.supply,
            decimals=parsed.decimals,
            is_initialized=parsed.is_initialized,
            mint_authority=parsed.mint_authority if parsed.mint_authority_option else None,
            freeze_authority=parsed.freeze_authority if parsed.freeze_authority_option else None,
        )

    def encode(self) -> bytes:
        return MINT_LAYOUT.build({
            "mint_authority_option": 1 if self.mint_authority else 0,
            "mint_authority": self.mint_authority or Pubkey.default(),
            "supply": self.supply,
            "decimals": self.decimals,
            "is_initialized": self.is_initialized,
            "freeze_authority_option": 1 if self.freeze_authority else 0,
            "freeze_authority": self.freeze_authority or Pubkey.default(),
        })


# ============================================================================
# TOKEN METADATA
# ============================================================================

@dataclass
class Creator:
    address: Pubkey
    verified: bool = False
    share: int = 100


@dataclass
class Metadata:
    """
    The subset of a token metadata record the workflows branch on.

    Names, symbols and uris are stored null-padded; they are stripped here.
    """
    update_authority: Pubkey
    mint: Pubkey
    name: str = ""
    symbol: str = ""
    uri: str = ""
    seller_fee_basis_points: int = 0
    creators: Optional[List[Creator]] = None
    primary_sale_happened: bool = False
    is_mutable: bool = True
    edition_nonce: Optional[int] = None
    token_standard: Optional[int] = None
    collection: Optional[Pubkey] = None
    collection_verified: bool = False
    rule_set: Optional[Pubkey] = None
    has_programmable_config: bool = False

    @classmethod
    def decode(cls, data: bytes, address: Optional[Pubkey] = None) -> "Metadata":
        if not data or data[0] != METADATA_KEY:
            raise AccountDecodeError(
                f"Account {address} is not a metadata record",
                address=address,
                account="Metadata",
            )
        try:
            parsed = METADATA_LAYOUT.parse(data)
        except (construct.ConstructError, UnicodeDecodeError) as e:
            raise AccountDecodeError(
                f"Failed to decode metadata {address}: {e}", address=address, account="Metadata"
            ) from e

        creators = None
        if parsed.creators is not None:
            creators = [Creator(c.address, c.verified, c.share) for c in parsed.creators]
        config = parsed.programmable_config
        return cls(
            update_authority=parsed.update_authority,
            mint=parsed.mint,
            name=parsed.name.rstrip("\x00"),
            symbol=parsed.symbol.rstrip("\x00"),
            uri=parsed.uri.rstrip("\x00"),
            seller_fee_basis_points=parsed.seller_fee_basis_points,
            creators=creators,
            primary_sale_happened=parsed.primary_sale_happened,
            is_mutable=parsed.is_mutable,
            edition_nonce=parsed.edition_nonce,
            token_standard=parsed.token_standard,
            collection=parsed.collection.key if parsed.collection else None,
            collection_verified=bool(parsed.collection and parsed.collection.verified),
            rule_set=config.rule_set if config is not None else None,
            has_programmable_config=config is not None,
        )

    def encode(self) -> bytes:
        return METADATA_LAYOUT.build({
            "key": METADATA_KEY,
            "update_authority": self.update_authority,
            "mint": self.mint,
            "name": self.name,
            "symbol": self.symbol,
            "uri": self.uri,
            "seller_fee_basis_points": self.seller_fee_basis_points,
            "creators": None if self.creators is None else [
                {"address": c.address, "verified": c.verified, "share": c.share}
                for c in self.creators
            ],
            "primary_sale_happened": self.primary_sale_happened,
            "is_mutable": self.is_mutable,
            "edition_nonce": self.edition_nonce,
            "token_standard": self.token_standard,
            "collection": None if self.collection is None else {
                "verified": self.collection_verified,
                "key": self.collection,
            },
            "uses": None,
            "collection_details": None,
            "programmable_config": (
                {"variant": 0, "rule_set": self.rule_set}
                if self.has_programmable_config or self.rule_set is not None
                else None
            ),
        })

    @property
    def is_programmable(self) -> bool:
        return (
            self.token_standard == TokenStandard.PROGRAMMABLE_NON_FUNGIBLE
            and self.rule_set is not None
        )


# ============================================================================
# TRANSFER MODE
# ============================================================================

class TransferKind(Enum):
    STANDARD = "standard"
    PROGRAMMABLE = "programmable"


@dataclass(frozen=True)
class AssetTransferMode:
    """
    How the original asset moves in and out of custody.

    Resolved once per workflow from the asset's metadata and handed to the
    instruction builders, which pick their account sets from it.
    """
    kind: TransferKind
    rule_set: Optional[Pubkey] = None

    @classmethod
    def standard(cls) -> "AssetTransferMode":
        return cls(TransferKind.STANDARD)

    @classmethod
    def programmable(cls, rule_set: Pubkey) -> "AssetTransferMode":
        return cls(TransferKind.PROGRAMMABLE, rule_set)

    @classmethod
    def from_metadata(cls, metadata: Optional[Metadata]) -> "AssetTransferMode":
        if metadata is not None and metadata.is_programmable:
            return cls.programmable(metadata.rule_set)
        if metadata is not None and metadata.token_standard == TokenStandard.PROGRAMMABLE_NON_FUNGIBLE:
            logger.debug(f"Programmable asset {metadata.mint} has no rule set, using standard transfer")
        return cls.standard()

    @property
    def is_programmable(self) -> bool:
        return self.kind == TransferKind.PROGRAMMABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rule_set": str(self.rule_set) if self.rule_set else None,
        }
