"""
ERC721 Source Collection.

The NFT collection whose units are escrowed by vesting plans. Provides the
subset of EIP-721 the engine relies on:
- Ownership and balances (ownerOf, balanceOf)
- Single-token and operator approvals
- transferFrom with owner / approval checks
- Enumerable extension (tokenOfOwnerByIndex, totalSupply)
- Minting by the collection owner

Security features:
- Owner verification on all transfers
- Approval cleared on every transfer
- Zero address checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from ..crypto_utils import ZERO_ADDRESS, address_from_label, normalize_address
from ..vesting_exceptions import CollectionError

logger = logging.getLogger(__name__)


@dataclass
class NFTEvent:
    """Represents an ERC721 event."""

    event_type: str  # "Transfer", "Approval", "ApprovalForAll"
    from_address: str
    to_address: str
    token_id: int
    approved: bool = False  # For ApprovalForAll
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC721Collection:
    """
    In-memory ERC721 collection used as the escrow substrate.

    Token custody moves between holders only through transfer_from, so the
    vesting engine can take and release custody with the same checks any
    other operator goes through.
    """

    name: str
    symbol: str
    base_uri: str = ""

    # Contract address
    address: str = ""

    # Owner (for minting)
    owner: str = ""

    # Token state
    owners: dict[int, str] = field(default_factory=dict)  # tokenId -> owner
    balances: dict[str, int] = field(default_factory=dict)  # owner -> count
    token_approvals: dict[int, str] = field(default_factory=dict)  # tokenId -> approved
    operator_approvals: dict[str, dict[str, bool]] = field(
        default_factory=dict
    )  # owner -> operator -> approved

    # Enumerable data
    all_tokens: list[int] = field(default_factory=list)
    owner_tokens: dict[str, list[int]] = field(default_factory=dict)  # owner -> tokenIds

    events: list[NFTEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.address:
            self.address = address_from_label(f"erc721:{self.name}:{self.symbol}")
        self.address = normalize_address(self.address)
        self.owner = normalize_address(self.owner)

    # ==================== View Functions ====================

    def balance_of(self, owner: str) -> int:
        """Get number of NFTs owned by an address."""
        return self.balances.get(normalize_address(owner), 0)

    def owner_of(self, token_id: int) -> str:
        """
        Get the owner of an NFT.

        Raises:
            CollectionError: If token doesn't exist
        """
        owner = self.owners.get(token_id)
        if not owner:
            raise CollectionError(
                f"ERC721: token {token_id} does not exist",
                details={"collection": self.address, "token_id": token_id},
            )
        return owner

    def exists(self, token_id: int) -> bool:
        return token_id in self.owners

    def get_approved(self, token_id: int) -> str:
        """Get approved address for a token (zero address if none)."""
        self._require_minted(token_id)
        return self.token_approvals.get(token_id, ZERO_ADDRESS)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        """Check if operator is approved for all tokens of owner."""
        owner_norm = normalize_address(owner)
        operator_norm = normalize_address(operator)
        return self.operator_approvals.get(owner_norm, {}).get(operator_norm, False)

    def is_approved_or_owner(self, spender: str, token_id: int) -> bool:
        """Check if spender may move token_id."""
        spender_norm = normalize_address(spender)
        owner = self.owner_of(token_id)
        return (
            spender_norm == owner
            or self.get_approved(token_id) == spender_norm
            or self.is_approved_for_all(owner, spender_norm)
        )

    def token_uri(self, token_id: int) -> str:
        self._require_minted(token_id)
        if self.base_uri:
            return f"{self.base_uri}{token_id}"
        return ""

    def total_supply(self) -> int:
        """Get total number of minted tokens."""
        return len(self.all_tokens)

    def tokens_of_owner(self, owner: str) -> list[int]:
        return list(self.owner_tokens.get(normalize_address(owner), []))

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        """
        Get token ID by owner and index.

        Raises:
            CollectionError: If index out of bounds
        """
        tokens = self.owner_tokens.get(normalize_address(owner), [])
        if index < 0 or index >= len(tokens):
            raise CollectionError(f"ERC721: owner index {index} out of bounds")
        return tokens[index]

    # ==================== State-Changing Functions ====================

    def approve(self, caller: str, to: str, token_id: int) -> bool:
        """
        Approve an address to transfer a specific token.

        Args:
            caller: Message sender (owner or operator)
            to: Address to approve
            token_id: Token ID
        """
        owner = self.owner_of(token_id)
        caller_norm = normalize_address(caller)
        to_norm = normalize_address(to)

        if to_norm == owner:
            raise CollectionError("ERC721: approval to current owner")

        if caller_norm != owner and not self.is_approved_for_all(owner, caller_norm):
            raise CollectionError("ERC721: approve caller is not owner nor approved")

        self.token_approvals[token_id] = to_norm
        self._emit(NFTEvent("Approval", owner, to_norm, token_id))
        return True

    def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> bool:
        """Set or revoke operator approval for all tokens of caller."""
        caller_norm = normalize_address(caller)
        operator_norm = normalize_address(operator)

        if operator_norm == caller_norm:
            raise CollectionError("ERC721: approve to caller")

        self.operator_approvals.setdefault(caller_norm, {})[operator_norm] = approved
        self._emit(NFTEvent("ApprovalForAll", caller_norm, operator_norm, 0, approved=approved))
        return True

    def transfer_from(self, caller: str, from_addr: str, to_addr: str, token_id: int) -> bool:
        """
        Transfer an NFT.

        Args:
            caller: Message sender
            from_addr: Current owner
            to_addr: New owner
            token_id: Token ID
        """
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)
        caller_norm = normalize_address(caller)

        owner = self.owner_of(token_id)
        if owner != from_norm:
            raise CollectionError("ERC721: transfer from incorrect owner")

        if not self.is_approved_or_owner(caller_norm, token_id):
            raise CollectionError("ERC721: caller is not owner nor approved")

        if to_norm == ZERO_ADDRESS or not to_norm:
            raise CollectionError("ERC721: transfer to zero address")

        self.token_approvals.pop(token_id, None)

        self.balances[from_norm] = self.balances.get(from_norm, 1) - 1
        self.balances[to_norm] = self.balances.get(to_norm, 0) + 1
        self.owners[token_id] = to_norm

        if from_norm in self.owner_tokens:
            self.owner_tokens[from_norm].remove(token_id)
        self.owner_tokens.setdefault(to_norm, []).append(token_id)

        self._emit(NFTEvent("Transfer", from_norm, to_norm, token_id))

        logger.debug(
            "ERC721 transfer",
            extra={
                "event": "erc721.transfer",
                "collection": self.symbol,
                "token_id": token_id,
                "from": from_norm[:10],
                "to": to_norm[:10],
            }
        )
        return True

    def mint(self, minter: str, to: str, token_id: int) -> int:
        """
        Mint a new NFT (collection owner only).

        Raises:
            CollectionError: If minting fails
        """
        if normalize_address(minter) != self.owner:
            raise CollectionError("ERC721: caller is not owner")

        to_norm = normalize_address(to)
        if to_norm == ZERO_ADDRESS or not to_norm:
            raise CollectionError("ERC721: mint to zero address")
        if token_id in self.owners:
            raise CollectionError(f"ERC721: token {token_id} already minted")

        self.owners[token_id] = to_norm
        self.balances[to_norm] = self.balances.get(to_norm, 0) + 1
        self.all_tokens.append(token_id)
        self.owner_tokens.setdefault(to_norm, []).append(token_id)

        self._emit(NFTEvent("Transfer", ZERO_ADDRESS, to_norm, token_id))

        logger.info(
            "ERC721 mint",
            extra={
                "event": "erc721.mint",
                "collection": self.symbol,
                "token_id": token_id,
                "to": to_norm[:10],
            }
        )
        return token_id

    # ==================== Helpers ====================

    def _require_minted(self, token_id: int) -> None:
        if token_id not in self.owners:
            raise CollectionError(f"ERC721: token {token_id} does not exist")

    def _emit(self, event: NFTEvent) -> None:
        self.events.append(event)
