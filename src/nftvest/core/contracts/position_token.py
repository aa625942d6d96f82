"""
Vesting position token.

A non-fungible claim-right handle, one per plan, owned by the plan's
beneficiary. It only tracks identity, ownership and enumeration; the
accounting state lives on the Plan held by the registry.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from typing import Any, Callable

from ..crypto_utils import is_valid_address, normalize_address
from ..vesting_exceptions import PositionTokenError

logger = logging.getLogger(__name__)

Descriptor = Callable[[int], dict[str, Any]]


class PositionTokenIssuer:
    """Mints and enumerates vesting position tokens."""

    def __init__(self, name: str = "Vesting Position", symbol: str = "VPOS") -> None:
        self.name = name
        self.symbol = symbol
        self.owners: dict[int, str] = {}
        self.owner_tokens: dict[str, list[int]] = {}
        self.all_tokens: list[int] = []
        self._descriptor: Descriptor | None = None
        self._lock = threading.RLock()

    def bind_descriptor(self, descriptor: Descriptor) -> None:
        """Set the callable that renders a plan snapshot for metadata_uri."""
        self._descriptor = descriptor

    # ==================== View Functions ====================

    def balance_of(self, owner: str) -> int:
        with self._lock:
            return len(self.owner_tokens.get(normalize_address(owner), []))

    def owner_of(self, token_id: int) -> str:
        with self._lock:
            owner = self.owners.get(token_id)
        if owner is None:
            raise PositionTokenError(
                f"Position token {token_id} does not exist",
                details={"token_id": token_id},
            )
        return owner

    def exists(self, token_id: int) -> bool:
        with self._lock:
            return token_id in self.owners

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        with self._lock:
            tokens = self.owner_tokens.get(normalize_address(owner), [])
            if index < 0 or index >= len(tokens):
                raise PositionTokenError(
                    f"Owner index {index} out of bounds",
                    details={"owner": normalize_address(owner)[:10], "balance": len(tokens)},
                )
            return tokens[index]

    def tokens_of_owner(self, owner: str) -> list[int]:
        with self._lock:
            return list(self.owner_tokens.get(normalize_address(owner), []))

    def total_supply(self) -> int:
        with self._lock:
            return len(self.all_tokens)

    def token_by_index(self, index: int) -> int:
        with self._lock:
            if index < 0 or index >= len(self.all_tokens):
                raise PositionTokenError(f"Index {index} out of bounds")
            return self.all_tokens[index]

    def metadata_uri(self, token_id: int) -> str:
        """
        Return a data URI describing the position.

        The payload is JSON with the token identity plus the current plan
        snapshot supplied by the bound descriptor.
        """
        owner = self.owner_of(token_id)
        payload: dict[str, Any] = {
            "name": f"{self.name} #{token_id}",
            "symbol": self.symbol,
            "token_id": token_id,
            "owner": owner,
        }
        if self._descriptor is not None:
            payload["plan"] = self._descriptor(token_id)
        encoded = base64.b64encode(json.dumps(payload, sort_keys=True).encode()).decode()
        return f"data:application/json;base64,{encoded}"

    # ==================== Minting ====================

    def mint(self, to: str, token_id: int) -> int:
        """
        Mint the position token for a plan.

        Raises:
            PositionTokenError: If the id is taken or the recipient is invalid
        """
        if not is_valid_address(to):
            raise PositionTokenError("Cannot mint position token to an invalid address")
        to_norm = normalize_address(to)
        with self._lock:
            if token_id in self.owners:
                raise PositionTokenError(f"Position token {token_id} already minted")
            self.owners[token_id] = to_norm
            self.owner_tokens.setdefault(to_norm, []).append(token_id)
            self.all_tokens.append(token_id)

        logger.info(
            "Position token minted",
            extra={
                "event": "position.mint",
                "token_id": token_id,
                "to": to_norm[:10],
            }
        )
        return token_id

