"""
Signature-based escrow authorization (permits).

A permit lets a token owner authorize the engine to take custody of one
token without a separate approve call. The owner signs a digest binding the
engine address, the collection, the token id, a per-token nonce and a
deadline. Using a permit consumes the nonce, so a signed permit cannot be
replayed.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import NoReturn

from ..config import Config
from ..contracts.erc721 import ERC721Collection
from ..crypto_utils import (
    address_from_public_key,
    normalize_address,
    sign_message_hex,
    verify_signature_hex,
)
from ..vesting_exceptions import InvalidSignatureError, PermitExpiredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Permit:
    """
    Escrow authorization for a single token.

    `signer_public_key` is the owner's uncompressed secp256k1 key (64 bytes
    hex). The engine derives the owner's address from it and checks the
    signature against it.
    """

    token_id: int
    deadline: int = 0
    signature: str = ""
    use_permit: bool = False
    signer_public_key: str = ""


def permit_digest(
    engine_address: str,
    collection_address: str,
    token_id: int,
    nonce: int,
    deadline: int,
    domain: str = Config.PERMIT_DOMAIN,
) -> bytes:
    """Build the message hash an owner signs to authorize escrow."""
    message = (
        f"{domain}:{normalize_address(engine_address)}:{normalize_address(collection_address)}"
        f":{token_id}:{nonce}:{deadline}"
    )
    return hashlib.sha3_256(message.encode()).digest()


def sign_permit(
    private_key_hex: str,
    engine_address: str,
    collection_address: str,
    token_id: int,
    nonce: int,
    deadline: int,
    domain: str = Config.PERMIT_DOMAIN,
) -> str:
    """Sign a permit digest and return the 64-byte hex signature."""
    digest = permit_digest(engine_address, collection_address, token_id, nonce, deadline, domain)
    return sign_message_hex(private_key_hex, digest)


class PermitHandler:
    """Validates permits and turns them into single-token approvals."""

    def __init__(self, engine_address: str, domain: str = Config.PERMIT_DOMAIN) -> None:
        self.engine_address = normalize_address(engine_address)
        self.domain = domain
        self.nonces: dict[tuple[str, int], int] = {}
        self._lock = threading.RLock()

    def nonce_of(self, collection_address: str, token_id: int) -> int:
        with self._lock:
            return self.nonces.get((normalize_address(collection_address), token_id), 0)

    def verify(self, collection: ERC721Collection, permit: Permit, now: int) -> str:
        """
        Check a permit without changing any state.

        Returns:
            The token owner the permit was signed by

        Raises:
            PermitExpiredError: If now is past the deadline
            InvalidSignatureError: If the key does not belong to the owner or
                the signature does not verify
        """
        if now > permit.deadline:
            logger.warning(
                "Permit rejected: expired",
                extra={
                    "event": "permit.rejected",
                    "reason": "expired",
                    "token_id": permit.token_id,
                    "deadline": permit.deadline,
                },
            )
            raise PermitExpiredError(
                f"Permit for token {permit.token_id} expired at {permit.deadline}",
                details={"token_id": permit.token_id, "deadline": permit.deadline, "now": now},
            )

        owner = collection.owner_of(permit.token_id)
        if not permit.signer_public_key or not permit.signature:
            self._reject(permit, "missing_signature")

        try:
            signer = address_from_public_key(permit.signer_public_key)
        except ValueError:
            self._reject(permit, "malformed_public_key")
        if signer != owner:
            self._reject(permit, "signer_not_owner")

        digest = permit_digest(
            self.engine_address,
            collection.address,
            permit.token_id,
            self.nonce_of(collection.address, permit.token_id),
            permit.deadline,
            self.domain,
        )
        if not verify_signature_hex(permit.signer_public_key, digest, permit.signature):
            self._reject(permit, "bad_signature")
        return owner

    def apply(self, collection: ERC721Collection, permit: Permit, now: int) -> None:
        """
        Verify a permit, consume its nonce and approve the engine for the token.

        Equivalent to the owner having called approve(engine, token_id).
        """
        with self._lock:
            owner = self.verify(collection, permit, now)
            key = (collection.address, permit.token_id)
            self.nonces[key] = self.nonces.get(key, 0) + 1
            collection.approve(owner, self.engine_address, permit.token_id)

        logger.info(
            "Permit applied",
            extra={
                "event": "permit.applied",
                "collection": collection.address[:10],
                "token_id": permit.token_id,
                "owner": owner[:10],
            },
        )

    def restore_nonce(self, collection_address: str, token_id: int) -> None:
        """Undo a nonce consumption when the surrounding operation rolls back."""
        with self._lock:
            key = (normalize_address(collection_address), token_id)
            if self.nonces.get(key, 0) > 0:
                self.nonces[key] -= 1

    def _reject(self, permit: Permit, reason: str) -> NoReturn:
        logger.warning(
            "Permit rejected: %s",
            reason,
            extra={"event": "permit.rejected", "reason": reason, "token_id": permit.token_id},
        )
        raise InvalidSignatureError(
            f"Invalid permit signature for token {permit.token_id}",
            details={"token_id": permit.token_id, "reason": reason},
        )
