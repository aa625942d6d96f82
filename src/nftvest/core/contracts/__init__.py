"""
Contract models used by the vesting engine.

- ERC721: the source collection whose tokens are escrowed
- PositionToken: one non-fungible claim-right per vesting plan
"""

from .erc721 import ERC721Collection, NFTEvent
from .position_token import PositionTokenIssuer

__all__ = [
    "ERC721Collection",
    "NFTEvent",
    "PositionTokenIssuer",
]
