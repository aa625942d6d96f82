"""
nftvest - NFT vesting accounting engine

Escrows NFTs from a single collection per plan and releases them to a
beneficiary on a linear template or an explicit tranche schedule, with
one-shot issuer revocation.

Main Components:
- Vesting: plan registry, schedule calculators, claims, revocation, permits
- Contracts: source ERC-721 collection and the vesting position token
- API: Flask blueprint exposing the engine over HTTP
- CLI: click client for a running API
"""

__version__ = "0.1.0"
__author__ = "nftvest Development Team"

__all__ = []
