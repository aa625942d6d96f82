"""
nftvest Core Module

Engine, contracts, configuration, logging and the HTTP API.
"""

__all__ = []
