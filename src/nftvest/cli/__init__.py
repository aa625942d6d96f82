"""Command-line client for the vesting API."""
