"""Resilient RPC access layer for EVM ledger endpoints."""

__version__ = "0.1.0"
