"""Debtbook: per-customer debt ledger for small organizations."""

__version__ = "0.1.0"
