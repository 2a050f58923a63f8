"""Hierarchy-aware partner ledger with credential inheritance."""

__version__ = "0.1.0"
