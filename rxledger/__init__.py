"""Ledger-backed prescription record, verification and dispensation."""

__version__ = "1.0.0"
