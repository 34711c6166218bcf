"""Cooperative loan lifecycle and repayment ledger service."""

__version__ = "1.0.0"
