"""Signed payment receipts, receipt checks and receipt aggregate vouchers."""

__version__ = "0.1.0"

__all__ = [
    "adapters",
    "checks",
    "crypto",
    "eip712",
    "errors",
    "manager",
    "memory",
    "rav",
    "receipt",
    "signed_message",
]