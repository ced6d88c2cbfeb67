"""trafficledger: usage reconciliation and credit ledger for vendor-fulfilled traffic campaigns."""

__version__ = "0.4.0"
