"""
Escrow Kernel

The financial core of the marketplace backend:
- Wallet ledger with available/pending balances and an append-only log
- Per-contract escrow accounts (deposit, release, refund)
- Contract and milestone lifecycle state machines
- Idempotent financial operations
- Atomic, row-locked transactions
"""

__version__ = "0.1.0"
