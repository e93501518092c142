"""Read-only selectors over the ledger."""

from escrow_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["LedgerSelector"]
