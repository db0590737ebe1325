"""
Equipment Kernel - reservation and receipt-lifecycle engine

Allocates a finite pool of serialized equipment units against competing
receipts (borrow, transfer, liquidation, import) with:
- Compare-and-swap unit status transitions
- Incremental scan-in / scan-out allocation
- Virtual availability checks at approval time
- Per-receipt-type state machines
- Atomic, row-locked transactions
"""

__version__ = "0.1.0"
