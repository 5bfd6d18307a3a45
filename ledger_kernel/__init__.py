"""
Ledger Kernel - finance event posting pipeline

Expands normalized finance events into balanced double-entry journal
entries with:
- Structural and business validation of every event
- Fiscal period gating (lazy period/year creation, close control)
- Smart-code keyed posting rules validated at load time
- Decimal-only VAT splitting and balance checking
- Atomic, idempotent journal persistence
"""

__version__ = "0.1.0"
