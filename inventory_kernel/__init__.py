"""
Inventory Kernel - Movement & Reconciliation Engine

An append-only stock ledger with:
- Direction derived from movement cause, never stored independently
- Idempotent movement creation keyed by (reference, product, cause)
- All-or-nothing multi-line operations with compensating rollback
- Weighted-average costing on receipt
- Purchase-order lifecycle gating for receiving
"""

__version__ = "0.1.0"
