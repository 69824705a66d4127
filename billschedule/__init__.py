"""Billschedule - Scheduled billing for subscriptions and one-time products.

This package turns product assignments into charges on schedule, keeps
charges and payments reconciled through sibling links, and maintains each
subject's outstanding balance and available credit.

Main exports:
    invoke_scan: Generate every charge due within the lookahead horizon
    LedgerReconciler: Record, link, delete and restore ledger entries
    InMemoryStore: Record store backed by a YAML ledger file
"""

from .ledger import LedgerReconciler
from .scanner import invoke_scan
from .store import InMemoryStore, RecordStore

__all__ = ["InMemoryStore", "LedgerReconciler", "RecordStore", "invoke_scan"]
__version__ = "1.0.0"
