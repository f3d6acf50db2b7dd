"""Persistence: SQLite ledger of chain runs."""

from taintchain.persistence.run_ledger import SQLiteRunLedger

__all__ = ["SQLiteRunLedger"]
