"""
LedgerCore - API Routers Package

FastAPI routers for the API endpoints.
"""

from ledger_core.routers import accounting, bank_reconciliation

__all__ = ["accounting", "bank_reconciliation"]
