"""LedgerCore - Utilities"""
