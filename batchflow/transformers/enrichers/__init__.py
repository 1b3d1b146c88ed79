"""
Enricher transformers package
"""
from .ledger_lookup import LedgerLookupTransformer

__all__ = ['LedgerLookupTransformer']
