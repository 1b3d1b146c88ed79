"""
Ledger registry and finalization
"""
from batchflow.ledger.manager import LedgerManager, left_join
from batchflow.ledger.registry import LedgerRegistry

__all__ = ['LedgerManager', 'LedgerRegistry', 'left_join']
