"""
Storage module for ledger persistence
"""
from batchflow.storage.base import LedgerStorage, ledger_filename, ledger_timestamp
from batchflow.storage.file_storage import JSONLedgerStorage, ParquetLedgerStorage, create_storage

__all__ = [
    'LedgerStorage',
    'JSONLedgerStorage',
    'ParquetLedgerStorage',
    'create_storage',
    'ledger_filename',
    'ledger_timestamp',
]
