"""Destination loaders"""

from batchflow.adapters.destinations.csv_loader import CSVLoader
from batchflow.adapters.destinations.json_loader import JSONLoader
from batchflow.adapters.destinations.ledger_loader import LedgerLoader
from batchflow.adapters.destinations.sqlite_loader import SQLiteLoader

__all__ = [
    'CSVLoader',
    'JSONLoader',
    'LedgerLoader',
    'SQLiteLoader',
]
