"""
Source adapters for extracting data from various sources.
"""
from batchflow.adapters.sources.csv_source import CSVSource
from batchflow.adapters.sources.json_source import JSONSource

__all__ = [
    'CSVSource',
    'JSONSource',
]
