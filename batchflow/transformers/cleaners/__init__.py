"""
Cleaner transformers package
"""
from .column_remover import ColumnRemover
from .null_remover import NullRemover

__all__ = ['ColumnRemover', 'NullRemover']
