"""
Transformers for data processing and manipulation.
"""
from batchflow.transformers.base_transformer import Transformer, TransformerStats
from batchflow.transformers.cleaners import ColumnRemover, NullRemover
from batchflow.transformers.custom import CallableTransformer, create_custom_transformer
from batchflow.transformers.enrichers.ledger_lookup import LedgerLookupTransformer
from batchflow.transformers.mappers import ExplodeTransformer, RenameTransformer, SelectPrefixTransformer

__all__ = [
    'Transformer',
    'TransformerStats',
    'CallableTransformer',
    'ColumnRemover',
    'ExplodeTransformer',
    'LedgerLookupTransformer',
    'NullRemover',
    'RenameTransformer',
    'SelectPrefixTransformer',
    'create_custom_transformer',
]
