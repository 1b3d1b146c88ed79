"""
Field mapping transformers package
"""
from .explode import ExplodeTransformer
from .rename import RenameTransformer
from .select_prefix import SelectPrefixTransformer

__all__ = ['ExplodeTransformer', 'RenameTransformer', 'SelectPrefixTransformer']
