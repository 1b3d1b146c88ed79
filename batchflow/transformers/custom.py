"""
User-supplied transformers
"""
from typing import Any, Callable, Dict, Mapping, Optional

from batchflow.transformers.base_transformer import STEP_KEYS, Transformer
from batchflow.common.imports import import_string
from batchflow.common.models import Row
from batchflow.common.exceptions import ConfigurationError, TransformError


class CallableTransformer(Transformer):
    """
    Transformer wrapping a plain function

    The function receives the row and the step options and returns the new
    row, a mapping of fields to add, or None to filter the row out.
    """

    def __init__(self, func: Callable[..., Any], options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__({'options': options or {}, **kwargs})
        self.func = func
        self.options = dict(options or {})

    def transform(self, row: Row) -> Optional[Row]:
        try:
            result = self.func(row, **self.options)
        except TransformError:
            raise
        except Exception as e:
            raise TransformError(f"{getattr(self.func, '__name__', self.func)} failed on row {row.uid}: {e}")

        if result is None or isinstance(result, Row):
            return result
        if isinstance(result, Mapping):
            return row.with_values(result)
        raise TransformError(
            f"{getattr(self.func, '__name__', self.func)} returned {type(result).__name__}, "
            f"expected Row, mapping or None"
        )


def create_custom_transformer(step: Mapping[str, Any], registry=None) -> Transformer:
    """
    Build a transformer from a `custom` step

    `callable` names either a Transformer subclass, built from the remaining
    step options, or a function wrapped in a CallableTransformer.

    Raises:
        ConfigurationError: If `callable` is missing or not usable
    """
    if not step.get('callable'):
        raise ConfigurationError("Custom transformer requires 'callable'")

    target = import_string(step['callable'])
    if isinstance(target, type) and issubclass(target, Transformer):
        options = {k: v for k, v in step.items() if k != 'callable'}
        return target.from_step(options, registry)

    if callable(target):
        options = {k: v for k, v in step.items() if k not in STEP_KEYS and k != 'callable'}
        return CallableTransformer(target, options=options)

    raise ConfigurationError(f"'{step['callable']}' is neither a Transformer nor callable")
