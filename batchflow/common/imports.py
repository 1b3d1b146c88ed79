"""
Dotted-path imports for user-supplied adapters
"""
import importlib
from typing import Any

from batchflow.common.exceptions import ConfigurationError


def import_string(dotted_path: str) -> Any:
    """
    Import an attribute from a dotted path such as `package.module.Name`

    Raises:
        ConfigurationError: If the module or attribute cannot be imported
    """
    module_path, _, attribute = str(dotted_path).rpartition('.')
    if not module_path:
        raise ConfigurationError(f"'{dotted_path}' is not a dotted import path")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import module '{module_path}': {e}")

    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ConfigurationError(f"Module '{module_path}' has no attribute '{attribute}'")
