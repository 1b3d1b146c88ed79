"""
Type-tag registries for sources, transformers and loaders

Every extract, transform and load step names its adapter with a `type` tag.
Tags are checked when the configuration is loaded, so a typo fails before
any job runs instead of at the moment the step is reached.
"""
from typing import Any, Callable, Dict, List, Mapping

from batchflow.adapters.base import Loader, SourceAdapter
from batchflow.adapters.destinations import CSVLoader, JSONLoader, LedgerLoader, SQLiteLoader
from batchflow.adapters.sources import CSVSource, JSONSource
from batchflow.common.exceptions import ConfigurationError
from batchflow.common.imports import import_string
from batchflow.common.models import JobConfig, PhaseType
from batchflow.transformers import (
    ColumnRemover,
    ExplodeTransformer,
    LedgerLookupTransformer,
    NullRemover,
    RenameTransformer,
    SelectPrefixTransformer,
    Transformer,
    create_custom_transformer,
)

TYPE_KEY = "type"


class AdapterRegistry:
    """Maps type tags to factories for one kind of adapter"""

    def __init__(self, kind: str):
        self.kind = kind
        self._factories: Dict[str, Callable[..., Any]] = {}

    def register(self, tag: str, factory: Callable[..., Any]) -> None:
        """
        Register a factory under a type tag

        Raises:
            ConfigurationError: If the tag is already taken
        """
        tag = tag.lower()
        if tag in self._factories:
            raise ConfigurationError(f"{self.kind.capitalize()} type '{tag}' is already registered")
        self._factories[tag] = factory

    def tags(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and tag.lower() in self._factories

    def tag_of(self, step: Mapping[str, Any]) -> str:
        """
        Type tag of a step

        Raises:
            ConfigurationError: If the step has no tag or an unknown one
        """
        tag = step.get(TYPE_KEY)
        if not tag:
            raise ConfigurationError(f"{self.kind.capitalize()} step has no '{TYPE_KEY}': {dict(step)}")
        if tag not in self:
            raise ConfigurationError(
                f"Unknown {self.kind} type '{tag}'. Must be one of: {', '.join(self.tags())}"
            )
        return str(tag).lower()

    def create(self, step: Mapping[str, Any], *args: Any, **kwargs: Any) -> Any:
        """Build the adapter for a step"""
        return self._factories[self.tag_of(step)](step, *args, **kwargs)


def create_custom_loader(step: Mapping[str, Any], config=None, registry=None) -> Loader:
    """
    Build a user-supplied loader from a `custom` step

    Raises:
        ConfigurationError: If `class` is missing or not a Loader subclass
    """
    if not step.get('class'):
        raise ConfigurationError("Custom loader requires 'class'")

    loader_class = import_string(step['class'])
    if not (isinstance(loader_class, type) and issubclass(loader_class, Loader)):
        raise ConfigurationError(f"'{step['class']}' is not a Loader subclass")
    return loader_class(dict(step), config, registry)


def _create_source(source_class) -> Callable[..., SourceAdapter]:
    return lambda step, config=None: source_class(dict(step), config)


def _create_transformer(transformer_class) -> Callable[..., Transformer]:
    return lambda step, registry=None: transformer_class.from_step(step, registry)


SOURCES = AdapterRegistry("source")
SOURCES.register("csv", _create_source(CSVSource))
SOURCES.register("json", _create_source(JSONSource))

TRANSFORMERS = AdapterRegistry("transformer")
TRANSFORMERS.register("rename", _create_transformer(RenameTransformer))
TRANSFORMERS.register("select_prefix", _create_transformer(SelectPrefixTransformer))
TRANSFORMERS.register("null_remover", _create_transformer(NullRemover))
TRANSFORMERS.register("column_remover", _create_transformer(ColumnRemover))
TRANSFORMERS.register("explode", _create_transformer(ExplodeTransformer))
TRANSFORMERS.register("ledger_lookup", _create_transformer(LedgerLookupTransformer))
TRANSFORMERS.register("custom", create_custom_transformer)

LOADERS = AdapterRegistry("loader")
LOADERS.register("csv", CSVLoader)
LOADERS.register("json", JSONLoader)
LOADERS.register("sqlite", SQLiteLoader)
LOADERS.register("ledger", LedgerLoader)
LOADERS.register("custom", create_custom_loader)

PHASE_REGISTRIES = {
    PhaseType.EXTRACT: SOURCES,
    PhaseType.TRANSFORM: TRANSFORMERS,
    PhaseType.LOAD: LOADERS,
}


def loader_name(step: Mapping[str, Any]) -> str:
    """Name a load step's loader will have"""
    return str(step.get('name') or step.get(TYPE_KEY))


def validate_job_steps(job: JobConfig) -> None:
    """
    Check every step of a job against the registries

    Raises:
        ConfigurationError: On unknown type tags, missing custom targets or
            loader names that would collide
    """
    for phase, registry in PHASE_REGISTRIES.items():
        for index, step in enumerate(job.steps(phase)):
            try:
                tag = registry.tag_of(step)
            except ConfigurationError as e:
                raise ConfigurationError(f"Job '{job.name}', {phase.value} step #{index}: {e}")

            if tag == 'custom':
                target_key = 'class' if phase == PhaseType.LOAD else 'callable'
                if not step.get(target_key):
                    raise ConfigurationError(
                        f"Job '{job.name}', custom {phase.value} step #{index} requires '{target_key}'"
                    )

    names: List[str] = []
    for step in job.load:
        name = loader_name(step)
        if name in names:
            raise ConfigurationError(
                f"Job '{job.name}' has two loaders named '{name}'; give each load step a unique 'name'"
            )
        names.append(name)
