"""
Configuration management for batchflow

A migration is described by one YAML entrypoint. Other files can be pulled in
with a top-level `imports:` list (merged in order, the importing file wins) or
inline with the `!include <path>` tag. Paths are relative to the file that
references them.
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml
from dotenv import load_dotenv

from batchflow.common.exceptions import ConfigurationError
from batchflow.common.models import JobConfig

ENV_PREFIX = "BATCHFLOW_"

DEFAULT_LEDGER_PATH = "./ledgers"
DEFAULT_BATCH_SIZE = 100


class Config:
    """Configuration manager"""

    def __init__(
        self,
        config_file: Optional[str] = None,
        env_file: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        base_dir: Optional[str] = None
    ):
        """
        Initialize configuration

        Args:
            config_file: Path to the YAML entrypoint
            env_file: Path to .env file
            data: Already-parsed configuration (used instead of config_file)
            base_dir: Directory relative paths are resolved against
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        self._config: Dict[str, Any] = {}
        self._processed_files: Set[Path] = set()
        self._jobs: Optional[List[JobConfig]] = None

        if config_file:
            entrypoint = Path(config_file)
            self.base_dir = Path(base_dir) if base_dir else entrypoint.resolve().parent
            self._config = self._load(entrypoint)
        else:
            self.base_dir = Path(base_dir) if base_dir else Path.cwd()
            self._config = dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> 'Config':
        """Build a configuration from an in-memory mapping"""
        return cls(data=data, base_dir=base_dir)

    def _load(self, path: Path) -> Dict[str, Any]:
        """Load a YAML file merged over its imports, skipping files already processed"""
        resolved = path.resolve()
        if resolved in self._processed_files:
            return {}
        self._processed_files.add(resolved)

        if not resolved.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        data = self._read_yaml(resolved, ())
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")

        imports = data.pop('imports', None) or []
        if isinstance(imports, str):
            imports = [imports]

        merged: Dict[str, Any] = {}
        for imported in imports:
            merged = _deep_merge(merged, self._load(resolved.parent / imported))

        return _deep_merge(merged, data)

    def _read_yaml(self, path: Path, stack: Tuple[Path, ...]) -> Any:
        """Parse one YAML file, resolving `!include` tags relative to it"""
        if path in stack:
            chain = " -> ".join(str(p) for p in stack + (path,))
            raise ConfigurationError(f"Circular !include: {chain}")

        class IncludeLoader(yaml.SafeLoader):
            pass

        def include(loader: yaml.SafeLoader, node: yaml.Node) -> Any:
            target = (path.parent / loader.construct_scalar(node)).resolve()
            if not target.exists():
                raise ConfigurationError(f"Included file not found: {target} (from {path})")
            return self._read_yaml(target, stack + (path,))

        IncludeLoader.add_constructor('!include', include)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.load(f, Loader=IncludeLoader)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML in {path}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Supports dot notation for nested values (e.g., 'ledger.path').
        Checks environment variables first (BATCHFLOW_LEDGER_PATH), then YAML.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        env_key = ENV_PREFIX + key.upper().replace('.', '_')
        env_value = os.getenv(env_key)
        if env_value is not None:
            return env_value

        value: Any = self._config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_int(self, key: str, default: int = 0) -> int:
        """Get integer configuration value"""
        value = self.get(key, default)
        try:
            return int(value)
        except (ValueError, TypeError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get boolean configuration value"""
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', '1', 'yes', 'on')
        return default

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration as dictionary"""
        return self._config.copy()

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path against the configuration directory"""
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    @property
    def ledger_root(self) -> Path:
        return self.resolve_path(str(self.get('ledger.path', DEFAULT_LEDGER_PATH)))

    @property
    def ledger_format(self) -> str:
        return str(self.get('ledger.format', 'json')).lower()

    @property
    def batch_size(self) -> int:
        return self.get_int('pipeline.batch_size', DEFAULT_BATCH_SIZE)

    @property
    def strict_dependencies(self) -> bool:
        return self.get_bool('pipeline.strict_dependencies', True)

    def get_jobs(self) -> List[JobConfig]:
        """
        Get the ordered job list from the `migration` section

        Step type tags are checked against the adapter registries here, so an
        unknown extractor, transformer or loader fails before anything runs.

        Returns:
            Jobs in configuration order

        Raises:
            ConfigurationError: On malformed, duplicate or unknown entries
        """
        if self._jobs is not None:
            return self._jobs

        # Imported here: the registries import every built-in adapter
        from batchflow.adapters.registry import validate_job_steps

        migration = self.get('migration') or []
        if not isinstance(migration, list):
            raise ConfigurationError("'migration' must be a list of jobs")

        jobs: List[JobConfig] = []
        seen: Set[str] = set()
        for index, record in enumerate(migration):
            job = JobConfig.from_dict(record, order=index)
            if job.name in seen:
                raise ConfigurationError(f"Duplicate job name: '{job.name}'")
            seen.add(job.name)
            validate_job_steps(job)
            jobs.append(job)

        self._jobs = jobs
        return jobs

    def find_job(self, name: str) -> Optional[JobConfig]:
        """Find a job configuration by name"""
        for job in self.get_jobs():
            if job.name == name:
                return job
        return None

    def job_ledger_dir(self, job: JobConfig) -> Path:
        """Directory holding the ledger files of a job"""
        if not job.ledger_path:
            return self.ledger_root
        return self.ledger_root / job.ledger_path


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
