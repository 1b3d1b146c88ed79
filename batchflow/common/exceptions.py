"""
Custom exceptions for the batchflow migration engine
"""
from typing import List, Optional, Sequence


class ETLError(Exception):
    """Base exception for all batchflow errors"""
    pass


class ConfigurationError(ETLError):
    """Invalid configuration"""
    pass


class ReadError(ETLError):
    """Error reading from source"""
    pass


class WriteError(ETLError):
    """Error writing to destination"""
    pass


class RecoverableWriteError(WriteError):
    """Destination temporarily unavailable; the loader chain keeps going"""

    def __init__(self, message: str, uid: Optional[str] = None):
        super().__init__(message)
        self.uid = uid


class TransformError(ETLError):
    """Error during transformation"""
    pass


class StorageError(ETLError):
    """Ledger storage operation error"""
    pass


class LedgerError(ETLError):
    """Malformed ledger or ledger entry"""
    pass


class PipelineError(ETLError):
    """Pipeline execution error"""
    pass


class FatalPipelineError(PipelineError):
    """Error that aborts the entire run instead of a single loader or job"""
    pass


class MissingDependencyData(ETLError):
    """A declared dependency has no persisted ledger to load"""

    def __init__(self, job: str, dependency: str):
        super().__init__(
            f"Job '{job}' depends on '{dependency}' but no ledger was found for it"
        )
        self.job = job
        self.dependency = dependency


class ValidationError(ETLError):
    """Job graph validation error"""
    pass


class CircularDependencyError(ValidationError):
    """A dependency cycle exists between jobs"""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency: {' -> '.join(self.cycle)}")

    @property
    def jobs(self) -> List[str]:
        """Distinct jobs on the cycle, in path order"""
        return list(dict.fromkeys(self.cycle))


class UnknownDependencyError(ValidationError):
    """A job depends on a name that is not in the job graph"""

    def __init__(self, job: str, dependency: str):
        super().__init__(f"Dependency '{dependency}' required by '{job}' does not exist")
        self.job = job
        self.dependency = dependency


class OrderViolationError(ValidationError):
    """A dependency is declared after the job that depends on it"""

    def __init__(self, job: str, dependency: str):
        super().__init__(f"Job '{job}' depends on '{dependency}' but comes before it")
        self.job = job
        self.dependency = dependency


class DependencyValidationError(ValidationError):
    """Aggregate of every violation found while validating the job graph"""

    def __init__(self, errors: Sequence[ValidationError]):
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(
            f"Job dependency validation failed with {len(self.errors)} error(s): {details}"
        )
