"""
Job dependency graph validation
"""
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set, Tuple

from batchflow.common.exceptions import (
    CircularDependencyError,
    DependencyValidationError,
    OrderViolationError,
    UnknownDependencyError,
    ValidationError,
)
from batchflow.common.logging import get_logger
from batchflow.common.models import JobConfig


@dataclass
class ValidationResult:
    """Outcome of validating a job graph"""
    errors: List[ValidationError] = field(default_factory=list)

    # Jobs that may run, in configuration order
    execution_order: List[str] = field(default_factory=list)

    # Jobs left out of the plan, with the reason
    excluded: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def has_cycles(self) -> bool:
        return any(isinstance(e, CircularDependencyError) for e in self.errors)

    @property
    def cycles(self) -> List[CircularDependencyError]:
        return [e for e in self.errors if isinstance(e, CircularDependencyError)]

    def raise_for_errors(self) -> None:
        """
        Raises:
            DependencyValidationError: Carrying every violation, if there are any
        """
        if self.errors:
            raise DependencyValidationError(self.errors)


class GraphValidator:
    """
    Validates the dependency graph of an ordered job list

    Three kinds of violations are collected in one pass: dependency cycles,
    dependencies on unknown jobs, and dependencies declared after their
    dependent.
    """

    def __init__(self, jobs: Sequence[JobConfig]):
        self.jobs = list(jobs)
        self.dependencies: Dict[str, List[str]] = {job.name: list(job.depends_on) for job in self.jobs}
        self.order: Dict[str, int] = {job.name: index for index, job in enumerate(self.jobs)}
        self.logger = get_logger("GraphValidator")

    def validate(self) -> ValidationResult:
        """Validate the graph and compute the execution plan"""
        result = ValidationResult()

        cycles = self.find_cycles()
        for cycle in cycles:
            result.errors.append(CircularDependencyError(cycle))

        for job in self.jobs:
            for dependency in job.depends_on:
                if dependency not in self.dependencies:
                    result.errors.append(UnknownDependencyError(job.name, dependency))
                elif self.order[dependency] > self.order[job.name]:
                    result.errors.append(OrderViolationError(job.name, dependency))

        on_cycle: Set[str] = {name for cycle in cycles for name in cycle}

        for job in self.jobs:
            reason = None
            if job.name in on_cycle:
                reason = "part of a dependency cycle"
            else:
                for dependency in job.depends_on:
                    if dependency not in self.dependencies:
                        reason = f"unknown dependency '{dependency}'"
                    elif self.order[dependency] > self.order[job.name]:
                        reason = f"dependency '{dependency}' is declared after it"
                    elif dependency in result.excluded:
                        reason = f"dependency '{dependency}' is excluded"
                    elif dependency in on_cycle:
                        reason = f"dependency '{dependency}' is part of a cycle"
                    if reason:
                        break

            if reason:
                result.excluded[job.name] = reason
            else:
                result.execution_order.append(job.name)

        for error in result.errors:
            self.logger.error(str(error))

        return result

    def find_cycles(self) -> List[List[str]]:
        """
        Find dependency cycles

        Depth-first search over the dependency map with an explicit path
        stack. A node met again while still on the path closes a cycle,
        reported as `path[first:] + [node]`. Rotations of one cycle are
        reported once.

        Returns:
            Cycles as job paths ending at their starting job
        """
        cycles: List[List[str]] = []
        seen: Set[Tuple[str, ...]] = set()
        done: Set[str] = set()

        def visit(name: str, path: List[str], on_path: Set[str]) -> None:
            for dependency in self.dependencies.get(name, []):
                if dependency not in self.dependencies:
                    continue
                if dependency in on_path:
                    cycle = path[path.index(dependency):] + [dependency]
                    key = _canonical(cycle[:-1])
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle)
                    continue
                if dependency in done:
                    continue
                path.append(dependency)
                on_path.add(dependency)
                visit(dependency, path, on_path)
                on_path.discard(dependency)
                path.pop()
            done.add(name)

        for job in self.jobs:
            if job.name not in done:
                visit(job.name, [job.name], {job.name})

        return cycles


def _canonical(nodes: List[str]) -> Tuple[str, ...]:
    """Rotation of a cycle starting at its smallest name"""
    start = nodes.index(min(nodes))
    return tuple(nodes[start:] + nodes[:start])


def validate(jobs: Sequence[JobConfig]) -> ValidationResult:
    """Validate an ordered job list"""
    return GraphValidator(jobs).validate()
