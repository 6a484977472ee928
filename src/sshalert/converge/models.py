"""Data models shared by convergence steps and the provisioner."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from ..host import HostEnvironment


class StepStatus(str, Enum):
    """Tagged outcome of a single convergence step."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is StepStatus.FAILED


@dataclass(slots=True, frozen=True)
class StepOutcome:
    """What happened when the provisioner visited a step."""

    step: str
    status: StepStatus
    detail: str | None = None
    reason: str | None = None

    @property
    def summary(self) -> str | None:
        """Return the detail of an applied step, or why it was skipped or failed."""
        return self.detail or self.reason

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the step failed."""
        return self.status.is_failure


@dataclass(slots=True, frozen=True)
class StepPlan:
    """Result of checking a step without applying it."""

    step: str
    description: str
    pending: bool
    error: str | None = None


@dataclass(slots=True, frozen=True)
class RunResult:
    """Aggregated outcome of a provisioner run."""

    completed: bool
    outcomes: tuple[StepOutcome, ...] = ()
    failed_at: str | None = None
    reason: str | None = None

    @property
    def applied(self) -> int:
        """Return the number of steps that mutated the host."""
        return sum(1 for outcome in self.outcomes if outcome.status is StepStatus.APPLIED)

    @property
    def skipped(self) -> int:
        """Return the number of steps that were already converged."""
        return sum(1 for outcome in self.outcomes if outcome.status is StepStatus.SKIPPED)


class ConvergenceStep(ABC):
    """One idempotent unit bringing a single host resource to its desired state.

    ``needs_work`` inspects the host and must not mutate it. ``apply`` performs
    the smallest change that converges the resource and returns a short detail
    string for the run log; failures are reported by raising a
    :class:`~sshalert.errors.HostError` subclass.
    """

    kind: ClassVar[str]
    idempotent: ClassVar[bool] = True
    confirmation: str | None = None

    @property
    @abstractmethod
    def target(self) -> str:
        """Return the resource this step manages."""

    @property
    def name(self) -> str:
        """Return the unique step identifier used in logs."""
        return f"{self.kind}:{self.target}"

    @property
    def description(self) -> str:
        """Return a human readable summary of the desired state."""
        return self.name

    @abstractmethod
    def needs_work(self, host: HostEnvironment) -> bool:
        """Return ``True`` when the resource is not yet converged."""

    @abstractmethod
    def apply(self, host: HostEnvironment) -> str | None:
        """Converge the resource on *host*."""


__all__ = [
    "ConvergenceStep",
    "RunResult",
    "StepOutcome",
    "StepPlan",
    "StepStatus",
]
