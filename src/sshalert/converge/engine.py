"""Fail-fast execution harness for convergence steps."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from ..errors import HostError
from .models import ConvergenceStep, RunResult, StepOutcome, StepPlan, StepStatus

if TYPE_CHECKING:
    from ..host import HostEnvironment
    from ..prompts import Prompter

ALREADY_CONVERGED = "already converged"
DECLINED = "declined by operator"


class StepRecorder(Protocol):
    """Sink that receives each outcome as soon as it is known."""

    def add_step(self, step_id: str, *, status: str, detail: str | None = None) -> None: ...


def _unexpected_failure(step: ConvergenceStep, exc: Exception) -> StepOutcome:
    return StepOutcome(step.name, StepStatus.FAILED, reason=f"unexpected error: {exc}")


def converge(
    step: ConvergenceStep,
    host: HostEnvironment,
    prompter: Prompter,
) -> StepOutcome:
    """Check *step* and apply it when needed, returning a tagged outcome."""
    try:
        if not step.needs_work(host):
            return StepOutcome(step.name, StepStatus.SKIPPED, reason=ALREADY_CONVERGED)
        if step.confirmation is not None and not prompter.confirm(step.confirmation):
            return StepOutcome(step.name, StepStatus.FAILED, reason=DECLINED)
        detail = step.apply(host)
    except HostError as exc:
        return StepOutcome(step.name, StepStatus.FAILED, reason=str(exc))
    except Exception as exc:
        return _unexpected_failure(step, exc)
    return StepOutcome(step.name, StepStatus.APPLIED, detail)


class Provisioner:
    """Run an ordered list of steps, stopping at the first failure.

    Nothing is rolled back: steps before a failure stay converged and a rerun
    skips them.
    """

    def __init__(
        self,
        host: HostEnvironment,
        prompter: Prompter,
        recorder: StepRecorder | None = None,
    ) -> None:
        """Bind the host, the prompter and an optional outcome recorder."""
        self._host = host
        self._prompter = prompter
        self._recorder = recorder

    def run(self, steps: Sequence[ConvergenceStep]) -> RunResult:
        """Converge *steps* in order and return the aggregated result."""
        outcomes: list[StepOutcome] = []
        for step in steps:
            outcome = converge(step, self._host, self._prompter)
            outcomes.append(outcome)
            if self._recorder is not None:
                self._recorder.add_step(
                    outcome.step,
                    status=outcome.status.value,
                    detail=outcome.summary,
                )
            if outcome.is_failure:
                return RunResult(
                    completed=False,
                    outcomes=tuple(outcomes),
                    failed_at=outcome.step,
                    reason=outcome.reason,
                )
        return RunResult(completed=True, outcomes=tuple(outcomes))

    def plan(self, steps: Sequence[ConvergenceStep]) -> list[StepPlan]:
        """Check every step without applying anything.

        Later checks see the host as it is now, not as earlier steps would
        leave it.
        """
        plans: list[StepPlan] = []
        for step in steps:
            try:
                pending = step.needs_work(self._host)
            except HostError as exc:
                plans.append(StepPlan(step.name, step.description, True, str(exc)))
                continue
            plans.append(StepPlan(step.name, step.description, pending))
        return plans


__all__ = ["ALREADY_CONVERGED", "DECLINED", "Provisioner", "StepRecorder", "converge"]
