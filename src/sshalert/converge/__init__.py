"""Idempotent convergence steps and the provisioner that runs them."""

from __future__ import annotations

from .engine import Provisioner, StepRecorder, converge
from .models import ConvergenceStep, RunResult, StepOutcome, StepPlan, StepStatus
from .plan import apparmor_remediation, build_deprovision_steps, build_provision_steps

__all__ = [
    "ConvergenceStep",
    "Provisioner",
    "RunResult",
    "StepOutcome",
    "StepPlan",
    "StepRecorder",
    "StepStatus",
    "apparmor_remediation",
    "build_deprovision_steps",
    "build_provision_steps",
    "converge",
]
