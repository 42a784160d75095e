"""Provisioning pipeline: state machine, step outcomes and executors."""
from __future__ import annotations

from .engine import VALIDATE_STEP, OutcomeObserver, ProvisioningPipeline
from .models import (
    STEP_ORDER,
    PipelineReport,
    PipelineState,
    StepContext,
    StepExecutor,
    StepOutcome,
    StepStatus,
    Validator,
)
from .steps import build_executors

__all__ = [
    "OutcomeObserver",
    "PipelineReport",
    "PipelineState",
    "ProvisioningPipeline",
    "STEP_ORDER",
    "StepContext",
    "StepExecutor",
    "StepOutcome",
    "StepStatus",
    "VALIDATE_STEP",
    "Validator",
    "build_executors",
]
