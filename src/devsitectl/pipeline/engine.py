"""Fail-fast execution of the provisioning state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from ..config import AppConfig
from ..errors import ProvisioningError
from ..request import ProvisioningRequest, ResolvedPaths
from .models import (
    STEP_ORDER,
    PipelineReport,
    PipelineState,
    StepContext,
    StepExecutor,
    StepOutcome,
    Validator,
)

LOGGER = logging.getLogger(__name__)

VALIDATE_STEP = "validate"

OutcomeObserver = Callable[[PipelineState, StepOutcome], None]


class ProvisioningPipeline:
    """Run dependency validation and then every step in fixed order.

    The first failed outcome moves the run to ``ABORTED``; no later step is
    invoked and nothing already applied is undone.
    """

    def __init__(
        self,
        validator: Validator,
        executors: Iterable[StepExecutor],
        *,
        observer: OutcomeObserver | None = None,
    ) -> None:
        """Bind the validator and exactly one executor per step state."""
        by_state: dict[PipelineState, StepExecutor] = {}
        for executor in executors:
            if executor.state not in STEP_ORDER:
                raise ValueError(f"{executor.name} targets non-step state {executor.state.value}.")
            if executor.state in by_state:
                raise ValueError(f"Duplicate executor for state {executor.state.value}.")
            by_state[executor.state] = executor
        missing = [state.value for state in STEP_ORDER if state not in by_state]
        if missing:
            raise ValueError(f"Missing executors for: {', '.join(missing)}.")
        self._validator = validator
        self._executors = by_state
        self._observer = observer
        self.state = PipelineState.NOT_STARTED

    def run(
        self,
        request: ProvisioningRequest,
        paths: ResolvedPaths,
        config: AppConfig,
    ) -> PipelineReport:
        """Provision *request* and return the terminal report."""
        if self.state is not PipelineState.NOT_STARTED:
            raise RuntimeError("A pipeline instance runs at most once.")
        outcomes: list[StepOutcome] = []

        self._enter(PipelineState.VALIDATING)
        try:
            self._validator.validate(request, paths)
        except ProvisioningError as exc:
            outcome = StepOutcome.failed(VALIDATE_STEP, exc)
        else:
            outcome = StepOutcome.applied(VALIDATE_STEP, "All dependencies available.")
        if not self._record(outcomes, outcome):
            return self._finish(PipelineState.ABORTED, outcomes, request, paths)

        context = StepContext(request=request, paths=paths, config=config)
        for state in STEP_ORDER:
            executor = self._executors[state]
            self._enter(state)
            try:
                outcome = executor.execute(context)
            except ProvisioningError as exc:
                outcome = StepOutcome.failed(executor.name, exc)
            if not self._record(outcomes, outcome):
                return self._finish(PipelineState.ABORTED, outcomes, request, paths)

        return self._finish(PipelineState.DONE, outcomes, request, paths)

    # ------------------------------------------------------------------
    def _enter(self, state: PipelineState) -> None:
        LOGGER.debug("pipeline %s -> %s", self.state.value, state.value)
        self.state = state

    def _record(self, outcomes: list[StepOutcome], outcome: StepOutcome) -> bool:
        outcomes.append(outcome)
        if self._observer is not None:
            self._observer(self.state, outcome)
        return not outcome.is_failure

    def _finish(
        self,
        state: PipelineState,
        outcomes: list[StepOutcome],
        request: ProvisioningRequest,
        paths: ResolvedPaths,
    ) -> PipelineReport:
        self._enter(state)
        return PipelineReport(
            state=state,
            outcomes=tuple(outcomes),
            request=request,
            paths=paths,
        )


__all__ = ["ProvisioningPipeline", "VALIDATE_STEP"]
