"""Tests for the provisioning state machine."""
from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from devsitectl.errors import DatabaseProvisioningFailed, MissingDependency, ProvisioningError
from devsitectl.pipeline import (
    STEP_ORDER,
    VALIDATE_STEP,
    PipelineState,
    ProvisioningPipeline,
    StepContext,
    StepOutcome,
    StepStatus,
)
from devsitectl.request import ProvisioningRequest, ResolvedPaths


@dataclass
class SpyExecutor:
    """Executor that records invocations and returns a scripted outcome."""

    name: str
    state: PipelineState
    status: StepStatus = StepStatus.APPLIED
    error: ProvisioningError | None = None
    calls: list[StepContext] = field(default_factory=list)

    def execute(self, context: StepContext) -> StepOutcome:
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        if self.status is StepStatus.SKIPPED:
            return StepOutcome.skipped(self.name, "already done")
        return StepOutcome.applied(self.name, "done")


@dataclass
class StubValidator:
    error: ProvisioningError | None = None
    calls: int = 0

    def validate(self, request: ProvisioningRequest, paths: ResolvedPaths) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


def _spies(**overrides: SpyExecutor) -> list[SpyExecutor]:
    return [
        overrides.get(state.name.lower(), SpyExecutor(name=state.value, state=state))
        for state in STEP_ORDER
    ]


def test_successful_run_visits_every_state_in_order(step_context: StepContext) -> None:
    executors = _spies()
    observed: list[tuple[PipelineState, str]] = []
    pipeline = ProvisioningPipeline(
        StubValidator(),
        executors,
        observer=lambda state, outcome: observed.append((state, outcome.step)),
    )

    report = pipeline.run(step_context.request, step_context.paths, step_context.config)

    assert report.state is PipelineState.DONE
    assert report.succeeded is True
    assert pipeline.state is PipelineState.DONE
    assert [state for state, _ in observed] == [PipelineState.VALIDATING, *STEP_ORDER]
    assert [outcome.step for outcome in report.outcomes][0] == VALIDATE_STEP
    assert all(len(spy.calls) == 1 for spy in executors)
    assert report.changed == len(STEP_ORDER) + 1


def test_missing_dependency_invokes_no_executor(step_context: StepContext) -> None:
    executors = _spies()
    validator = StubValidator(error=MissingDependency("nginx"))
    pipeline = ProvisioningPipeline(validator, executors)

    report = pipeline.run(step_context.request, step_context.paths, step_context.config)

    assert report.state is PipelineState.ABORTED
    assert validator.calls == 1
    assert all(spy.calls == [] for spy in executors)
    failure = report.failure
    assert failure is not None
    assert failure.step == VALIDATE_STEP
    assert isinstance(failure.error, MissingDependency)


def test_first_failure_aborts_remaining_steps(step_context: StepContext) -> None:
    failing = SpyExecutor(
        name="database",
        state=PipelineState.DATABASE_PROVISIONING,
        error=DatabaseProvisioningFailed("server gone away"),
    )
    executors = _spies(database_provisioning=failing)
    pipeline = ProvisioningPipeline(StubValidator(), executors)

    report = pipeline.run(step_context.request, step_context.paths, step_context.config)

    assert report.state is PipelineState.ABORTED
    index = STEP_ORDER.index(PipelineState.DATABASE_PROVISIONING)
    assert all(len(spy.calls) == 1 for spy in executors[: index + 1])
    assert all(spy.calls == [] for spy in executors[index + 1 :])
    assert report.outcomes[-1].status is StepStatus.FAILED
    assert report.outcomes[-1].detail == "server gone away"
    assert report.to_dict()["state"] == "aborted"


def test_skipped_steps_still_reach_done(step_context: StepContext) -> None:
    hosts = SpyExecutor(name="hosts", state=PipelineState.HOSTS_UPDATING, status=StepStatus.SKIPPED)
    pipeline = ProvisioningPipeline(StubValidator(), _spies(hosts_updating=hosts))

    report = pipeline.run(step_context.request, step_context.paths, step_context.config)

    assert report.state is PipelineState.DONE
    assert report.changed == len(STEP_ORDER)


def test_unexpected_exceptions_propagate(step_context: StepContext) -> None:
    class Broken(SpyExecutor):
        def execute(self, context: StepContext) -> StepOutcome:
            raise KeyError("bug")

    broken = Broken(name="env", state=PipelineState.ENV_CONFIGURING)
    pipeline = ProvisioningPipeline(StubValidator(), _spies(env_configuring=broken))

    with pytest.raises(KeyError):
        pipeline.run(step_context.request, step_context.paths, step_context.config)


def test_pipeline_runs_once(step_context: StepContext) -> None:
    pipeline = ProvisioningPipeline(StubValidator(), _spies())
    pipeline.run(step_context.request, step_context.paths, step_context.config)

    with pytest.raises(RuntimeError):
        pipeline.run(step_context.request, step_context.paths, step_context.config)


def test_executor_set_must_cover_each_step_once() -> None:
    executors = _spies()

    with pytest.raises(ValueError, match="Missing executors"):
        ProvisioningPipeline(StubValidator(), executors[:-1])
    with pytest.raises(ValueError, match="Duplicate"):
        ProvisioningPipeline(StubValidator(), [*executors, executors[0]])
    with pytest.raises(ValueError, match="non-step"):
        ProvisioningPipeline(
            StubValidator(),
            [*executors[1:], SpyExecutor(name="x", state=PipelineState.DONE)],
        )


def test_terminal_states() -> None:
    assert PipelineState.DONE.is_terminal
    assert PipelineState.ABORTED.is_terminal
    assert not any(state.is_terminal for state in STEP_ORDER)
    assert not PipelineState.NOT_STARTED.is_terminal
