"""States, step outcomes and reports for the provisioning pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from ..errors import ProvisioningError

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..request import ProvisioningRequest, ResolvedPaths


class PipelineState(str, Enum):
    """Position of a run in the provisioning state machine."""

    NOT_STARTED = "not-started"
    VALIDATING = "validating"
    SCAFFOLDING = "scaffolding"
    PERMISSION_FIXING = "permission-fixing"
    ENV_CONFIGURING = "env-configuring"
    DATABASE_PROVISIONING = "database-provisioning"
    HOSTS_UPDATING = "hosts-updating"
    CERT_PROVISIONING = "cert-provisioning"
    VHOST_PUBLISHING = "vhost-publishing"
    SERVICE_RELOADING = "service-reloading"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` for ``DONE`` and ``ABORTED``."""
        return self in {PipelineState.DONE, PipelineState.ABORTED}


# Fixed execution order; each state maps to exactly one step executor.
STEP_ORDER: tuple[PipelineState, ...] = (
    PipelineState.SCAFFOLDING,
    PipelineState.PERMISSION_FIXING,
    PipelineState.ENV_CONFIGURING,
    PipelineState.DATABASE_PROVISIONING,
    PipelineState.HOSTS_UPDATING,
    PipelineState.CERT_PROVISIONING,
    PipelineState.VHOST_PUBLISHING,
    PipelineState.SERVICE_RELOADING,
)


class StepStatus(str, Enum):
    """Tri-state result of one step."""

    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Tagged result of one step: skipped (with reason), applied, or failed."""

    step: str
    status: StepStatus
    detail: str | None = None
    error: ProvisioningError | None = None

    @classmethod
    def skipped(cls, step: str, reason: str) -> StepOutcome:
        """Return an outcome for a step whose effect was already in place."""
        return cls(step=step, status=StepStatus.SKIPPED, detail=reason)

    @classmethod
    def applied(cls, step: str, detail: str | None = None) -> StepOutcome:
        """Return an outcome for a step that changed the system."""
        return cls(step=step, status=StepStatus.APPLIED, detail=detail)

    @classmethod
    def failed(cls, step: str, error: ProvisioningError) -> StepOutcome:
        """Return an outcome for a step that aborted the run."""
        return cls(step=step, status=StepStatus.FAILED, detail=error.message, error=error)

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the step failed."""
        return self.status is StepStatus.FAILED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {
            "step": self.step,
            "status": self.status.value,
            "detail": self.detail,
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass(frozen=True, slots=True)
class StepContext:
    """Read-only inputs handed to every step executor."""

    request: ProvisioningRequest
    paths: ResolvedPaths
    config: AppConfig


class StepExecutor(Protocol):
    """One idempotent unit of system mutation."""

    name: str
    state: PipelineState

    def execute(self, context: StepContext) -> StepOutcome:
        """Apply the step, or report why it was skipped."""


class Validator(Protocol):
    """Precondition checks run before any step executes."""

    def validate(self, request: ProvisioningRequest, paths: ResolvedPaths) -> None:
        """Raise :class:`ProvisioningError` when a precondition is unmet."""


@dataclass(frozen=True, slots=True)
class PipelineReport:
    """Terminal state and per-step outcomes of one run."""

    state: PipelineState
    outcomes: tuple[StepOutcome, ...]
    request: ProvisioningRequest
    paths: ResolvedPaths

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the run reached ``DONE``."""
        return self.state is PipelineState.DONE

    @property
    def failure(self) -> StepOutcome | None:
        """Return the failed outcome that aborted the run, if any."""
        for outcome in self.outcomes:
            if outcome.is_failure:
                return outcome
        return None

    @property
    def changed(self) -> int:
        """Return the number of steps that changed the system."""
        return sum(1 for outcome in self.outcomes if outcome.status is StepStatus.APPLIED)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "state": self.state.value,
            "succeeded": self.succeeded,
            "request": self.request.to_dict(),
            "paths": self.paths.to_dict(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }
