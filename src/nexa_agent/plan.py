# plan.py
# PlanTracker: state machine over the ordered plan steps and their action logs.
#
# Steps are always laid out as
#
#     [completed|failed ...] [active?] [pending ...]
#
# so the tracker only needs a cursor to know which step is eligible. The
# cursor is an explicit tagged state; step statuses are written exclusively
# by the transitions below, which keeps "two active steps" unrepresentable.

import logging
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError

from nexa_agent.errors import InvalidPlan, NoEligibleStep
from nexa_agent.models import ActionType, PlanAction, PlanStep, RunStatus, StepSpec, StepStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tagged cursor state
# ---------------------------------------------------------------------------


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class NoPlan(_State):
    """No plan installed."""


class AwaitingStep(_State):
    """A plan exists and nothing is active; `next_index` is the first pending step."""

    next_index: int


class HasActivePlan(_State):
    step_index: int


class PlanExhausted(_State):
    """Every step is completed or failed."""


PlanState = NoPlan | AwaitingStep | HasActivePlan | PlanExhausted


# ---------------------------------------------------------------------------
# Mutation results
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    APPLIED = "applied"
    NO_ELIGIBLE_STEP = "no_eligible_step"


class AppendResult(BaseModel):
    outcome: Outcome
    action: PlanAction | None = None
    step_index: int | None = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED

    def unwrap(self) -> PlanAction:
        """Return the appended action, raising NoEligibleStep for a no-op."""
        if self.action is None:
            raise NoEligibleStep("No active or pending step to attach the action to.")
        return self.action


class CompleteResult(BaseModel):
    outcome: Outcome
    step_index: int | None = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class PlanTracker:
    def __init__(self) -> None:
        self._steps: list[PlanStep] = []
        self._state: PlanState = NoPlan()

    @property
    def state(self) -> PlanState:
        return self._state

    @property
    def active_index(self) -> int | None:
        if isinstance(self._state, HasActivePlan):
            return self._state.step_index
        return None

    def __len__(self) -> int:
        return len(self._steps)

    def replace_plan(self, steps: Iterable[Any]) -> list[PlanStep]:
        """
        Discard the current plan and install `steps`, all pending.

        Each entry is a mapping (or StepSpec) with a non-empty `title` and an
        optional `description`. Raises InvalidPlan, leaving the existing plan
        untouched, if the list is empty or any entry lacks a title.
        """
        specs: list[StepSpec] = []
        for index, raw in enumerate(steps or []):
            try:
                spec = raw if isinstance(raw, StepSpec) else StepSpec.model_validate(raw)
            except ValidationError as exc:
                raise InvalidPlan(f"Step {index + 1} is malformed: {exc.errors()[0]['msg']}") from exc
            if not spec.title.strip():
                raise InvalidPlan(f"Step {index + 1} has no title.")
            specs.append(spec)

        if not specs:
            raise InvalidPlan("A plan needs at least one step.")

        self._steps = [PlanStep(title=s.title, description=s.description) for s in specs]
        self._state = AwaitingStep(next_index=0)
        logger.info("plan installed with %d step(s)", len(self._steps))
        return self.snapshot()

    def append_action(
        self,
        action_type: ActionType,
        content: str,
        status: RunStatus = RunStatus.RUNNING,
    ) -> AppendResult:
        """
        Attach a new action to the active step, promoting the first pending
        step to active when nothing is active yet.
        """
        state = self._state
        if isinstance(state, AwaitingStep):
            self._steps[state.next_index].status = StepStatus.ACTIVE
            state = self._state = HasActivePlan(step_index=state.next_index)
            logger.debug("step %d activated", state.step_index)

        if not isinstance(state, HasActivePlan):
            logger.debug("append_action ignored in state %s", state.__class__.__name__)
            return AppendResult(outcome=Outcome.NO_ELIGIBLE_STEP)

        action = PlanAction(type=action_type, content=content, status=status)
        self._steps[state.step_index].actions.append(action)
        return AppendResult(outcome=Outcome.APPLIED, action=action.model_copy(), step_index=state.step_index)

    def settle_action(self, action_id: str, status: RunStatus) -> bool:
        """
        Move a running action to `status`. Returns False if the action is
        unknown or already settled.
        """
        if status is RunStatus.RUNNING:
            raise ValueError("An action can only be settled to completed or failed.")

        for step in self._steps:
            for action in step.actions:
                if action.id == action_id:
                    if action.status is not RunStatus.RUNNING:
                        return False
                    action.status = status
                    return True
        return False

    def complete_active_step(self) -> CompleteResult:
        return self._finish_active(StepStatus.COMPLETED)

    def fail_active_step(self) -> CompleteResult:
        return self._finish_active(StepStatus.FAILED)

    def _finish_active(self, status: StepStatus) -> CompleteResult:
        state = self._state
        if not isinstance(state, HasActivePlan):
            return CompleteResult(outcome=Outcome.NO_ELIGIBLE_STEP)

        index = state.step_index
        self._steps[index].status = status
        if index + 1 < len(self._steps):
            self._state = AwaitingStep(next_index=index + 1)
        else:
            self._state = PlanExhausted()
        logger.info("step %d %s", index, status.value)
        return CompleteResult(outcome=Outcome.APPLIED, step_index=index)

    def snapshot(self) -> list[PlanStep]:
        """Deep copy of the plan for presentation. Mutating it has no effect."""
        return [step.model_copy(deep=True) for step in self._steps]
