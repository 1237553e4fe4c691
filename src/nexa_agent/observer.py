# observer.py
# Presentation hooks. The driver and the engine report progress here and
# never format output themselves; display.ConsoleObserver renders it.

from nexa_agent.models import AgentStatus, Message, PlanAction, PlanStep, ToolCall


class TurnObserver:
    """No-op base. Subclass and override the hooks you care about."""

    def status_changed(self, old: AgentStatus, new: AgentStatus) -> None:
        pass

    def message_appended(self, message: Message) -> None:
        pass

    def plan_replaced(self, steps: list[PlanStep]) -> None:
        pass

    def action_logged(self, step_index: int, action: PlanAction) -> None:
        pass

    def step_finished(self, step_index: int, steps: list[PlanStep]) -> None:
        pass

    def tool_started(self, call: ToolCall) -> None:
        pass

    def tool_finished(self, call: ToolCall) -> None:
        pass

    def viewer_revealed(self) -> None:
        pass


class RecordingObserver(TurnObserver):
    """Keeps every event in order. Handy for tests and replay."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def status_changed(self, old: AgentStatus, new: AgentStatus) -> None:
        self.events.append(("status", (old, new)))

    def message_appended(self, message: Message) -> None:
        self.events.append(("message", message))

    def plan_replaced(self, steps: list[PlanStep]) -> None:
        self.events.append(("plan", steps))

    def action_logged(self, step_index: int, action: PlanAction) -> None:
        self.events.append(("action", (step_index, action)))

    def step_finished(self, step_index: int, steps: list[PlanStep]) -> None:
        self.events.append(("step", step_index))

    def tool_started(self, call: ToolCall) -> None:
        self.events.append(("tool_started", call))

    def tool_finished(self, call: ToolCall) -> None:
        self.events.append(("tool_finished", call))

    def viewer_revealed(self) -> None:
        self.events.append(("viewer", None))

    def of(self, kind: str) -> list[object]:
        return [payload for name, payload in self.events if name == kind]
