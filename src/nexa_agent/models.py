# models.py
# Data contracts for the agent core.
# No business logic lives here, only schema and validation.

import secrets
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return secrets.token_hex(6)


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------


class AgentStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    WAITING_USER = "waiting_user"


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


class ActionType(str, Enum):
    COMMAND = "command"
    FILE = "file"
    INFO = "info"
    OUTPUT = "output"


class RunStatus(str, Enum):
    """Status shared by plan actions and tool calls."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """A single entry in the conversation log. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: int = Field(default_factory=now_ms)


class ChatSession(BaseModel):
    """Persisted conversation. Naming and storage belong to the session store."""

    id: str = Field(default_factory=new_id)
    name: str = "New Task"
    messages: list[Message] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    is_favorite: bool = False


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class PlanAction(BaseModel):
    """Append-only log entry attached to the step active when it was created."""

    id: str = Field(default_factory=new_id)
    type: ActionType
    content: str
    status: RunStatus
    timestamp: int = Field(default_factory=now_ms)


class PlanStep(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    actions: list[PlanAction] = Field(default_factory=list)


class StepSpec(BaseModel):
    """One entry of the create_plan `steps` argument."""

    title: str = Field(..., min_length=1, description="Short title of the step.")
    description: str = Field(default="", description="Detailed description.")


# ---------------------------------------------------------------------------
# Tools and workspace
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    """Transient record of one tool invocation."""

    id: str = Field(default_factory=new_id)
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    result: Any = None


class FileArtifact(BaseModel):
    name: str
    language: str
    content: str


class WebContent(BaseModel):
    title: str
    url: str
    content: str


# ---------------------------------------------------------------------------
# Model boundary
# ---------------------------------------------------------------------------


class FunctionCall(BaseModel):
    """A model-issued request to invoke one tool: {name, args}."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = Field(default=None, description="Provider call id, when the provider has one.")


class FunctionResponse(BaseModel):
    """The reply to one FunctionCall: {name, response: {result: ...}}."""

    name: str
    response: dict[str, Any]
    id: str | None = None

    @classmethod
    def wrap(cls, call: FunctionCall, result: Any) -> "FunctionResponse":
        return cls(name=call.name, response={"result": result}, id=call.id)


class ModelResponse(BaseModel):
    text: str | None = None
    function_calls: list[FunctionCall] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    """Prior message handed to a new model session. Role is `user` or `model`."""

    role: str
    text: str

    @classmethod
    def from_message(cls, message: Message) -> "HistoryEntry":
        return cls(role="model" if message.role == Role.AGENT else "user", text=message.content)
