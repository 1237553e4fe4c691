# driver.py
# ConversationDriver owns the turn loop.
#
# Control flow for one submission:
#   user text → model → {text, function calls}
#   → engine executes each call in listed order (mutating the plan)
#   → all results go back to the model as one follow-up → repeat
#   → no more calls: turn ends in IDLE
#
# The driver is the only component that talks to the model client. Every
# call takes the Conversation explicitly; there is no module-level state, so
# independent conversations never share a plan, workspace or model session.

import asyncio
import logging
from enum import Enum

import openai
from pydantic import BaseModel, ConfigDict, Field

from nexa_agent.client import ModelClient, ModelSession, generate_chat_title
from nexa_agent.config import AgentConfig
from nexa_agent.engine import AsyncioScheduler, RecordingScheduler, ToolContext, ToolExecutionEngine
from nexa_agent.errors import AuthError, ModelClientError, NexaError, TransientError, TurnBudgetExceeded
from nexa_agent.models import (
    AgentStatus,
    ChatSession,
    FileArtifact,
    FunctionResponse,
    HistoryEntry,
    Message,
    ModelResponse,
    PlanStep,
    Role,
    ToolCall,
    WebContent,
)
from nexa_agent.observer import TurnObserver
from nexa_agent.plan import PlanTracker
from nexa_agent.sessions import SessionStore
from nexa_agent.workspace import Workspace

logger = logging.getLogger(__name__)

AUTH_FAILED_MESSAGE = "Authentication failed. Please select a valid API Key to continue."
TRANSIENT_FAILURE_MESSAGE = (
    "I encountered an error while processing your request. Please check your API Key or try again."
)
BUDGET_MESSAGE = (
    "I stopped after {rounds} tool round(s) without reaching a final answer. "
    "Please refine the request or try again."
)

# Substrings that mark a model-client failure as a credential problem.
AUTH_MARKERS = ("api key", "api_key", "requested entity was not found")


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def classify_error(exc: BaseException) -> ModelClientError:
    """Map any model-client failure onto AuthError or TransientError."""
    if isinstance(exc, ModelClientError):
        return exc
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(str(exc), cause=exc)

    text = (str(exc) or repr(exc)).lower()
    if any(marker in text for marker in AUTH_MARKERS):
        return AuthError(str(exc), cause=exc)
    return TransientError(str(exc) or type(exc).__name__, cause=exc)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    BUSY = "busy"
    AUTH_ERROR = "auth_error"
    TRANSIENT_ERROR = "transient_error"
    BUDGET_EXCEEDED = "budget_exceeded"
    CANCELLED = "cancelled"


class TurnOutcome(BaseModel):
    """What one submit() did: how it ended, the statuses it passed through,
    the messages it appended and, for failures, the classified error."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: OutcomeKind
    rounds: int = 0
    transitions: list[AgentStatus] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    error: NexaError | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED


class _TurnRecord:
    def __init__(self, start: AgentStatus) -> None:
        self.transitions: list[AgentStatus] = [start]
        self.messages: list[Message] = []
        self.rounds = 0

    def outcome(self, kind: OutcomeKind, error: NexaError | None = None) -> TurnOutcome:
        return TurnOutcome(
            kind=kind,
            rounds=self.rounds,
            transitions=list(self.transitions),
            messages=list(self.messages),
            error=error,
        )


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class Conversation:
    """
    Everything one conversation owns: the chat session and its message log,
    the model session, the plan tracker and the workspace.

    Switching to another session means building a new Conversation, which
    starts with an empty plan and workspace.
    """

    def __init__(self, session: ChatSession | None = None) -> None:
        self.session = session or ChatSession()
        self.plan = PlanTracker()
        self.workspace = Workspace()
        self.status = AgentStatus.IDLE
        self.model_session: ModelSession | None = None
        self.title_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._cancel_requested = False

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # Read-only views for presentation.

    @property
    def messages(self) -> list[Message]:
        return list(self.session.messages)

    def plan_snapshot(self) -> list[PlanStep]:
        return self.plan.snapshot()

    @property
    def active_tool_call(self) -> ToolCall | None:
        call = self.workspace.active_tool_call
        return call.model_copy(deep=True) if call is not None else None

    @property
    def last_web_content(self) -> WebContent | None:
        return self.workspace.last_web_content

    @property
    def files(self) -> list[FileArtifact]:
        return list(self.workspace.files)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class ConversationDriver:
    def __init__(
        self,
        client: ModelClient,
        config: AgentConfig | None = None,
        engine: ToolExecutionEngine | None = None,
        scheduler: AsyncioScheduler | RecordingScheduler | None = None,
        observer: TurnObserver | None = None,
        store: SessionStore | None = None,
    ) -> None:
        self._client = client
        self._config = config or AgentConfig()
        self._engine = engine or ToolExecutionEngine()
        self._scheduler = scheduler or AsyncioScheduler(self._config.latency_scale)
        self._observer = observer or TurnObserver()
        self._store = store

    @property
    def config(self) -> AgentConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, conversation: Conversation, user_text: str) -> TurnOutcome:
        """
        Run one full turn for `user_text`, including every nested tool round.

        Empty input is rejected and a submission while another turn is in
        flight is refused; neither changes any state. Every other path ends
        with the conversation back in IDLE.
        """
        if not user_text or not user_text.strip():
            return TurnOutcome(kind=OutcomeKind.REJECTED, transitions=[conversation.status])
        if conversation.busy:
            logger.warning("submission refused: a turn is already in flight")
            return TurnOutcome(kind=OutcomeKind.BUSY, transitions=[conversation.status])

        record = _TurnRecord(conversation.status)
        conversation._cancel_requested = False
        task = asyncio.create_task(self._run_turn(conversation, user_text, record))
        conversation._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            if not conversation._cancel_requested:
                raise
            logger.info("turn cancelled after %d round(s)", record.rounds)
            return record.outcome(OutcomeKind.CANCELLED)
        finally:
            conversation._inflight = None
            conversation._cancel_requested = False

    def submit_sync(self, conversation: Conversation, user_text: str) -> TurnOutcome:
        return asyncio.run(self.submit(conversation, user_text))

    def cancel(self, conversation: Conversation) -> bool:
        """Cancel the conversation's in-flight turn. Returns False if there is none."""
        if not conversation.busy:
            return False
        conversation._cancel_requested = True
        conversation._inflight.cancel()
        return True

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _run_turn(self, conversation: Conversation, user_text: str, record: _TurnRecord) -> TurnOutcome:
        is_new = not conversation.session.messages
        history = [HistoryEntry.from_message(m) for m in conversation.session.messages]

        self._append(conversation, record, Role.USER, user_text)
        if is_new:
            conversation.title_task = asyncio.create_task(self._name_session(conversation, user_text))
        self._transition(conversation, record, AgentStatus.PLANNING)

        context = ToolContext(conversation.plan, conversation.workspace, self._scheduler, self._observer)
        kind = OutcomeKind.COMPLETED
        error: NexaError | None = None

        try:
            session = self._ensure_session(conversation, history)
            response = await asyncio.to_thread(session.send_turn, user_text)
            self._append_text(conversation, record, response)

            while response.function_calls:
                if record.rounds >= self._config.max_rounds:
                    raise TurnBudgetExceeded(self._config.max_rounds)
                self._transition(conversation, record, AgentStatus.EXECUTING)

                replies: list[FunctionResponse] = []
                for call in response.function_calls:
                    result = await self._engine.execute(call.name, call.args, context)
                    replies.append(FunctionResponse.wrap(call, result.payload))
                record.rounds += 1

                response = await asyncio.to_thread(session.send_turn, replies)
                self._append_text(conversation, record, response)

        except TurnBudgetExceeded as exc:
            logger.warning("%s", exc)
            kind, error = OutcomeKind.BUDGET_EXCEEDED, exc
            # The session still holds the unanswered calls; rebuild from the log next turn.
            conversation.model_session = None
            self._append(conversation, record, Role.AGENT, BUDGET_MESSAGE.format(rounds=exc.max_rounds))
        except asyncio.CancelledError:
            # Pending calls or an orphaned worker thread may still touch this session.
            conversation.model_session = None
            self._finish(conversation, record)
            raise
        except Exception as exc:  # noqa: BLE001
            error = classify_error(exc)
            if isinstance(error, AuthError):
                logger.error("model client rejected credentials: %s", exc)
                kind = OutcomeKind.AUTH_ERROR
                # Force a fresh session once the user fixes the key.
                conversation.model_session = None
                self._append(conversation, record, Role.AGENT, AUTH_FAILED_MESSAGE)
            else:
                logger.exception("error in agent loop")
                kind = OutcomeKind.TRANSIENT_ERROR
                self._append(conversation, record, Role.AGENT, TRANSIENT_FAILURE_MESSAGE)

        self._finish(conversation, record)
        return record.outcome(kind, error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_session(self, conversation: Conversation, history: list[HistoryEntry]) -> ModelSession:
        if conversation.model_session is None:
            conversation.model_session = self._client.create_session(
                self._config.resolved_model,
                self._config.system_instruction,
                self._config.temperature,
                history,
            )
        return conversation.model_session

    def _transition(self, conversation: Conversation, record: _TurnRecord, status: AgentStatus) -> None:
        old = conversation.status
        if old is status:
            return
        conversation.status = status
        record.transitions.append(status)
        self._observer.status_changed(old, status)

    def _append(self, conversation: Conversation, record: _TurnRecord, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        conversation.session.messages.append(message)
        record.messages.append(message)
        self._observer.message_appended(message)
        return message

    def _append_text(self, conversation: Conversation, record: _TurnRecord, response: ModelResponse) -> None:
        if response.text:
            self._append(conversation, record, Role.AGENT, response.text)

    def _finish(self, conversation: Conversation, record: _TurnRecord) -> None:
        self._transition(conversation, record, AgentStatus.IDLE)
        conversation.workspace.active_tool_call = None
        self._persist(conversation)

    def _persist(self, conversation: Conversation) -> None:
        if self._store is None:
            return
        session = conversation.session
        if self._store.get(session.id) is None:
            self._store.add(session)
        else:
            self._store.update_messages(session.id, session.messages)

    async def _name_session(self, conversation: Conversation, prompt: str) -> str:
        title = await generate_chat_title(self._client, prompt, self._config.resolved_model)
        conversation.session.name = title
        if self._store is not None:
            self._store.rename(conversation.session.id, title)
        return title
