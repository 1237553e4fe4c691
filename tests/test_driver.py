import asyncio
import copy
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai

from nexa_agent.client import OpenAIModelClient, ScriptedModelClient
from nexa_agent.config import AgentConfig
from nexa_agent.driver import (
    AUTH_FAILED_MESSAGE,
    TRANSIENT_FAILURE_MESSAGE,
    Conversation,
    ConversationDriver,
    OutcomeKind,
    classify_error,
)
from nexa_agent.engine import RecordingScheduler
from nexa_agent.errors import AuthError, TransientError
from nexa_agent.models import (
    AgentStatus,
    ChatSession,
    FunctionCall,
    FunctionResponse,
    Message,
    ModelResponse,
    Role,
    RunStatus,
    StepStatus,
)
from nexa_agent.observer import RecordingObserver
from nexa_agent.sessions import SessionStore

IDLE, PLANNING, EXECUTING = AgentStatus.IDLE, AgentStatus.PLANNING, AgentStatus.EXECUTING


class GateScheduler:
    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def sleep(self, seconds: float) -> None:
        self.entered.set()
        await self.gate.wait()


def _driver(script, fallback=None, **kwargs):
    client = ScriptedModelClient(script, fallback=fallback, title=kwargs.pop("title", "Test Title"))
    kwargs.setdefault("scheduler", RecordingScheduler())
    kwargs.setdefault("observer", RecordingObserver())
    return client, ConversationDriver(client, **kwargs)


def _call(name, **args):
    return FunctionCall(name=name, args=args)


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


def test_text_only_turn():
    client, driver = _driver([ModelResponse(text="Paris.")])
    conversation = Conversation()

    outcome = driver.submit_sync(conversation, "Capital of France?")

    assert outcome.ok
    assert outcome.transitions == [IDLE, PLANNING, IDLE]
    assert outcome.rounds == 0
    assert [(m.role, m.content) for m in conversation.messages] == [
        (Role.USER, "Capital of France?"),
        (Role.AGENT, "Paris."),
    ]
    assert conversation.plan_snapshot() == []
    assert conversation.status is IDLE
    assert client.sent == ["Capital of France?"]


def test_plan_then_search_turn():
    script = [
        ModelResponse(
            text="Planning.",
            function_calls=[_call("create_plan", steps=[{"title": "Research", "description": "dig"}])],
        ),
        ModelResponse(function_calls=[_call("web_search", query="vector databases")]),
        ModelResponse(text="Here is what I found."),
    ]
    observer = RecordingObserver()
    client, driver = _driver(script, observer=observer)
    conversation = Conversation()

    outcome = driver.submit_sync(conversation, "Compare vector databases")

    assert outcome.ok
    assert outcome.rounds == 2
    assert outcome.transitions == [IDLE, PLANNING, EXECUTING, IDLE]
    assert [m.content for m in conversation.messages] == [
        "Compare vector databases",
        "Planning.",
        "Here is what I found.",
    ]

    (step,) = conversation.plan_snapshot()
    assert step.title == "Research"
    assert step.status is StepStatus.ACTIVE
    assert len(step.actions) >= 2
    assert conversation.workspace.viewer_open
    assert len(observer.of("viewer")) == 1
    assert conversation.active_tool_call is None

    # Each follow-up carries one wrapped reply per call.
    replies = client.sent[1]
    assert isinstance(replies, list) and len(replies) == 1
    assert isinstance(replies[0], FunctionResponse)
    assert replies[0].name == "create_plan"
    assert replies[0].response == {"result": {"status": "Plan created successfully. Proceed to execute steps."}}
    assert len(client.sent[2][0].response["result"]["results"]) == 3


def test_calls_in_one_response_run_in_order():
    script = [
        ModelResponse(
            function_calls=[
                _call("create_plan", steps=[{"title": "One"}, {"title": "Two"}]),
                _call("write_code", code="print(1)", filename="a.py"),
                _call("nonexistent"),
            ]
        ),
        ModelResponse(text="ok"),
    ]
    client, driver = _driver(script)
    conversation = Conversation()

    outcome = driver.submit_sync(conversation, "go")

    assert outcome.rounds == 1
    replies = client.sent[1]
    assert [r.name for r in replies] == ["create_plan", "write_code", "nonexistent"]
    assert replies[2].response == {"result": {"error": "Unknown tool"}}
    assert [s.status for s in conversation.plan_snapshot()] == [StepStatus.COMPLETED, StepStatus.PENDING]
    assert conversation.files[0].name == "a.py"


def test_status_events_reach_observer():
    observer = RecordingObserver()
    _, driver = _driver([ModelResponse(text="hi")], observer=observer)

    driver.submit_sync(Conversation(), "hello")

    assert observer.of("status") == [(IDLE, PLANNING), (PLANNING, IDLE)]
    assert [m.role for m in observer.of("message")] == [Role.USER, Role.AGENT]


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


def test_empty_input_is_rejected():
    client, driver = _driver([ModelResponse(text="never")])
    conversation = Conversation()

    for text in ("", "   \n"):
        outcome = driver.submit_sync(conversation, text)
        assert outcome.kind is OutcomeKind.REJECTED
        assert outcome.transitions == [IDLE]

    assert conversation.messages == []
    assert client.sent == []
    assert client.sessions == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_auth_failure_then_recovery():
    client, driver = _driver(
        [RuntimeError("API key not valid. Please pass a valid API key."), ModelResponse(text="Back online.")]
    )
    conversation = Conversation()

    first = driver.submit_sync(conversation, "hello")

    assert first.kind is OutcomeKind.AUTH_ERROR
    assert isinstance(first.error, AuthError)
    assert first.transitions == [IDLE, PLANNING, IDLE]
    assert conversation.messages[-1].content == AUTH_FAILED_MESSAGE
    assert conversation.status is IDLE
    assert conversation.model_session is None

    second = driver.submit_sync(conversation, "hello again")

    assert second.ok
    assert conversation.messages[-1].content == "Back online."
    assert len(client.sessions) == 2
    # The fresh session is seeded with everything said so far.
    assert [h.text for h in client.sessions[1]["history"]] == ["hello", AUTH_FAILED_MESSAGE]


def test_requested_entity_not_found_counts_as_auth():
    _, driver = _driver([RuntimeError("404 Requested entity was not found.")])
    outcome = driver.submit_sync(Conversation(), "hello")
    assert outcome.kind is OutcomeKind.AUTH_ERROR


def test_transient_failure_mid_turn():
    script = [
        ModelResponse(function_calls=[_call("create_plan", steps=[{"title": "Only"}])]),
        ConnectionError("connection reset"),
    ]
    client, driver = _driver(script)
    conversation = Conversation()

    outcome = driver.submit_sync(conversation, "do it")

    assert outcome.kind is OutcomeKind.TRANSIENT_ERROR
    assert isinstance(outcome.error, TransientError)
    assert outcome.transitions == [IDLE, PLANNING, EXECUTING, IDLE]
    assert conversation.messages[-1].content == TRANSIENT_FAILURE_MESSAGE
    assert sum(1 for m in conversation.messages if m.role is Role.AGENT) == 1
    assert conversation.model_session is not None
    assert len(conversation.plan_snapshot()) == 1


def test_round_budget_ends_turn():
    looping = ModelResponse(function_calls=[_call("web_search", query="again")])
    client, driver = _driver([], fallback=looping, config=AgentConfig(max_rounds=3))
    conversation = Conversation()

    outcome = driver.submit_sync(conversation, "loop forever")

    assert outcome.kind is OutcomeKind.BUDGET_EXCEEDED
    assert outcome.rounds == 3
    assert len(client.sent) == 4
    assert conversation.status is IDLE
    assert conversation.messages[-1].role is Role.AGENT
    assert "3 tool round(s)" in conversation.messages[-1].content


def test_classify_error():
    request = httpx.Request("POST", "https://example.test/v1/chat/completions")
    denied = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=request), body=None
    )

    assert isinstance(classify_error(denied), AuthError)
    assert isinstance(classify_error(ValueError("missing api_key")), AuthError)
    assert isinstance(classify_error(TimeoutError()), TransientError)
    already = TransientError("x")
    assert classify_error(already) is already


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def _slow_script():
    return [
        ModelResponse(
            function_calls=[
                _call("create_plan", steps=[{"title": "Search"}]),
                _call("web_search", query="slow"),
            ]
        ),
        ModelResponse(text="done"),
    ]


def test_busy_submission_is_refused():
    async def scenario():
        scheduler = GateScheduler()
        client, driver = _driver(_slow_script(), scheduler=scheduler)
        conversation = Conversation()

        first = asyncio.create_task(driver.submit(conversation, "first"))
        await scheduler.entered.wait()
        assert conversation.busy
        assert conversation.status is EXECUTING

        refused = await driver.submit(conversation, "second")
        scheduler.gate.set()
        return conversation, refused, await first

    conversation, refused, outcome = asyncio.run(scenario())

    assert refused.kind is OutcomeKind.BUSY
    assert outcome.ok
    assert "second" not in [m.content for m in conversation.messages]
    assert conversation.messages[-1].content == "done"


def test_cancel_settles_running_actions():
    async def scenario():
        scheduler = GateScheduler()
        client, driver = _driver(_slow_script(), scheduler=scheduler)
        conversation = Conversation()

        task = asyncio.create_task(driver.submit(conversation, "search slowly"))
        await scheduler.entered.wait()
        assert driver.cancel(conversation)
        return driver, conversation, await task

    driver, conversation, outcome = asyncio.run(scenario())

    assert outcome.kind is OutcomeKind.CANCELLED
    assert outcome.transitions == [IDLE, PLANNING, EXECUTING, IDLE]
    assert conversation.status is IDLE
    assert not conversation.busy
    assert conversation.active_tool_call is None
    actions = conversation.plan_snapshot()[0].actions
    assert actions and all(a.status is not RunStatus.RUNNING for a in actions)
    assert actions[0].status is RunStatus.FAILED
    assert driver.cancel(conversation) is False


def test_conversations_are_independent():
    script = [
        ModelResponse(function_calls=[_call("create_plan", steps=[{"title": "A"}])]),
        ModelResponse(text="planned"),
        ModelResponse(text="plain answer"),
    ]
    _, driver = _driver(script)
    planned, plain = Conversation(), Conversation()

    driver.submit_sync(planned, "make a plan")
    driver.submit_sync(plain, "just answer")

    assert len(planned.plan_snapshot()) == 1
    assert plain.plan_snapshot() == []
    assert plain.model_session is not planned.model_session


# ---------------------------------------------------------------------------
# Sessions and titles
# ---------------------------------------------------------------------------


def test_resumed_session_seeds_history():
    session = ChatSession(
        messages=[
            Message(role=Role.USER, content="earlier question"),
            Message(role=Role.AGENT, content="earlier answer"),
        ]
    )
    client, driver = _driver([ModelResponse(text="follow-up answer")])
    conversation = Conversation(session)

    driver.submit_sync(conversation, "follow-up")

    history = client.sessions[0]["history"]
    assert [(h.role, h.text) for h in history] == [
        ("user", "earlier question"),
        ("model", "earlier answer"),
    ]
    assert conversation.title_task is None
    assert len(conversation.messages) == 4


def test_first_turn_names_and_persists_session(tmp_path):
    store = SessionStore(tmp_path / "sessions.json")

    async def scenario():
        _, driver = _driver([ModelResponse(text="hi there")], store=store, title='"Friendly Greeting"')
        conversation = Conversation()
        await driver.submit(conversation, "hi")
        await conversation.title_task
        return conversation

    conversation = asyncio.run(scenario())

    assert conversation.session.name == "Friendly Greeting"
    reloaded = SessionStore(tmp_path / "sessions.json")
    saved = reloaded.get(conversation.session.id)
    assert saved.name == "Friendly Greeting"
    assert [m.content for m in saved.messages] == ["hi", "hi there"]


# ---------------------------------------------------------------------------
# OpenAI adapter across failed turns
# ---------------------------------------------------------------------------


class FakeCompletions:
    """Replays chat-completions replies and keeps a copy of every tool-enabled request."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create(self, **kwargs):
        if "tools" not in kwargs:
            # Title generation.
            return _completion(content="Some Title")
        self.requests.append(copy.deepcopy(kwargs["messages"]))
        return self.replies.pop(0)


def _completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _search_call(call_id):
    function = SimpleNamespace(name="web_search", arguments='{"query": "again"}')
    return _completion(tool_calls=[SimpleNamespace(id=call_id, function=function)])


def _openai_client(completions):
    sdk = MagicMock()
    sdk.chat.completions.create.side_effect = completions.create
    return OpenAIModelClient(client=sdk)


def _unanswered(messages):
    issued = [c["id"] for m in messages if m["role"] == "assistant" for c in m.get("tool_calls", [])]
    answered = {m["tool_call_id"] for m in messages if m["role"] == "tool"}
    return [call_id for call_id in issued if call_id not in answered]


def test_turn_after_budget_exhaustion_starts_clean():
    completions = FakeCompletions([_search_call("c1"), _search_call("c2"), _completion(content="Fresh start.")])
    driver = ConversationDriver(
        _openai_client(completions),
        AgentConfig(max_rounds=1),
        scheduler=RecordingScheduler(),
    )
    conversation = Conversation()

    first = driver.submit_sync(conversation, "loop")
    assert first.kind is OutcomeKind.BUDGET_EXCEEDED
    assert conversation.model_session is None

    second = driver.submit_sync(conversation, "again")

    assert second.ok
    assert conversation.messages[-1].content == "Fresh start."
    last_request = completions.requests[-1]
    assert _unanswered(last_request) == []
    assert last_request[-1] == {"role": "user", "content": "again"}
    assert [m["content"] for m in last_request[1:3]] == ["loop", first.messages[-1].content]


def test_turn_after_cancel_starts_clean():
    completions = FakeCompletions([_search_call("c1"), _completion(content="Answer.")])

    async def scenario():
        scheduler = GateScheduler()
        driver = ConversationDriver(_openai_client(completions), scheduler=scheduler)
        conversation = Conversation()

        task = asyncio.create_task(driver.submit(conversation, "search"))
        await scheduler.entered.wait()
        driver.cancel(conversation)
        cancelled = await task
        follow_up = await driver.submit(conversation, "next question")
        return conversation, cancelled, follow_up

    conversation, cancelled, follow_up = asyncio.run(scenario())

    assert cancelled.kind is OutcomeKind.CANCELLED
    assert follow_up.ok
    assert conversation.messages[-1].content == "Answer."
    assert _unanswered(completions.requests[-1]) == []
    assert completions.requests[-1][-1] == {"role": "user", "content": "next question"}
