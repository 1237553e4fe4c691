import asyncio
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from nexa_agent.client import (
    DEFAULT_TITLE,
    OpenAIChatSession,
    ScriptedModelClient,
    demo_script,
    generate_chat_title,
)
from nexa_agent.models import FunctionCall, FunctionResponse, HistoryEntry, ModelResponse


def _completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _session(mock_client, history=()):
    return OpenAIChatSession(mock_client, "test/model", "be terse", 0.3, list(history))


# ---------------------------------------------------------------------------
# OpenAIChatSession
# ---------------------------------------------------------------------------


def test_session_seeds_system_prompt_and_history():
    session = _session(
        MagicMock(),
        [HistoryEntry(role="user", text="q"), HistoryEntry(role="model", text="a")],
    )
    assert session.messages == [
        {"role": "system", "content": "be terse"},
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
    ]


def test_send_text_returns_text_response():
    mock_client = MagicMock()
    mock_client.chat.completions.create.return_value = _completion(content="  Hello.  ")
    session = _session(mock_client)

    response = session.send_turn("hi")

    assert response == ModelResponse(text="Hello.", function_calls=[])
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test/model"
    assert kwargs["temperature"] == 0.3
    assert {t["function"]["name"] for t in kwargs["tools"]} == {
        "create_plan",
        "web_search",
        "visit_page",
        "write_code",
    }
    assert session.messages[-2] == {"role": "user", "content": "hi"}


def test_tool_calls_round_trip_through_tool_messages():
    mock_client = MagicMock()
    mock_client.chat.completions.create.side_effect = [
        _completion(
            tool_calls=[
                _tool_call("call_a", "web_search", json.dumps({"query": "x"})),
                _tool_call("call_b", "visit_page", "{not json"),
            ]
        ),
        _completion(content="done"),
    ]
    session = _session(mock_client)

    first = session.send_turn("search")

    assert first.text is None
    assert first.function_calls == [
        FunctionCall(name="web_search", args={"query": "x"}, id="call_a"),
        FunctionCall(name="visit_page", args={}, id="call_b"),
    ]
    assistant = session.messages[-1]
    assert [c["id"] for c in assistant["tool_calls"]] == ["call_a", "call_b"]

    # Replies without ids fall back to the pending call ids, in order.
    session.send_turn(
        [
            FunctionResponse(name="web_search", response={"result": {"results": []}}),
            FunctionResponse(name="visit_page", response={"result": {"error": "x"}}),
        ]
    )

    tool_messages = [m for m in session.messages if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["call_a", "call_b"]
    assert json.loads(tool_messages[0]["content"]) == {"result": {"results": []}}


def test_client_errors_propagate():
    mock_client = MagicMock()
    mock_client.chat.completions.create.side_effect = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        _session(mock_client).send_turn("hi")


# ---------------------------------------------------------------------------
# ScriptedModelClient
# ---------------------------------------------------------------------------


def test_scripted_client_replays_then_falls_back():
    fallback = ModelResponse(text="fallback")
    client = ScriptedModelClient([ModelResponse(text="one"), ValueError("scripted")], fallback=fallback)
    session = client.create_session("m", "sys", 0.1, [])

    assert session.send_turn("a").text == "one"
    with pytest.raises(ValueError):
        session.send_turn("b")
    assert session.send_turn("c") is fallback
    assert client.sent == ["a", "b", "c"]
    assert client.sessions[0]["model"] == "m"


def test_demo_script_uses_registered_tools():
    names = [c.name for r in demo_script() for c in r.function_calls]
    assert names == ["create_plan", "web_search", "visit_page", "write_code"]
    assert demo_script()[-1].function_calls == []


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------


def test_generate_chat_title_strips_quotes():
    client = ScriptedModelClient(title='  "Python Data Scraper" ')
    assert asyncio.run(generate_chat_title(client, "scrape", "m")) == "Python Data Scraper"


def test_generate_chat_title_falls_back_on_error():
    client = MagicMock()
    client.generate_text.side_effect = RuntimeError("quota")
    assert asyncio.run(generate_chat_title(client, "hi", "m")) == DEFAULT_TITLE


def test_generate_chat_title_falls_back_on_blank():
    client = ScriptedModelClient(title='""')
    assert asyncio.run(generate_chat_title(client, "hi", "m")) == DEFAULT_TITLE


def test_title_prompt_embeds_user_prompt():
    client = MagicMock()
    client.generate_text.return_value = "Greeting"
    asyncio.run(generate_chat_title(client, "Hi there", "some/model"))
    prompt, model = client.generate_text.call_args.args
    assert 'User Prompt: "Hi there"' in prompt
    assert model == "some/model"
