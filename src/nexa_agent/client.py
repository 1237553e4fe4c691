# client.py
# Model-client boundary.
#
#   ModelClient.create_session(model, system_instruction, temperature, history)
#       -> ModelSession
#   ModelSession.send_turn(content) -> ModelResponse{text?, function_calls}
#
# `content` is either raw user text or a list of FunctionResponse, one per
# FunctionCall of the previous response, in the same order. The driver is
# the only caller; it runs these synchronous calls in a worker thread.

import asyncio
import json
import logging
import os
from typing import Any, Iterable, Protocol

from openai import OpenAI

from nexa_agent import registry
from nexa_agent.models import FunctionCall, FunctionResponse, HistoryEntry, ModelResponse

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TITLE = "New Task"

TITLE_PROMPT = """\
Analyze the following user prompt and generate a short, creative, and relevant \
title (max 5 words) for a chat session.

Examples:
- Prompt: "Hi" -> Title: "Greeting"
- Prompt: "Write a python script to scrape data" -> Title: "Python Data Scraper"
- Prompt: "Who is the president of the US?" -> Title: "US President Query"

User Prompt: "{prompt}"

Return ONLY the title text. Do not include quotes.\
"""

TurnContent = str | list[FunctionResponse]


class ModelSession(Protocol):
    def send_turn(self, content: TurnContent) -> ModelResponse: ...


class ModelClient(Protocol):
    def create_session(
        self,
        model: str,
        system_instruction: str,
        temperature: float,
        history: list[HistoryEntry],
    ) -> ModelSession: ...

    def generate_text(self, prompt: str, model: str) -> str: ...


# ---------------------------------------------------------------------------
# OpenAI-compatible adapter
# ---------------------------------------------------------------------------


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw, strict=False)
    except json.JSONDecodeError:
        logger.warning("tool call arguments are not valid JSON: %.120s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIChatSession:
    """Chat-completions session keeping its own message history."""

    def __init__(
        self,
        client: OpenAI,
        model: str,
        system_instruction: str,
        temperature: float,
        history: list[HistoryEntry],
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._tools = registry.function_declarations()
        self._pending_ids: list[str] = []
        self.messages: list[dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        for entry in history:
            role = "assistant" if entry.role == "model" else "user"
            self.messages.append({"role": role, "content": entry.text})

    def send_turn(self, content: TurnContent) -> ModelResponse:
        if isinstance(content, str):
            self.messages.append({"role": "user", "content": content})
        else:
            for index, reply in enumerate(content):
                call_id = reply.id
                if call_id is None and index < len(self._pending_ids):
                    call_id = self._pending_ids[index]
                self.messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id or f"call_{index}",
                        "content": json.dumps(reply.response, ensure_ascii=False),
                    }
                )
        self._pending_ids = []

        response = self._client.chat.completions.create(
            model=self._model,
            messages=self.messages,
            tools=self._tools,
            temperature=self._temperature,
        )
        message = response.choices[0].message

        calls: list[FunctionCall] = []
        raw_calls: list[dict[str, Any]] = []
        for tc in message.tool_calls or []:
            calls.append(
                FunctionCall(name=tc.function.name, args=_parse_arguments(tc.function.arguments), id=tc.id)
            )
            raw_calls.append(
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.function.name, "arguments": tc.function.arguments or "{}"},
                }
            )

        assistant: dict[str, Any] = {"role": "assistant", "content": message.content or ""}
        if raw_calls:
            assistant["tool_calls"] = raw_calls
            self._pending_ids = [c["id"] for c in raw_calls]
        self.messages.append(assistant)

        text = (message.content or "").strip()
        return ModelResponse(text=text or None, function_calls=calls)


class OpenAIModelClient:
    """
    Model client for any OpenAI-compatible endpoint (OpenRouter by default).

    The SDK client is built lazily, so a missing key surfaces on the first
    turn, where the driver reports it as an authentication failure.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = OPENROUTER_BASE_URL,
        client: OpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                base_url=self._base_url,
                api_key=self._api_key or os.getenv("OPENROUTER_API_KEY"),
            )
        return self._client

    def create_session(
        self,
        model: str,
        system_instruction: str,
        temperature: float,
        history: list[HistoryEntry],
    ) -> OpenAIChatSession:
        return OpenAIChatSession(self.client, model, system_instruction, temperature, history)

    def generate_text(self, prompt: str, model: str) -> str:
        response = self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
        )
        return (response.choices[0].message.content or "").strip()


# ---------------------------------------------------------------------------
# Offline scripted client
# ---------------------------------------------------------------------------


class ScriptedSession:
    def __init__(self, owner: "ScriptedModelClient") -> None:
        self._owner = owner

    def send_turn(self, content: TurnContent) -> ModelResponse:
        return self._owner.next_response(content)


class ScriptedModelClient:
    """
    Replays a fixed list of responses, one per send_turn, shared across
    sessions. An Exception in the script is raised instead of returned. Once
    the script runs out every turn gets `fallback`.
    """

    def __init__(
        self,
        script: Iterable[ModelResponse | Exception] = (),
        fallback: ModelResponse | None = None,
        title: str = DEFAULT_TITLE,
    ) -> None:
        self._script = list(script)
        self._fallback = fallback or ModelResponse(text="(offline) Nothing left to do.")
        self._title = title
        self.sent: list[TurnContent] = []
        self.sessions: list[dict[str, Any]] = []

    def create_session(
        self,
        model: str,
        system_instruction: str,
        temperature: float,
        history: list[HistoryEntry],
    ) -> ScriptedSession:
        self.sessions.append(
            {
                "model": model,
                "system_instruction": system_instruction,
                "temperature": temperature,
                "history": list(history),
            }
        )
        return ScriptedSession(self)

    def next_response(self, content: TurnContent) -> ModelResponse:
        self.sent.append(content)
        if not self._script:
            return self._fallback
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def generate_text(self, prompt: str, model: str) -> str:
        return self._title


def demo_script() -> list[ModelResponse]:
    """A short plan -> search -> visit -> code -> answer exchange for --fake runs."""
    return [
        ModelResponse(
            text="This needs a little research and a script. Setting up a plan.",
            function_calls=[
                FunctionCall(
                    name="create_plan",
                    args={
                        "steps": [
                            {"title": "Research", "description": "Find and read a reference page."},
                            {"title": "Prototype", "description": "Write and run a small script."},
                        ]
                    },
                )
            ],
        ),
        ModelResponse(function_calls=[FunctionCall(name="web_search", args={"query": "python asyncio"})]),
        ModelResponse(
            function_calls=[FunctionCall(name="visit_page", args={"url": "https://docs.example.com/python-asyncio"})]
        ),
        ModelResponse(
            text="```python\nimport asyncio\n\nasyncio.run(asyncio.sleep(0))\n```",
            function_calls=[
                FunctionCall(
                    name="write_code",
                    args={"code": "import asyncio\n\nasyncio.run(asyncio.sleep(0))\n", "filename": "main.py"},
                )
            ],
        ),
        ModelResponse(text="Done. The script ran cleanly and both steps are complete."),
    ]


# ---------------------------------------------------------------------------
# Title generation
# ---------------------------------------------------------------------------


async def generate_chat_title(client: ModelClient, prompt: str, model: str) -> str:
    """Short session title for `prompt`. Falls back to "New Task" on any failure."""
    try:
        title = await asyncio.to_thread(client.generate_text, TITLE_PROMPT.format(prompt=prompt), model)
    except Exception:  # noqa: BLE001
        logger.exception("title generation failed")
        return DEFAULT_TITLE
    title = title.strip().strip('"').strip()
    return title or DEFAULT_TITLE
