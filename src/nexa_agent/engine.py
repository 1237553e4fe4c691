# engine.py
# ToolExecutionEngine: a scripted, deterministic tool simulator.
#
# Nothing here does real work. Each handler logs actions on the active plan
# step, waits on the scheduler to model latency, and returns a synthetic
# result. Failures local to one invocation (unknown tool, bad arguments,
# invalid plan) come back as ordinary result payloads so the model can react
# in-band; only cancellation propagates.

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from pydantic import BaseModel

from nexa_agent import registry
from nexa_agent.errors import InvalidPlan, ToolArgumentError, UnknownTool
from nexa_agent.models import ActionType, FileArtifact, RunStatus, ToolCall, WebContent
from nexa_agent.observer import TurnObserver
from nexa_agent.plan import AppendResult, CompleteResult, PlanTracker
from nexa_agent.workspace import Workspace

logger = logging.getLogger(__name__)

# Simulated latencies, in seconds.
SEARCH_LATENCY = 0.8
SEARCH_SETTLE = 0.5
VISIT_LATENCY = 1.0
WRITE_LATENCY = 0.8
WRITE_SETTLE = 0.8
EXEC_LATENCY = 1.5

PLAN_CREATED = "Plan created successfully. Proceed to execute steps."
EXEC_STDOUT = "Process exited with code 0.\nOutput generated successfully."

_LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".sh": "bash",
    ".md": "markdown",
    ".json": "json",
    ".html": "html",
    ".css": "css",
    ".sql": "sql",
}


# ---------------------------------------------------------------------------
# Schedulers
# ---------------------------------------------------------------------------


class AsyncioScheduler:
    """Real cooperative sleeps. `scale` stretches or shrinks every delay."""

    def __init__(self, scale: float = 1.0) -> None:
        self.scale = scale

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self.scale)


class RecordingScheduler:
    """Records requested delays and only yields to the loop. For tests."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Context and result
# ---------------------------------------------------------------------------


class ToolContext:
    """The narrow surface the engine needs from its host."""

    def __init__(
        self,
        plan: PlanTracker,
        workspace: Workspace,
        scheduler: AsyncioScheduler | RecordingScheduler,
        observer: TurnObserver | None = None,
    ) -> None:
        self.plan = plan
        self.workspace = workspace
        self.scheduler = scheduler
        self.observer = observer or TurnObserver()

    def reveal_viewer(self) -> None:
        if self.workspace.reveal_viewer():
            self.observer.viewer_revealed()


class ToolResult(BaseModel):
    call: ToolCall
    payload: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.call.status is RunStatus.COMPLETED


class _Invocation:
    """Per-call helper that remembers which actions this call left running."""

    def __init__(self, context: ToolContext) -> None:
        self.context = context
        self.running: list[str] = []
        self.logged = False

    def log(self, action_type: ActionType, content: str, status: RunStatus) -> AppendResult:
        result = self.context.plan.append_action(action_type, content, status)
        if result.applied:
            self.logged = True
            if status is RunStatus.RUNNING:
                self.running.append(result.action.id)
            self.context.observer.action_logged(result.step_index, result.action)
        return result

    def settle(self, result: AppendResult, status: RunStatus) -> None:
        if result.applied and self.context.plan.settle_action(result.action.id, status):
            self.running.remove(result.action.id)

    def complete_step(self) -> None:
        self._announce(self.context.plan.complete_active_step())

    def fail_step(self) -> None:
        """Fail the active step, but only if this invocation worked on it."""
        if self.logged:
            self._announce(self.context.plan.fail_active_step())

    def _announce(self, done: CompleteResult) -> None:
        if done.applied:
            self.context.observer.step_finished(done.step_index, self.context.plan.snapshot())

    def abandon(self) -> None:
        for action_id in self.running:
            self.context.plan.settle_action(action_id, RunStatus.FAILED)
        self.running.clear()

    async def wait(self, seconds: float) -> None:
        await self.context.scheduler.sleep(seconds)


Handler = Callable[[_Invocation, dict[str, Any]], Awaitable[dict[str, Any]]]


# ---------------------------------------------------------------------------
# Synthetic content
# ---------------------------------------------------------------------------


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "query"


def search_results(query: str) -> list[dict[str, str]]:
    slug = _slug(query)
    return [
        {
            "title": f"{query} - Official Documentation",
            "snippet": "Comprehensive guide and documentation...",
            "url": f"https://docs.example.com/{slug}",
        },
        {
            "title": f"Latest news on {query}",
            "snippet": "Breaking news and updates regarding...",
            "url": f"https://news.example.com/{slug}",
        },
        {
            "title": f"{query} Tutorial",
            "snippet": "Step by step tutorial for beginners...",
            "url": f"https://tutorial.example.com/{slug}",
        },
    ]


def page_content(url: str) -> str:
    return (
        f"# Content from {url}\n"
        "\n"
        "This is a simulated page content for the URL provided.\n"
        "It contains relevant information regarding the user's query.\n"
        "\n"
        "## Section 1: Overview\n"
        "The topic discussed is complex and involves multiple factors.\n"
        "\n"
        "## Section 2: Technical Details\n"
        "- Point A: Critical data\n"
        "- Point B: Secondary data\n"
        "\n"
        "(End of scraped content)"
    )


def language_for(filename: str) -> str:
    match = re.search(r"\.[A-Za-z0-9]+$", filename)
    if not match:
        return "python"
    return _LANGUAGES.get(match.group(0).lower(), "python")


def _error_payload(kind: str, message: str) -> dict[str, Any]:
    return {"error": kind, "message": message}


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _create_plan(run: _Invocation, args: dict[str, Any]) -> dict[str, Any]:
    run.context.plan.replace_plan(args["steps"])
    run.context.observer.plan_replaced(run.context.plan.snapshot())
    return {"status": PLAN_CREATED}


async def _web_search(run: _Invocation, args: dict[str, Any]) -> dict[str, Any]:
    query = args["query"]
    run.log(ActionType.COMMAND, f'Searching the web for: "{query}"', RunStatus.RUNNING)
    await run.wait(SEARCH_LATENCY)

    run.context.reveal_viewer()
    results = search_results(query)
    run.log(ActionType.INFO, f"Found {len(results)} relevant results", RunStatus.COMPLETED)
    await run.wait(SEARCH_SETTLE)

    return {"results": results}


async def _visit_page(run: _Invocation, args: dict[str, Any]) -> dict[str, Any]:
    url = args["url"]
    fetch = run.log(ActionType.COMMAND, f"curl {url}", RunStatus.RUNNING)
    await run.wait(VISIT_LATENCY)

    content = page_content(url)
    title = urlparse(url).netloc or "Simulated Web Page"
    run.context.workspace.last_web_content = WebContent(title=title, url=url, content=content)
    run.context.reveal_viewer()

    run.settle(fetch, RunStatus.COMPLETED)
    run.log(ActionType.FILE, f"parsed content from {url}", RunStatus.COMPLETED)
    run.complete_step()

    return {"content": content}


async def _write_code(run: _Invocation, args: dict[str, Any]) -> dict[str, Any]:
    filename = args["filename"]
    run.log(ActionType.COMMAND, f"cat > {filename} << 'EOF' ...", RunStatus.RUNNING)
    await run.wait(WRITE_LATENCY)

    run.context.workspace.add_file(
        FileArtifact(name=filename, language=language_for(filename), content=args["code"])
    )
    run.context.reveal_viewer()
    run.log(ActionType.FILE, f"Created file: {filename}", RunStatus.COMPLETED)
    await run.wait(WRITE_SETTLE)

    run.log(ActionType.COMMAND, f"python3 {filename}", RunStatus.RUNNING)
    await run.wait(EXEC_LATENCY)

    run.log(ActionType.OUTPUT, "Process exited with code 0", RunStatus.COMPLETED)
    run.complete_step()

    return {"stdout": EXEC_STDOUT}


HANDLERS: dict[str, Handler] = {
    "create_plan": _create_plan,
    "web_search": _web_search,
    "visit_page": _visit_page,
    "write_code": _write_code,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ToolExecutionEngine:
    """
    Executes one tool call at a time against a ToolContext.

    Callers must await each execute() before starting the next; invocations
    share the single active plan step and are never interleaved.
    """

    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self._handlers = dict(HANDLERS if handlers is None else handlers)

    async def execute(self, tool_name: str, args: dict[str, Any] | None, context: ToolContext) -> ToolResult:
        call = ToolCall(tool_name=tool_name, args=dict(args) if isinstance(args, dict) else {})
        context.workspace.active_tool_call = call
        context.observer.tool_started(call)
        run = _Invocation(context)

        try:
            payload = await self._dispatch(tool_name, args, run)
        except asyncio.CancelledError:
            run.abandon()
            call.status = RunStatus.FAILED
            logger.info("tool %s cancelled", tool_name)
            raise
        finally:
            context.workspace.active_tool_call = None

        call.status = RunStatus.FAILED if "error" in payload else RunStatus.COMPLETED
        call.result = payload
        context.observer.tool_finished(call)
        return ToolResult(call=call, payload=payload)

    async def _dispatch(self, tool_name: str, args: Any, run: _Invocation) -> dict[str, Any]:
        handler = self._handlers.get(tool_name)
        try:
            if handler is None:
                raise UnknownTool(tool_name)
            valid = registry.validate(tool_name, args)
        except UnknownTool:
            logger.warning("model requested unknown tool %r", tool_name)
            return {"error": "Unknown tool"}
        except ToolArgumentError as exc:
            logger.warning("bad arguments for %s: %s", tool_name, exc.message)
            return _error_payload("ToolArgumentError", exc.message)

        try:
            return await handler(run, valid)
        except InvalidPlan as exc:
            logger.warning("create_plan rejected: %s", exc)
            return _error_payload("InvalidPlan", str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool %s failed", tool_name)
            run.abandon()
            run.fail_step()
            return _error_payload(type(exc).__name__, str(exc))
