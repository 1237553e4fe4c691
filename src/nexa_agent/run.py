# run.py
# Entry point. Config, wiring and the interactive prompt loop.
#
# Model ids are OpenRouter model strings; see https://openrouter.ai/models
# Use --fake to run offline against a scripted model.

import argparse
import asyncio

from nexa_agent import display
from nexa_agent.client import OpenAIModelClient, ScriptedModelClient, demo_script
from nexa_agent.config import load_config
from nexa_agent.display import ConsoleObserver, console
from nexa_agent.driver import Conversation, ConversationDriver, OutcomeKind
from nexa_agent.errors import ConfigError
from nexa_agent.log import configure_logging
from nexa_agent.sessions import SessionStore


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nexa", description="Nexa agent console")
    p.add_argument("--prompt", default=None, help="Run a single request and exit.")
    p.add_argument("--session", default=None, help="Resume a saved session by id.")
    p.add_argument("--model", default=None, help="Override the model id.")
    p.add_argument("--mode", choices=["fast", "max"], default=None, help="Pick a model by mode.")
    p.add_argument("--max-rounds", type=int, default=None, help="Tool rounds allowed per turn.")
    p.add_argument("--log-level", default=None, help="Logging level.")
    p.add_argument("--fake", action="store_true", help="Use the offline scripted model.")
    p.add_argument("--verbose", action="store_true", help="Show agent status transitions.")
    return p


def _open(store: SessionStore, session_id: str | None) -> Conversation:
    if session_id is None:
        return Conversation()
    session = store.get(session_id)
    if session is None:
        display.notice(f"No session {session_id!r}; starting a new one.")
        return Conversation()
    display.history(session.messages)
    return Conversation(session)


async def _one_shot(driver: ConversationDriver, conversation: Conversation, prompt: str) -> int:
    display.prompt_received(prompt)
    outcome = await driver.submit(conversation, prompt)
    if conversation.title_task is not None:
        await conversation.title_task
    return 0 if outcome.ok else 1


async def _repl(driver: ConversationDriver, store: SessionStore, conversation: Conversation) -> int:
    while True:
        try:
            line = await asyncio.to_thread(console.input, "[bold cyan]› [/bold cyan]")
        except (EOFError, KeyboardInterrupt):
            console.print()
            return 0

        text = line.strip()
        if not text:
            continue

        if not text.startswith("/"):
            outcome = await driver.submit(conversation, text)
            if outcome.kind is OutcomeKind.BUSY:
                display.notice("Still working on the previous request.")
            continue

        command, _, arg = text.partition(" ")
        arg = arg.strip()

        if command in ("/quit", "/exit"):
            return 0
        elif command == "/new":
            conversation = Conversation()
            display.notice("Started a new task.")
        elif command == "/sessions":
            display.session_list(store.sorted_sessions(), conversation.session.id)
        elif command == "/load":
            session = store.get(arg)
            if session is None:
                display.notice(f"No session {arg!r}.")
                continue
            conversation = Conversation(session)
            display.history(session.messages)
        elif command == "/rename":
            conversation.session.name = arg or conversation.session.name
            store.rename(conversation.session.id, arg)
        elif command == "/fav":
            if not store.toggle_favorite(conversation.session.id):
                display.notice("Nothing saved yet to favorite.")
        elif command == "/delete":
            target = arg or conversation.session.id
            if store.delete(target) and target == conversation.session.id:
                conversation = Conversation()
        elif command == "/plan":
            display.plan_table(conversation.plan_snapshot())
        elif command == "/view":
            if conversation.workspace.latest_file is not None:
                display.file_artifact(conversation.workspace.latest_file)
            if conversation.last_web_content is not None:
                display.web_content(conversation.last_web_content)
        else:
            display.notice(f"Unknown command {command}.")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = load_config()
        updates = {
            "model": args.model,
            "model_mode": args.mode,
            "max_rounds": args.max_rounds,
            "log_level": args.log_level.upper() if args.log_level else None,
        }
        config = config.model_validate({**config.model_dump(), **{k: v for k, v in updates.items() if v is not None}})
    except (ConfigError, ValueError) as exc:
        display.halt(f"Invalid configuration: {exc}")
        return 2

    configure_logging(config.log_level)

    store = SessionStore(config.session_file)
    client = ScriptedModelClient(demo_script(), title="Offline Demo") if args.fake else OpenAIModelClient()
    driver = ConversationDriver(
        client,
        config,
        observer=ConsoleObserver(verbose_status=args.verbose),
        store=store,
    )

    conversation = _open(store, args.session)
    display.banner(config.resolved_model, conversation.session.name)

    if args.prompt:
        return asyncio.run(_one_shot(driver, conversation, args.prompt))
    return asyncio.run(_repl(driver, store, conversation))


if __name__ == "__main__":
    raise SystemExit(main())
