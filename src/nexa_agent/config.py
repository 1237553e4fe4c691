# config.py
# Agent configuration: model choice, sampling, system prompt, turn budget.
#
# Values come from the environment (a local .env is honoured) and are
# validated by pydantic. Anything invalid is reported as a ConfigError.

import os
from pathlib import Path
from typing import Literal, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from nexa_agent.errors import ConfigError

DEFAULT_MODEL = "google/gemini-2.5-flash"

# Model modes offered in settings, mapped to concrete model ids.
MODE_MODELS: dict[str, str] = {
    "fast": "google/gemini-2.5-flash",
    "max": "google/gemini-2.5-pro",
}

DEFAULT_SYSTEM_INSTRUCTION = """\
You are "Nexa", a high-level general autonomous agent.
Your goal is to solve complex user requests by planning, executing tools, and verifying results.

BEHAVIOR MODEL:
1. RECEIVE GOAL: Parse the user's intent. If vague, ask for clarification.
2. EVALUATE COMPLEXITY:
   - If the request is simple (e.g., "What is the capital of France?"), DO NOT create a plan. \
Just answer directly or use 'web_search' immediately.
   - If the request is complex (multi-step, requires coding + browsing, or a specific workflow), \
call 'create_plan' FIRST.
3. EXECUTE: Use available tools (web_search, visit_page, write_code) to execute the plan.
4. VERIFY: Check tool outputs. If a tool fails, retry or adjust the plan.
5. REPORT: Provide a final answer based on the tool outputs.

TONE:
- Professional, concise, and objective.
- Do not be chatty. Be an operator.
- Explain your reasoning briefly before calling tools.

IMPORTANT CODING RULES:
- When you write code, output the full code in a Markdown code block in your text response,
  either before calling `write_code` or when reporting the result.
- Users cannot see tool arguments directly, so the code must be visible in the chat.

AVAILABLE TOOLS:
- create_plan: Call this FIRST to set up your intended steps (ONLY for complex tasks).
- web_search: Search the internet for information.
- visit_page: Visit a specific URL to extract content. Visiting a page finishes the current step.
- write_code: Write and execute Python code (simulated). Finishes the current step.\
"""

_ENV_KEYS = {
    "model": "NEXA_MODEL",
    "model_mode": "NEXA_MODEL_MODE",
    "temperature": "NEXA_TEMPERATURE",
    "system_instruction": "NEXA_SYSTEM_INSTRUCTION",
    "max_rounds": "NEXA_MAX_ROUNDS",
    "latency_scale": "NEXA_LATENCY_SCALE",
    "session_file": "NEXA_SESSION_FILE",
    "log_level": "NEXA_LOG_LEVEL",
}


class AgentConfig(BaseModel):
    model: str = Field(default=DEFAULT_MODEL, min_length=1)
    model_mode: Literal["fast", "max"] | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    max_rounds: int = Field(default=8, ge=1, description="Model<->tool rounds allowed per turn.")
    latency_scale: float = Field(default=1.0, ge=0.0, description="Multiplier on simulated tool delays.")
    session_file: Path = Path.home() / ".nexa" / "sessions.json"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"

    @property
    def resolved_model(self) -> str:
        """The concrete model id: the mode's model when a mode is set."""
        if self.model_mode is not None:
            return MODE_MODELS[self.model_mode]
        return self.model


def load_config(environ: Mapping[str, str] | None = None) -> AgentConfig:
    """
    Build an AgentConfig from NEXA_* environment variables.

    A .env file in the working directory is loaded first without overriding
    variables already set. Pass `environ` to read from a mapping instead.
    """
    if environ is None:
        load_dotenv(override=False)
        environ = os.environ

    raw: dict[str, str] = {}
    for field, key in _ENV_KEYS.items():
        value = environ.get(key)
        if value is not None and value.strip() != "":
            raw[field] = value.strip() if field != "system_instruction" else value
    if "log_level" in raw:
        raw["log_level"] = raw["log_level"].upper()
    if "model_mode" in raw:
        raw["model_mode"] = raw["model_mode"].lower()

    try:
        return AgentConfig.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else ""
        raise ConfigError(first["msg"], key=_ENV_KEYS.get(field, field) or None) from exc
