# errors.py
# Exception taxonomy for the agent core.
#
# Tool-local failures (InvalidPlan, ToolArgumentError, UnknownTool) are turned
# into ordinary result payloads by the engine so the model can react in-band.
# Model-client failures (AuthError, TransientError) and TurnBudgetExceeded end
# the current turn with a single agent message.


class NexaError(Exception):
    """Base exception for this project."""


# ---------------------------------------------------------------------------
# Plan / tool errors
# ---------------------------------------------------------------------------


class InvalidPlan(NexaError):
    """Raised when create_plan receives an empty step list or an untitled step."""


class NoEligibleStep(NexaError):
    """A plan mutation found no active or pending step. Never fatal."""


class ToolArgumentError(NexaError):
    """Raised when a tool call is missing a required argument or has the wrong type."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message


class UnknownTool(NexaError):
    """Raised when a tool name is absent from the registry."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name!r}")
        self.tool_name = tool_name


# ---------------------------------------------------------------------------
# Model-client errors
# ---------------------------------------------------------------------------


class ModelClientError(NexaError):
    """A failure raised while talking to the model client."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class AuthError(ModelClientError):
    """Credential missing or rejected by the model client."""


class TransientError(ModelClientError):
    """Any other model-client failure. The user may simply try again."""


class TurnBudgetExceeded(NexaError):
    """The model kept requesting tools past the configured round budget."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Turn exceeded the budget of {max_rounds} tool round(s).")
        self.max_rounds = max_rounds


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(NexaError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(f"{key}: {message}" if key else message)
        self.key = key
