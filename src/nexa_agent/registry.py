# registry.py
# Tool registry: the fixed catalog of tools the model may call.
#
# Pure data and validation. Nothing here executes a tool; every entry has a
# matching handler in engine.py.

from typing import Any, Literal

from pydantic import BaseModel, Field

from nexa_agent.errors import ToolArgumentError, UnknownTool

ArgType = Literal["string", "list-of-object"]


class ArgSpec(BaseModel):
    name: str
    type: ArgType = "string"
    required: bool = True
    description: str = ""
    # Keys each object must carry when type is list-of-object.
    item_fields: dict[str, str] = Field(default_factory=dict)


class ToolSchema(BaseModel):
    name: str
    description: str
    args: list[ArgSpec]

    @property
    def required(self) -> list[str]:
        return [a.name for a in self.args if a.required]

    @property
    def optional(self) -> list[str]:
        return [a.name for a in self.args if not a.required]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

TOOLS: dict[str, ToolSchema] = {
    "create_plan": ToolSchema(
        name="create_plan",
        description="Initialize the task with a list of steps to execute.",
        args=[
            ArgSpec(
                name="steps",
                type="list-of-object",
                description="Ordered steps of the plan.",
                item_fields={
                    "title": "Short title of the step",
                    "description": "Detailed description",
                },
            )
        ],
    ),
    "web_search": ToolSchema(
        name="web_search",
        description="Search the web for a query.",
        args=[ArgSpec(name="query", description="The search query")],
    ),
    "visit_page": ToolSchema(
        name="visit_page",
        description="Visit a URL and extract text content.",
        args=[ArgSpec(name="url", description="The URL to visit")],
    ),
    "write_code": ToolSchema(
        name="write_code",
        description="Write and execute python code.",
        args=[
            ArgSpec(name="code", description="The python code to execute"),
            ArgSpec(name="filename", description="Filename to save as"),
        ],
    ),
}


# ---------------------------------------------------------------------------
# Lookup and validation
# ---------------------------------------------------------------------------


def describe(tool_name: str) -> ToolSchema:
    """Return the schema for `tool_name`. Raises UnknownTool if absent."""
    try:
        return TOOLS[tool_name]
    except KeyError:
        raise UnknownTool(tool_name) from None


def _check_type(tool_name: str, spec: ArgSpec, value: Any) -> None:
    if spec.type == "string":
        if not isinstance(value, str):
            raise ToolArgumentError(tool_name, f"argument {spec.name!r} must be a string")
        return

    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ToolArgumentError(tool_name, f"argument {spec.name!r} must be a list of objects")


def validate(tool_name: str, args: dict[str, Any] | None) -> dict[str, Any]:
    """
    Check `args` against the tool's schema and return them as a plain dict.

    Raises UnknownTool for an unregistered name and ToolArgumentError for a
    missing required argument or a coarse type mismatch. Unknown extra
    arguments are ignored.
    """
    schema = describe(tool_name)
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ToolArgumentError(tool_name, "arguments must be an object")

    for spec in schema.args:
        value = args.get(spec.name)
        if value is None:
            if spec.required:
                raise ToolArgumentError(tool_name, f"missing required argument {spec.name!r}")
            continue
        _check_type(tool_name, spec, value)

    return dict(args)


# ---------------------------------------------------------------------------
# Model-facing declarations
# ---------------------------------------------------------------------------


def _json_schema(spec: ArgSpec) -> dict[str, Any]:
    if spec.type == "string":
        return {"type": "string", "description": spec.description}
    return {
        "type": "array",
        "description": spec.description,
        "items": {
            "type": "object",
            "properties": {
                key: {"type": "string", "description": desc}
                for key, desc in spec.item_fields.items()
            },
            "required": list(spec.item_fields),
        },
    }


def function_declarations() -> list[dict[str, Any]]:
    """Render the catalog in the chat-completions `tools` format."""
    return [
        {
            "type": "function",
            "function": {
                "name": schema.name,
                "description": schema.description,
                "parameters": {
                    "type": "object",
                    "properties": {a.name: _json_schema(a) for a in schema.args},
                    "required": schema.required,
                },
            },
        }
        for schema in TOOLS.values()
    ]
