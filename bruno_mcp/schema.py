"""
Bruno MCP Schema

Pydantic models for the two untyped boundaries of the server:
- Tool call arguments coming in from the MCP client
- The response view extracted from a Bruno JSON report
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from .errors import AppError


# Advertised to MCP clients for every request tool
TOOL_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "vars": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
    "additionalProperties": False,
}


class ToolArguments(BaseModel):
    """Arguments accepted by every request tool."""
    model_config = ConfigDict(extra="forbid")

    vars: Optional[dict[str, StrictStr]] = None


class ReportView(BaseModel):
    """The parts of a Bruno report that end up in tool output."""
    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    body_text: str = ""


def _describe_input_error(error: ValidationError) -> str:
    """Turn the first pydantic error into a message about the offending key."""
    first = error.errors()[0]
    loc = first.get("loc", ())

    if not loc:
        return "Tool input must be an object."
    if first.get("type") == "extra_forbidden":
        return f'Unsupported input key: {loc[0]}. Only "vars" is allowed.'
    if len(loc) == 1:
        return '"vars" must be an object of string values.'
    return f"vars.{loc[1]} must be a string."


def validate_vars(payload: Any) -> Optional[dict[str, str]]:
    """
    Validate raw tool arguments and return the variable map.

    Returns None when no arguments or no vars were supplied.
    Raises AppError(E_INPUT) for any other shape.
    """
    if payload is None:
        return None

    try:
        arguments = ToolArguments.model_validate(payload)
    except ValidationError as e:
        raise AppError("E_INPUT", _describe_input_error(e)) from e

    return arguments.vars
