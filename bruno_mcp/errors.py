"""
Bruno MCP Errors

Every failure carries a short machine-stable code plus a readable message.
The string form is "[CODE] message", which is what callers see.
"""


class AppError(Exception):
    """An expected failure with a stable error code."""

    def __init__(self, code: str, message: str):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message


def ensure(condition, code: str, message: str) -> None:
    """Raise AppError(code, message) unless condition is truthy."""
    if not condition:
        raise AppError(code, message)
