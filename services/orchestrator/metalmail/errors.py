"""
Error taxonomy shared by the tool registry, the dispatcher and the chat orchestrator.
"""

from typing import List, Optional


class MetalmailError(Exception):
    """Base class for all errors raised by metalmail."""


class ValidationError(MetalmailError):
    """Tool arguments did not match the tool's declared input schema."""

    def __init__(self, tool: str, fields: List[str], message: str):
        self.tool = tool
        self.fields = fields
        self.message = message
        super().__init__(f"Invalid arguments for {tool} ({', '.join(fields) or 'input'}): {message}")


class ToolNotFound(MetalmailError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolExecutionError(MetalmailError):
    """A tool handler raised or timed out."""

    def __init__(self, tool: str, message: str, cause: Optional[BaseException] = None):
        self.tool = tool
        self.message = message
        self.cause = cause
        super().__init__(message)


class ParseError(MetalmailError):
    """LLM output was not valid JSON where structured output was expected."""


class InvalidEnvelopeError(MetalmailError):
    """An ActionEnvelope populated both or neither of its result branches."""


class ToolLoopExceeded(MetalmailError):
    def __init__(self, rounds: int):
        self.rounds = rounds
        super().__init__(f"Tool loop limit of {rounds} round(s) exceeded")


class RecordNotFound(MetalmailError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")
