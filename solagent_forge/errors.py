"""Exception types shared by the dispatcher and the tools.

Protocol errors are reported through the JSON-RPC ``error`` member.
Tool failures never leave the registry: they are turned into a
``{"success": false, ...}`` result by :meth:`Tool.invoke`.
"""

from typing import Any, Dict, Optional


class SolagentError(Exception):
    """Base class for every error raised by this package."""


# --- Protocol level ---

class ProtocolError(SolagentError):
    """A request the dispatcher cannot serve."""


class MethodNotFound(ProtocolError):
    def __init__(self, method: str):
        super().__init__(f"Unknown method: {method}")
        self.method = method


class InvalidParams(ProtocolError):
    pass


class UnknownTool(ProtocolError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


# --- Tool level ---

class ToolFailure(SolagentError):
    """An expected failure inside a tool handler."""

    kind = "error"

    def __init__(self, message: str, details: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.details = details
        self.context = context

    def to_result(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorKind": self.kind,
        }
        if self.details is not None:
            result["details"] = self.details
        result.update(self.context)
        return result


class ValidationFailure(ToolFailure):
    kind = "validation"


class UpstreamFailure(ToolFailure):
    kind = "upstream"


class InvalidArgument(ValidationFailure):
    pass


class DerivationError(ValidationFailure):
    pass


class InvalidProgramId(DerivationError):
    pass


class MissingSeeds(DerivationError):
    pass


class InvalidSeeds(DerivationError):
    pass


class DerivationExhausted(DerivationError):
    kind = "derivation_exhausted"
