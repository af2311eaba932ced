"""Uniform tool result mappings."""

from typing import Any, Dict

from .errors import ToolFailure


def ok(**fields: Any) -> Dict[str, Any]:
    """Builds a successful tool result."""
    return {"success": True, **fields}


def failure(error: ToolFailure) -> Dict[str, Any]:
    """Builds a failed tool result from a :class:`ToolFailure`."""
    return error.to_result()

