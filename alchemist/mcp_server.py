from __future__ import annotations

import json
import inspect
import logging
import os
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from alchemist import mcp_tools
from alchemist.store import RuleRejected


MCP_TOOL_NAMES = [
    "create_workspace",
    "get_workspace",
    "list_workspaces",
    "replace_dataset",
    "load_file",
    "get_dataset",
    "update_row",
    "list_errors",
    "add_rule",
    "list_rules",
    "delete_rule",
    "suggest_rules",
    "set_weights",
    "export_rules",
    "export_errors",
]


_DOMAIN_ERRORS: dict[str, tuple[str, bool]] = {
    "WORKSPACE_NOT_FOUND": ("Workspace not found", False),
    "DATASET_NOT_FOUND": ("Dataset not uploaded", False),
    "RULE_NOT_FOUND": ("Rule not found", False),
    "ROW_OUT_OF_RANGE": ("Row index out of range", False),
    "UNKNOWN_ENTITY": ("Unknown entity", False),
    "UNKNOWN_PRESET": ("Unknown weight preset", False),
    "INVALID_RULE": ("Rule payload does not match any rule type", False),
    "UNSUPPORTED_FILE_TYPE": ("Only .csv and .xlsx files are supported", False),
    "UNREADABLE_FILE": ("File could not be parsed", False),
}


def _normalize_tool_exception(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, SQLAlchemyError):
        return {
            "code": "DB_ERROR",
            "message": "Database operation failed",
            "retryable": False,
        }

    if isinstance(exc, RuleRejected):
        return {
            "code": "INVALID_RULE_SHAPE",
            "message": exc.message,
            "retryable": False,
        }

    token = exc.args[0] if exc.args else str(exc)
    token_str = str(token)
    if token_str in _DOMAIN_ERRORS:
        message, retryable = _DOMAIN_ERRORS[token_str]
        return {
            "code": token_str,
            "message": message,
            "retryable": retryable,
        }

    return {
        "code": "INVARIANT_VIOLATION",
        "message": "Operation failed due to invalid state",
        "retryable": False,
    }


def _wrap_tool(tool_fn: Callable[..., Any]) -> Callable[..., Any]:
    def _wrapped(*args: Any, **kwargs: Any) -> Any:
        try:
            return tool_fn(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            payload = {"error": _normalize_tool_exception(exc)}
            raise RuntimeError(json.dumps(payload)) from exc

    _wrapped.__name__ = tool_fn.__name__
    _wrapped.__doc__ = tool_fn.__doc__
    _wrapped.__signature__ = inspect.signature(tool_fn, eval_str=True)  # type: ignore[attr-defined]
    return _wrapped


def create_mcp_server():
    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError as exc:
        raise RuntimeError("Install the 'mcp' package to run the MCP server") from exc

    server = FastMCP("alchemist")
    for name in MCP_TOOL_NAMES:
        server.tool(name=name)(_wrap_tool(getattr(mcp_tools, name)))
    return server


def main() -> None:
    logging.basicConfig(level=os.getenv("ALCHEMIST_LOG_LEVEL", "INFO").upper())
    server = create_mcp_server()
    server.run()


if __name__ == "__main__":
    main()
