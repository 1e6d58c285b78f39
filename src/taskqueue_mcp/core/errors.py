# src/taskqueue_mcp/core/errors.py

"""
Error taxonomy shared by the store, the registry and the outer surfaces.

Every failure the core reports is an AppError with a stable ErrorCode.
Connectors (MCP tools, CLI) map the code to whatever their transport needs.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    # Caller supplied malformed input
    MISSING_PARAMETER = "ERR_1000"
    INVALID_ARGUMENT = "ERR_1002"

    # Validation / lookup
    CONFIGURATION_ERROR = "ERR_2000"
    PROJECT_NOT_FOUND = "ERR_2001"
    TASK_NOT_FOUND = "ERR_2002"
    INVALID_STATE = "ERR_2003"
    INVALID_PROVIDER = "ERR_2004"
    INVALID_MODEL = "ERR_2005"

    # Lifecycle rules
    TASK_NOT_DONE = "ERR_3000"
    PROJECT_ALREADY_COMPLETED = "ERR_3001"
    TASKS_NOT_ALL_DONE = "ERR_3003"
    TASKS_NOT_ALL_APPROVED = "ERR_3004"
    CANNOT_MODIFY_APPROVED_TASK = "ERR_3005"
    TASK_ALREADY_APPROVED = "ERR_3006"

    # Storage
    FILE_READ_ERROR = "ERR_4000"
    FILE_WRITE_ERROR = "ERR_4001"
    READ_ONLY_FILE_SYSTEM = "ERR_4003"

    # Plan generation
    LLM_GENERATION_ERROR = "ERR_5000"


# Codes that describe bad caller input rather than a failed operation.
INVALID_PARAMS_CODES = frozenset(
    {
        ErrorCode.MISSING_PARAMETER,
        ErrorCode.INVALID_ARGUMENT,
        ErrorCode.INVALID_STATE,
    }
)


class AppError(Exception):
    """A failure with a stable kind (code) and a human-readable message."""

    def __init__(self, message: str, code: ErrorCode, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    @property
    def kind(self) -> str:
        return self.code.name

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"AppError(code={self.code.name}, message={self.message!r})"


def format_cli_error(err: Exception) -> str:
    if isinstance(err, AppError):
        return f"{err.code.value}: {err.message}"
    return str(err) or err.__class__.__name__
