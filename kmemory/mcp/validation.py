"""Argument validation and structured errors for the kmemory MCP server."""

from enum import Enum
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator


class ErrorCode(Enum):
    """Structured error codes for MCP responses."""

    VALIDATION_ERROR = "validation_error"  # 400: Bad input


def error_response(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    hint: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a structured error response.

    Args:
        code: Error code enum value
        message: Human-readable error message
        details: Optional additional details
        hint: Optional hint for resolving the error
    """
    response: Dict[str, Any] = {
        "success": False,
        "error_code": code.value,
        "error": message,
    }
    if details:
        response["details"] = details
    if hint:
        response["hint"] = hint
    return response


def validate_arguments(schema: Dict[str, Any], arguments: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Check tool arguments against the tool's input schema.

    Keys passed as None count as omitted.

    Returns:
        error_response dict for the first problem found, or None if valid
    """
    arguments = {key: value for key, value in arguments.items() if value is not None}
    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(arguments), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return None

    missing = [key for key in schema.get("required", []) if key not in arguments]
    if missing:
        return error_response(
            ErrorCode.VALIDATION_ERROR,
            f"Missing required arguments: {', '.join(missing)}",
            details={"missing_fields": missing},
        )

    error = errors[0]
    path = ".".join(str(p) for p in error.path) if error.path else "root"
    return error_response(
        ErrorCode.VALIDATION_ERROR,
        f"{path}: {error.message}",
        details={"path": path, "validator": error.validator},
    )
