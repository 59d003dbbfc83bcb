"""Error types and formatting for the publish pipeline.

Every failure in the pipeline is fatal. Domain errors derive from
``PublishError`` and carry the exit code the CLI should terminate with;
``handle_cli_error`` turns any exception into one clean line of output.
"""

import json
import subprocess

import yaml
from pydantic import ValidationError

from deskulpt_registry import cli_logger, exit_codes


class PublishError(Exception):
    """Base class for fatal pipeline errors."""

    exit_code: int = exit_codes.GENERAL_ERROR


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic ValidationError into clean, user-friendly message.

    Removes Pydantic-specific URLs and technical jargon, producing a message
    that names the offending field path for every failure.

    Args:
        error: The Pydantic ValidationError to format.

    Returns:
        A clean, human-readable error message.
    """
    messages = []

    for err in error.errors():
        # Field path, e.g. "widget.commit" or "authors.0.email"
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"

        error_type = err["type"]
        msg = err["msg"]

        if error_type == "missing":
            messages.append(f"'{loc}': field is required")
        elif error_type == "string_type":
            messages.append(f"'{loc}': expected string")
        elif error_type == "list_type":
            messages.append(f"'{loc}': expected list")
        elif error_type in ("int_type", "int_parsing", "int_from_float"):
            messages.append(f"'{loc}': expected integer")
        elif error_type == "value_error":
            # Raised by our own validators; their text is already user-facing
            messages.append(f"'{loc}': {msg.removeprefix('Value error, ')}")
        else:
            clean_msg = msg.lower()
            messages.append(f"'{loc}': {clean_msg}")

    if len(messages) == 1:
        return messages[0]

    return "; ".join(messages)


def handle_cli_error(error: Exception) -> int:
    """Handle an exception at the CLI boundary.

    Formats the error into a clean user-friendly message and returns
    an appropriate exit code, so no raw traceback reaches the CI log.

    Args:
        error: The exception to handle.

    Returns:
        An exit code from exit_codes.
    """
    if isinstance(error, PublishError):
        cli_logger.error(str(error))
        return error.exit_code

    if isinstance(error, ValidationError):
        cli_logger.error(f"Invalid data: {format_validation_errors(error)}")
        return exit_codes.VALIDATION_ERROR

    if isinstance(error, subprocess.CalledProcessError):
        cmd_str = " ".join(str(c) for c in error.cmd) if isinstance(error.cmd, list) else str(error.cmd)
        cli_logger.error(f"Command failed (exit code {error.returncode}): {cmd_str}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, OSError):
        if error.filename:
            cli_logger.error(f"{error.strerror}: {error.filename}")
        else:
            cli_logger.error(str(error))
        return exit_codes.GENERAL_ERROR

    if isinstance(error, json.JSONDecodeError):
        cli_logger.error(f"Invalid JSON: {error}")
        return exit_codes.VALIDATION_ERROR

    if isinstance(error, yaml.YAMLError):
        cli_logger.error(f"Invalid YAML: {error}")
        return exit_codes.VALIDATION_ERROR

    cli_logger.error(f"Unexpected error: {error}")
    return exit_codes.GENERAL_ERROR
