"""
Input validation utilities for the historization engine.

Provides reusable validation functions for vault object names, source
tags, query limits and file paths, so that dynamic SQL identifiers and
user-supplied CLI arguments are checked before they reach the database.
"""

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def validate_source_tag(source_tag: str, field_name: str = "source_tag") -> str:
    """
    Validate a record source tag.

    Source tags must be non-empty strings of at most 255 characters made of
    alphanumerics, hyphens, underscores, dots and slashes.

    Args:
        source_tag: The source tag to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated source tag (stripped of whitespace)

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_source_tag("werkportal.postgres")
        'werkportal.postgres'
        >>> validate_source_tag("crm/accounts")
        'crm/accounts'
    """
    if not source_tag or not isinstance(source_tag, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    source_tag = source_tag.strip()

    if not source_tag:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not re.match(r'^[a-zA-Z0-9_\-\./]+$', source_tag):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and slashes are allowed."
        )

    if len(source_tag) > 255:
        raise ValidationError(f"{field_name} exceeds maximum length of 255 characters")

    return source_tag


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit parameter for queries.

    Args:
        limit: The limit value to validate
        field_name: Name of the field (for error messages)
        max_limit: Maximum allowed limit value

    Returns:
        The validated limit value

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Sanitize an SQL identifier (table name, column name, etc.).

    This is a strict validation that only allows safe SQL identifiers.
    Use this for dynamic table/column names to prevent SQL injection.

    Args:
        identifier: The identifier to sanitize
        field_name: Name of the field (for error messages)

    Returns:
        The validated identifier

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> sanitize_sql_identifier("hub_company")
        'hub_company'
        >>> sanitize_sql_identifier("sat; DROP TABLE hub_company;")  # doctest: +SKIP
        ValidationError: identifier contains invalid characters
    """
    if not identifier or not isinstance(identifier, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    identifier = identifier.strip()

    # SQL identifiers: alphanumeric and underscores only, must start with letter or underscore
    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', identifier):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "SQL identifiers must start with a letter or underscore and contain only "
            "alphanumeric characters and underscores."
        )

    if len(identifier) > 63:  # PostgreSQL limit
        raise ValidationError(f"{field_name} exceeds PostgreSQL maximum length of 63 characters")

    reserved_keywords = {
        "select", "insert", "update", "delete", "drop", "create", "alter",
        "table", "database", "index", "view", "user", "grant", "revoke"
    }
    if identifier.lower() in reserved_keywords:
        raise ValidationError(
            f"{field_name} '{identifier}' is a reserved SQL keyword. "
            "Please use a different name."
        )

    return identifier


def validate_file_path(file_path: str, field_name: str = "file_path", allow_wildcards: bool = False) -> str:
    """
    Validate a file path for security.

    Prevents path traversal and ensures the path is reasonable.

    Args:
        file_path: The file path to validate
        field_name: Name of the field (for error messages)
        allow_wildcards: Whether to allow wildcards (* and ?) in the path

    Returns:
        The validated file path (stripped of whitespace)

    Raises:
        ValidationError: If validation fails
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise ValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains null bytes")

    if not allow_wildcards and ("*" in file_path or "?" in file_path):
        raise ValidationError(
            f"{field_name} contains wildcards (* or ?). "
            "If this is intentional, set allow_wildcards=True."
        )

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise ValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
