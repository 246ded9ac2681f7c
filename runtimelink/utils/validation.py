"""
Validation for runtime declarations.

Runs before any remote or cluster call so bad input fails fast with a
ConfigurationError naming the offending field.
"""

import re
from datetime import timedelta
from typing import Optional

from ..errors import ConfigurationError
from ..models import RuntimeDeclaration
from .durations import parse_duration

RUNTIME_NAME_RE = re.compile(r'^[a-z]([a-z0-9-]*[a-z0-9])?$')
LABEL_VALUE_RE = re.compile(r'^[a-zA-Z0-9.\\\-_@+]*$')


def validate_runtime_name(name: str) -> None:
    """Runtime names are lowercase DNS-label style: letters, digits and hyphens."""
    if not name or not RUNTIME_NAME_RE.match(name):
        raise ConfigurationError(
            "name",
            f"{name!r} must start with a lowercase letter and contain only "
            "lowercase letters, digits and '-', not ending in '-'"
        )


def validate_labels(declaration: RuntimeDeclaration) -> None:
    if declaration.labels is None:
        return
    for idx, label in enumerate(declaration.labels):
        if not label.label:
            raise ConfigurationError(f"labels[{idx}].label", "must not be empty")
        if not LABEL_VALUE_RE.match(label.label):
            raise ConfigurationError(
                f"labels[{idx}].label",
                f"{label.label!r} must contain only alphanumeric characters, @, -, _, +, . and \\"
            )
        if not LABEL_VALUE_RE.match(label.value):
            raise ConfigurationError(
                f"labels[{idx}].value",
                f"{label.value!r} must contain only alphanumeric characters, @, -, _, +, . and \\"
            )


def resolve_timeout(declaration: RuntimeDeclaration, default: str) -> tuple:
    """
    Resolve the linking timeout of a declaration.

    Returns:
        (timeout string as configured, parsed timedelta)
    """
    raw: Optional[str] = declaration.timeout or default
    try:
        parsed: timedelta = parse_duration(raw)
    except ValueError as e:
        raise ConfigurationError("timeout", str(e)) from e
    return raw, parsed


def validate_declaration(declaration: RuntimeDeclaration, default_timeout: str) -> None:
    """Validate every declared field that is checked locally."""
    validate_runtime_name(declaration.name)
    validate_labels(declaration)
    resolve_timeout(declaration, default_timeout)
