"""Utility modules for the runtime linker."""

from .durations import parse_duration
from .validation import (
    validate_runtime_name,
    validate_labels,
    validate_declaration,
    resolve_timeout,
)

__all__ = [
    'parse_duration',
    'validate_runtime_name',
    'validate_labels',
    'validate_declaration',
    'resolve_timeout',
]
