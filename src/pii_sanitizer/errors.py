"""Exceptions raised by pii-sanitizer."""

from __future__ import annotations


class PiiSanitizerError(Exception):
    """Base class for library errors."""


class ConfigError(PiiSanitizerError, ValueError):
    """Invalid configuration value."""
