"""Exception types raised by tripdist."""
from __future__ import annotations


class ConfigurationError(ValueError):
    """A required column or option is missing or outside its valid range."""
