from __future__ import annotations


class ConfigurationError(ValueError):
    """Malformed tracker construction input or parameters."""
