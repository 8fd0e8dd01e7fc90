"""Exceptions raised while loading or validating configuration."""


class ConfigError(Exception):
    """Raised when configuration data cannot be parsed or validated."""
