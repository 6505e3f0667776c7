"""Errors raised while reading the YAML settings file."""


class ConfigError(Exception):
    """Any settings problem."""


class ConfigValidationError(ConfigError, ValueError):
    """A value has the wrong type, is out of range, or is missing."""


class ConfigInitializationError(ConfigError):
    """The settings file exists but cannot be read or is not a YAML mapping."""


__all__ = ["ConfigError", "ConfigValidationError", "ConfigInitializationError"]
