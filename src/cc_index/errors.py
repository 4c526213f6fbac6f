"""Exception types for cc-index."""


class CCIndexError(Exception):
    """Base class for cc-index errors."""


class ConfigError(CCIndexError):
    """Invalid configuration value."""


class StoreError(CCIndexError):
    """The index database could not be opened or initialized."""
