"""Exceptions raised by context-keeper."""


class ContextKeeperError(Exception):
    """Base class for context-keeper errors."""


class StorageError(ContextKeeperError):
    """An archive, index or cache file could not be written."""
