"""Errors raised by conversation store backends."""


class StoreError(Exception):
    """Base class for conversation store failures."""


class PersistenceCorrupt(StoreError):
    """The persisted conversation state could not be decoded."""


class StoreNotConnected(StoreError):
    """An operation was attempted before ``connect()``."""
