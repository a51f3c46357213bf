"""
fluxatom Exceptions
===================

Error types raised by atoms, their configuration layer and the bundled
storage backends.

Reducer failures are never wrapped: they reach the caller of ``update()``
unchanged.
"""


class AtomError(Exception):
    """Base class for all fluxatom errors."""

    pass


class ConfigurationError(AtomError, ValueError):
    """Invalid atom, scheduler or persistence configuration."""

    pass


class StorageError(AtomError):
    """A storage backend failed to read or write a record."""

    pass


class HydrationError(AtomError):
    """Asynchronous hydration of a persisted record failed."""

    pass
