"""
fluxatom - Observable Atoms with Concurrency Control and Persistence
====================================================================

A single-writer observable state container. Updates run through a
concurrency policy (queue, throttle or debounce) and can be persisted to a
key-value store, including when the stored state needs asynchronous
deserialization before the atom is usable.
"""

from .atom import Atom, atom
from .behavior import BehaviorStream
from .binding import AtomBinding
from .config import Concurrency, PersistenceConfig, SchedulerConfig
from .exceptions import AtomError, ConfigurationError, HydrationError, StorageError
from .operators import filter_values, map_values, skip_while
from .persistence import PersistedRecord, PersistencePipeline
from .scheduler import DescriptorState, UpdateDescriptor, UpdateScheduler
from .storage import (
    JSONFileStorage,
    MemoryStorage,
    Storage,
    get_default_storage,
    reset_default_storage,
)
from .stream import NO_VALUE, Emission, Observable, Stream

__all__ = [
    # Atom
    "Atom",
    "atom",
    "AtomBinding",
    # Streams
    "Observable",
    "Stream",
    "BehaviorStream",
    "Emission",
    "NO_VALUE",
    "filter_values",
    "skip_while",
    "map_values",
    # Scheduling
    "Concurrency",
    "SchedulerConfig",
    "UpdateScheduler",
    "UpdateDescriptor",
    "DescriptorState",
    # Persistence
    "PersistenceConfig",
    "PersistencePipeline",
    "PersistedRecord",
    "Storage",
    "MemoryStorage",
    "JSONFileStorage",
    "get_default_storage",
    "reset_default_storage",
    # Exceptions
    "AtomError",
    "ConfigurationError",
    "HydrationError",
    "StorageError",
]
