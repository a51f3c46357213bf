"""
fluxatom Configuration
======================

Frozen configuration records for the update scheduler and the persistence
pipeline. Both are validated once at construction and never change for the
lifetime of an atom.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .exceptions import ConfigurationError

Transform = Callable[[Any], Union[Any, Awaitable[Any]]]


class Concurrency(Enum):
    """Policy applied to concurrent ``update()`` calls."""

    QUEUE = "queue"  # every request commits, in submission order
    THROTTLE = "throttle"  # first request in a window wins
    DEBOUNCE = "debounce"  # last request in a window wins

    @classmethod
    def parse(cls, policy: Union["Concurrency", str]) -> "Concurrency":
        """Accept either a member or its string name."""
        if isinstance(policy, cls):
            return policy
        try:
            return cls(str(policy).lower())
        except ValueError:
            names = ", ".join(member.value for member in cls)
            raise ConfigurationError(
                f"Unknown concurrency policy {policy!r} (expected one of: {names})"
            ) from None


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Concurrency settings of an atom.

    Attributes:
        policy: One of queue, throttle or debounce.
        window: Seconds since submission during which throttle/debounce
            suppression applies. ``None`` means unbounded.
    """

    policy: Concurrency = Concurrency.QUEUE
    window: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "policy", Concurrency.parse(self.policy))
        if self.window is not None:
            if isinstance(self.window, bool) or not isinstance(
                self.window, (int, float)
            ):
                raise ConfigurationError(
                    f"window must be a number of seconds, got {self.window!r}"
                )
            if self.window < 0:
                raise ConfigurationError(
                    f"window must be non-negative, got {self.window!r}"
                )

    def within_window(self, age: float) -> bool:
        """True when something submitted ``age`` seconds ago is still in the window."""
        return self.window is None or age <= self.window


@dataclass(frozen=True)
class PersistenceConfig:
    """
    Where and how an atom's committed state is persisted.

    Attributes:
        key: Storage key of the persisted record.
        app_version: Schema version stored next to the data. A stored record
            carrying any other version is discarded on load.
        serialize: Optional transform (sync or async) applied before writing.
        deserialize: Optional transform (sync or async) applied after reading.
    """

    key: str
    app_version: Optional[str] = None
    serialize: Optional[Transform] = None
    deserialize: Optional[Transform] = None

    def __post_init__(self):
        if not isinstance(self.key, str) or not self.key:
            raise ConfigurationError(
                f"persist key must be a non-empty string, got {self.key!r}"
            )
        if self.app_version is not None and not isinstance(self.app_version, str):
            raise ConfigurationError(
                f"app_version must be a string, got {self.app_version!r}"
            )
        for name in ("serialize", "deserialize"):
            transform = getattr(self, name)
            if transform is not None and not callable(transform):
                raise ConfigurationError(f"{name} must be callable")
