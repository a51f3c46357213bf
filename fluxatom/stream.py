"""
fluxatom Stream - Notification Primitive
========================================

A synchronous publish/subscribe stream with last-value tracking,
equality-based suppression and a derivation operator (``pipe``).

Semantics:
- Subscribers are notified in registration order.
- A value is broadcast only when it differs, per the stream's comparator,
  from the last value passed to ``next``. The last value is recorded on
  every ``next`` call, broadcast or not.
- Each broadcast iterates over a snapshot of the subscribers taken when
  ``next`` is called. Callbacks may unsubscribe (themselves or others) while
  it is running; every subscriber in the snapshot still receives the value,
  and one added during the broadcast waits for the next value.
- A raising subscriber is logged and skipped; the rest still receive the value.

Example:
    ```python
    stream = Stream()
    revoke = stream.subscribe(print)
    stream.next(1)   # prints 1
    stream.next(1)   # suppressed
    revoke()
    ```
"""

import itertools
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[Any], None]
Revoke = Callable[[], None]
Comparator = Callable[[Any, Any], bool]


# ============================================================================
# SENTINEL VALUES
# ============================================================================


class _NoValue:
    """Sentinel for 'nothing emitted yet'."""

    __slots__ = ()

    def __repr__(self):
        return "NO_VALUE"

    def __bool__(self):
        return False


NO_VALUE = _NoValue()


# ============================================================================
# TYPES
# ============================================================================


@dataclass(frozen=True)
class Emission(Generic[T]):
    """
    Result of a ``pipe`` transform.

    ``stop_propagation`` keeps the value away from the derived stream.
    """

    value: T
    stop_propagation: bool = False


Transform = Callable[[Any, Any], Emission]


@runtime_checkable
class Observable(Protocol[T]):
    """Capabilities shared by every stream: subscribe, next and pipe."""

    def subscribe(self, callback: Callable[[T], None]) -> Revoke: ...

    def next(self, value: T) -> None: ...

    def pipe(self, transform: Transform) -> "Observable[Any]": ...


def default_equals(a: Any, b: Any) -> bool:
    """Identity, then ``==``."""
    return a is b or a == b


# ============================================================================
# STREAM
# ============================================================================


class Stream(Generic[T]):
    """
    Plain notification stream.

    Args:
        equals: Comparator deciding whether a value repeats the last one.
            Exceptions it raises propagate to the caller of ``next``.
        last_value: Value considered already emitted. Defaults to ``NO_VALUE``,
            in which case the first ``next`` always broadcasts.
    """

    __slots__ = ("_subscribers", "_ids", "_equals", "_last", "_unsubscribe_from_parent")

    def __init__(
        self, equals: Optional[Comparator] = None, last_value: Any = NO_VALUE
    ) -> None:
        self._subscribers: Dict[int, Callback] = {}
        self._ids = itertools.count()
        self._equals = equals or default_equals
        self._last = last_value
        self._unsubscribe_from_parent: Optional[Revoke] = None

    @property
    def last_value(self) -> Any:
        """Last value passed to ``next`` (``NO_VALUE`` before the first)."""
        return self._last

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Revoke:
        """
        Register ``callback`` and return a function that removes it.

        The returned function is idempotent: only its first call has an effect.
        """
        subscriber_id = next(self._ids)
        self._subscribers[subscriber_id] = callback

        def revoke() -> None:
            self._subscribers.pop(subscriber_id, None)

        return revoke

    def next(self, value: T) -> None:
        previous = self._last
        try:
            if previous is NO_VALUE or not self._equals(value, previous):
                self._broadcast(value)
        finally:
            self._last = value

    def _broadcast(self, value: Any) -> None:
        for subscriber_id, callback in tuple(self._subscribers.items()):
            try:
                callback(value)
            except Exception:
                logger.exception(
                    "Subscriber %d raised while receiving %r", subscriber_id, value
                )

    def pipe(self, transform: Transform) -> "Stream[Any]":
        """
        Derive a child stream.

        Every emission of this stream calls ``transform(new, previous)``;
        unless the returned ``Emission`` stops propagation, its value is
        pushed into the child.
        """
        child: Stream[Any] = Stream()
        child._unsubscribe_from_parent = self.subscribe(
            derive(child, transform, lambda: self._last)
        )
        return child

    def unsubscribe_from_parent(self) -> None:
        """Detach a derived stream from the stream it was piped from."""
        revoke, self._unsubscribe_from_parent = self._unsubscribe_from_parent, None
        if revoke is not None:
            revoke()

    def __repr__(self) -> str:
        return f"Stream(last={self._last!r}, subscribers={len(self._subscribers)})"


def derive(
    child: Observable[Any], transform: Transform, previous: Callable[[], Any]
) -> Callback:
    """
    Build the parent-side callback feeding ``child`` through ``transform``.

    ``previous`` is read at notification time; the parent has not yet
    recorded the new value then, so it yields the value being replaced.
    """

    def on_parent_value(value: Any) -> None:
        old = previous()
        emission = transform(value, None if old is NO_VALUE else old)
        if emission.stop_propagation:
            return
        child.next(emission.value)

    return on_parent_value
