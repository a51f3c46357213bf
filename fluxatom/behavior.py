"""
fluxatom BehaviorStream - Stream With a Current Value
=====================================================

Wraps a ``Stream`` and retains the value of the latest commit. Two behaviours
differ from the plain stream:

- Replay-on-subscribe: a new subscriber is called with the current value
  synchronously, before it is registered, regardless of de-duplication.
- Eager derivation: ``pipe`` evaluates the transform against the current
  value right away and seeds the child with the result. A seed that stops
  propagation produces a plain ``Stream`` child with no current value.
"""

from typing import Any, Callable, Generic, Optional, Union

from .stream import (
    Comparator,
    Revoke,
    Stream,
    T,
    Transform,
    derive,
)


class BehaviorStream(Generic[T]):
    """
    Stateful stream. The current value is always defined.

    Args:
        initial_value: Current value at construction. It also counts as the
            last emitted value, so ``next(initial_value)`` notifies nobody.
        equals: Comparator forwarded to the inner ``Stream``.
    """

    __slots__ = ("_stream", "_value", "_unsubscribe_from_parent")

    def __init__(self, initial_value: T, equals: Optional[Comparator] = None) -> None:
        self._stream: Stream[T] = Stream(equals=equals, last_value=initial_value)
        self._value = initial_value
        self._unsubscribe_from_parent: Optional[Revoke] = None

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return self._stream.subscriber_count

    def next(self, value: T) -> None:
        """Commit ``value``: always retained, broadcast only when it changed."""
        self._value = value
        self._stream.next(value)

    def subscribe(self, callback: Callable[[T], None]) -> Revoke:
        callback(self._value)
        return self._stream.subscribe(callback)

    def pipe(self, transform: Transform) -> Union["BehaviorStream[Any]", Stream[Any]]:
        seed = transform(self._value, None)
        child: Union[BehaviorStream[Any], Stream[Any]]
        if seed.stop_propagation:
            child = Stream()
        else:
            child = BehaviorStream(seed.value)
        # Inner stream: no second replay of the seeded value
        child._unsubscribe_from_parent = self._stream.subscribe(
            derive(child, transform, lambda: self._stream.last_value)
        )
        return child

    def unsubscribe_from_parent(self) -> None:
        revoke, self._unsubscribe_from_parent = self._unsubscribe_from_parent, None
        if revoke is not None:
            revoke()

    def __repr__(self) -> str:
        return f"BehaviorStream({self._value!r}, subscribers={self.subscriber_count})"
