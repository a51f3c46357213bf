"""
fluxatom Operators
==================

Factories producing ``pipe`` transforms.

Example:
    ```python
    evens = stream.pipe(filter_values(lambda n: n % 2 == 0))
    rising = stream.pipe(skip_while(lambda new, old: old is not None and new <= old))
    ```
"""

from typing import Any, Callable, Optional

from .stream import Emission, Transform


def filter_values(predicate: Callable[[Any], bool]) -> Transform:
    """Let through only values for which ``predicate`` holds."""

    def transform(value: Any, previous: Optional[Any] = None) -> Emission:
        return Emission(value, stop_propagation=not predicate(value))

    return transform


def skip_while(predicate: Callable[[Any, Optional[Any]], bool]) -> Transform:
    """
    Drop values while ``predicate(new, previous)`` holds.

    ``previous`` is ``None`` when the parent had no earlier value, which is
    also the case for the seed evaluation of a ``BehaviorStream`` parent.
    """

    def transform(value: Any, previous: Optional[Any] = None) -> Emission:
        return Emission(value, stop_propagation=bool(predicate(value, previous)))

    return transform


def map_values(func: Callable[[Any], Any]) -> Transform:
    """Push ``func(value)`` into the derived stream."""

    def transform(value: Any, previous: Optional[Any] = None) -> Emission:
        return Emission(func(value))

    return transform
