"""
fluxatom Binding
================

Connects an atom to a view layer: a component reads ``binding.value`` and
calls ``binding.update``. The binding subscribes once when entered and
unsubscribes when left; ``update`` is the same callable for the whole
lifetime of the binding.

Example:
    ```python
    with AtomBinding(counter, on_change=redraw) as view:
        render(view.value)
        button.on_click(lambda: view.update(1))
    ```
"""

from typing import Any, Callable, Generic, Optional

from .atom import Atom
from .stream import T


class AtomBinding(Generic[T]):
    """Keeps a local copy of an atom's value while open."""

    def __init__(
        self, atom: Atom[T], on_change: Optional[Callable[[T], None]] = None
    ) -> None:
        self._atom = atom
        self._on_change = on_change
        self._value: T = atom.value
        self._revoke: Optional[Callable[[], None]] = None
        # Same callable for the lifetime of the binding
        self.update = atom.update

    @property
    def value(self) -> T:
        return self._value

    @property
    def is_open(self) -> bool:
        return self._revoke is not None

    def open(self) -> "AtomBinding[T]":
        if self._revoke is None:
            self._revoke = self._atom.stream.subscribe(self._receive)
        return self

    def close(self) -> None:
        revoke, self._revoke = self._revoke, None
        if revoke is not None:
            revoke()

    def _receive(self, value: T) -> None:
        self._value = value
        if self._on_change is not None:
            self._on_change(value)

    def __enter__(self) -> "AtomBinding[T]":
        return self.open()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
