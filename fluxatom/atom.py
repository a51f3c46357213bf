"""
fluxatom Atom - Observable State Container
==========================================

An atom owns one ``BehaviorStream``. Its single write path, ``update()``,
passes through the persistence gate (while a persisted record is still being
deserialized) and then through the update scheduler, which runs the reducer
and commits the result.

Example:
    ```python
    counter = Atom(0, reducer=lambda state, n: state + n)
    counter.stream.subscribe(print)      # prints 0 right away

    async def main():
        await counter.update(2)          # prints 2
        await counter.update(3)          # prints 5

    asyncio.run(main())
    ```

Persisted atom:
    ```python
    todos = Atom([], persist_key="todos", app_version="2", storage=JSONFileStorage("state.json"))
    ```
"""

import asyncio
from typing import Any, Callable, Generic, Optional, Union

from .behavior import BehaviorStream
from .config import Concurrency, PersistenceConfig, SchedulerConfig, Transform
from .exceptions import ConfigurationError, HydrationError
from .persistence import PersistencePipeline
from .scheduler import Reducer, UpdateScheduler
from .storage import Storage, get_default_storage
from .stream import Comparator, T


class Atom(Generic[T]):
    """
    Single-writer observable state.

    Args:
        initial_value: State until the first commit or hydration.
        reducer: ``reducer(state, action)`` (sync or async). Without one the
            action replaces the state.
        persist_key: Enables persistence under this storage key.
        app_version: Version stored with the data; a stored record with a
            different version is discarded.
        serialize: Transform (sync or async) applied before writing.
        deserialize: Transform (sync or async) applied to stored data.
        equals: Comparator used to suppress repeated notifications.
        concurrency: ``"queue"``, ``"throttle"`` or ``"debounce"``.
        window: Seconds during which throttle/debounce suppression applies.
            ``None`` means unbounded.
        storage: Backend for persistence. Defaults to the shared
            ``get_default_storage()``.
        clock: Monotonic clock in seconds used for windows.

    An asynchronous ``deserialize`` requires constructing the atom inside a
    running event loop; ``update()`` always does.
    """

    def __init__(
        self,
        initial_value: T,
        reducer: Optional[Reducer] = None,
        persist_key: Optional[str] = None,
        app_version: Optional[str] = None,
        serialize: Optional[Transform] = None,
        deserialize: Optional[Transform] = None,
        equals: Optional[Comparator] = None,
        concurrency: Union[Concurrency, str] = Concurrency.QUEUE,
        window: Optional[float] = None,
        storage: Optional[Storage] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if reducer is not None and not callable(reducer):
            raise ConfigurationError("reducer must be callable")
        if equals is not None and not callable(equals):
            raise ConfigurationError("equals must be callable")

        self._stream: BehaviorStream[T] = BehaviorStream(initial_value, equals=equals)
        self._scheduler = UpdateScheduler(
            self._stream,
            reducer=reducer,
            config=SchedulerConfig(policy=concurrency, window=window),
            clock=clock,
        )

        self._pipeline: Optional[PersistencePipeline] = None
        if persist_key is not None:
            self._pipeline = PersistencePipeline(
                self._stream,
                self._scheduler,
                PersistenceConfig(
                    key=persist_key,
                    app_version=app_version,
                    serialize=serialize,
                    deserialize=deserialize,
                ),
                storage if storage is not None else get_default_storage(),
            )
            self._pipeline.start()

    @property
    def stream(self) -> BehaviorStream[T]:
        return self._stream

    @property
    def value(self) -> T:
        return self._stream.value

    @property
    def hydrating(self) -> bool:
        return self._pipeline is not None and self._pipeline.hydrating

    @property
    def scheduler(self) -> UpdateScheduler:
        return self._scheduler

    @property
    def persistence(self) -> Optional[PersistencePipeline]:
        return self._pipeline

    def update(self, action: Any) -> "asyncio.Future[None]":
        """
        Request a state change.

        Returns an awaitable that resolves once this request has committed or
        been discarded by the concurrency policy, and raises whatever the
        reducer raised. While a persisted record is still being deserialized
        the action is buffered and replayed once hydration finishes.
        """
        if self._pipeline is not None:
            held = self._pipeline.buffer(action)
            if held is not None:
                return held
        return self._scheduler.submit(action)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Shortcut for ``atom.stream.subscribe``."""
        return self._stream.subscribe(callback)

    async def wait_hydrated(self, strict: bool = False) -> None:
        """
        Wait for an asynchronous hydration to finish.

        Args:
            strict: Raise ``HydrationError`` if deserialization failed.
        """
        if self._pipeline is None:
            return
        await self._pipeline.wait_hydrated()
        if strict and self._pipeline.hydration_error is not None:
            raise HydrationError(
                f"Hydrating {self._pipeline.config.key!r} failed"
            ) from self._pipeline.hydration_error

    async def settle(self) -> None:
        """Wait for pending updates and asynchronous writes to finish."""
        await self._scheduler.drain()
        if self._pipeline is not None:
            await self._pipeline.flush()

    def close(self) -> None:
        """Detach persistence; the atom keeps working in memory."""
        if self._pipeline is not None:
            self._pipeline.detach()

    def __repr__(self) -> str:
        return (
            f"Atom({self._stream.value!r}, "
            f"concurrency={self._scheduler.config.policy.value!r})"
        )


def atom(initial_value: Any, **options: Any) -> Atom[Any]:
    """Create an ``Atom``; keyword options are those of the constructor."""
    return Atom(initial_value, **options)
