"""
fluxatom Persistence Pipeline
=============================

Hydrates an atom from a ``Storage`` backend at construction time and writes
every later commit back to it.

Hydration:
1. Read the record stored under the configured key. A missing key, a failing
   backend or malformed JSON counts as a cache miss.
2. A record whose ``version`` differs from the configured app version is
   removed and the initial value is kept.
3. Otherwise ``data`` (optionally deserialized) is committed. A synchronous
   deserialize commits before the atom is handed out; an asynchronous one
   closes the update gate until it resolves.

While the gate is closed, ``update()`` calls are buffered and nothing is
written. When deserialization resolves the hydrated value is committed, the
gate opens and the buffered actions are replayed in arrival order on top of
the hydrated state. The awaitable returned for a buffered action resolves
only after its replayed commit.

Write-back is a ``pipe`` transform on the atom's stream that always stops
propagation: it derives nothing and only stores
``{"data": <serialized value>, "version": <app version>}``. Writes land in
commit order even when ``serialize`` is asynchronous. Failures are logged and
never retried.
"""

import asyncio
import functools
import inspect
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Optional, Tuple

from .behavior import BehaviorStream
from .config import Concurrency, PersistenceConfig
from .exceptions import ConfigurationError
from .scheduler import UpdateScheduler
from .storage import Storage
from .stream import Emission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistedRecord:
    """The stored shape of an atom's state."""

    data: Any
    version: Optional[str]
    has_data: bool = True

    @classmethod
    def loads(cls, raw: str) -> "PersistedRecord":
        """Parse a stored string. Raises ``ValueError`` when malformed."""
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("persisted record is not a JSON object")
        return cls(
            data=payload.get("data"),
            version=payload.get("version"),
            has_data="data" in payload,
        )

    def dumps(self) -> str:
        return json.dumps({"data": self.data, "version": self.version})


class PersistencePipeline:
    """
    Couples an atom's stream with a storage backend.

    Args:
        stream: The atom's stream.
        scheduler: Receives buffered actions once hydration finishes.
        config: Key, app version and transforms.
        storage: Backend holding the serialized record.
    """

    def __init__(
        self,
        stream: BehaviorStream,
        scheduler: UpdateScheduler,
        config: PersistenceConfig,
        storage: Storage,
    ) -> None:
        self._stream = stream
        self._scheduler = scheduler
        self._config = config
        self._storage = storage
        self._hydrating = False
        self._buffer: Deque[Tuple[Any, "asyncio.Future[None]"]] = deque()
        self._hydration: Optional["asyncio.Task[None]"] = None
        self._hydration_error: Optional[BaseException] = None
        self._last_write: Optional["asyncio.Task[None]"] = None
        self._skip_seed_write = False
        self._writer = None

    @property
    def config(self) -> PersistenceConfig:
        return self._config

    @property
    def hydrating(self) -> bool:
        return self._hydrating

    @property
    def hydration_error(self) -> Optional[BaseException]:
        return self._hydration_error

    @property
    def buffered(self) -> int:
        """Number of actions waiting for hydration to finish."""
        return len(self._buffer)

    # ========================================================================
    # HYDRATION
    # ========================================================================

    def start(self) -> None:
        """Hydrate the stream, then attach write-back."""
        record = self._read()
        if record is None:
            logger.debug("No persisted record for %r", self._config.key)
        elif record.version != self._config.app_version:
            logger.warning(
                "Discarding persisted %r: stored version %r, app version %r",
                self._config.key,
                record.version,
                self._config.app_version,
            )
            self._remove()
            self._skip_seed_write = True
        elif record.has_data:
            self._hydrate(record.data)
        self._attach()

    def _read(self) -> Optional[PersistedRecord]:
        try:
            raw = self._storage.get(self._config.key)
        except Exception:
            logger.warning(
                "Reading persisted %r failed, starting from initial value",
                self._config.key,
                exc_info=True,
            )
            return None
        if raw is None:
            return None
        try:
            return PersistedRecord.loads(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Malformed persisted record for %r, starting from initial value",
                self._config.key,
            )
            return None

    def _remove(self) -> None:
        try:
            self._storage.remove(self._config.key)
        except Exception:
            logger.exception("Removing persisted %r failed", self._config.key)

    def _hydrate(self, data: Any) -> None:
        deserialize = self._config.deserialize
        if deserialize is None:
            self._stream.next(data)
            return

        try:
            result = deserialize(data)
        except Exception:
            logger.exception(
                "Deserializing %r failed, starting from initial value",
                self._config.key,
            )
            self._skip_seed_write = True
            return

        if not inspect.isawaitable(result):
            self._stream.next(result)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            raise ConfigurationError(
                "An asynchronous deserialize needs a running event loop"
            ) from None
        self._hydrating = True
        self._hydration = loop.create_task(self._finish_hydration(result))

    async def _finish_hydration(self, pending: Any) -> None:
        try:
            hydrated = await pending
        except Exception as e:
            self._hydration_error = e
            logger.exception(
                "Asynchronous deserialize of %r failed, keeping initial value",
                self._config.key,
            )
        else:
            # Not written back: hydrating is still set
            self._stream.next(hydrated)
        self._hydrating = False
        self._replay()

    def _replay(self) -> None:
        if self._buffer:
            logger.debug(
                "Replaying %d update(s) buffered during hydration of %r",
                len(self._buffer),
                self._config.key,
            )
        while self._buffer:
            action, held = self._buffer.popleft()
            if held.cancelled():
                logger.debug(
                    "Dropping cancelled buffered update of %r", self._config.key
                )
                continue
            task = self._scheduler.submit(action, policy=Concurrency.QUEUE)
            task.add_done_callback(functools.partial(_settle_held, held))

    async def wait_hydrated(self) -> None:
        if self._hydration is not None:
            await asyncio.shield(self._hydration)

    # ========================================================================
    # UPDATE GATE
    # ========================================================================

    def buffer(self, action: Any) -> Optional["asyncio.Future[None]"]:
        """
        Hold ``action`` back while hydrating.

        Returns a future resolving once the replayed action has committed (or
        raising what its reducer raised), or None when the gate is open.
        """
        if not self._hydrating:
            return None
        held = asyncio.get_running_loop().create_future()
        self._buffer.append((action, held))
        logger.debug("Buffered update of %r until hydration finishes", self._config.key)
        return held

    # ========================================================================
    # WRITE-BACK
    # ========================================================================

    def _attach(self) -> None:
        self._writer = self._stream.pipe(self._write_back)

    def detach(self) -> None:
        """Stop writing commits to storage."""
        if self._writer is not None:
            self._writer.unsubscribe_from_parent()
            self._writer = None

    def _write_back(self, value: Any, previous: Any) -> Emission:
        if self._skip_seed_write:
            # First call is the pipe seed with the initial value
            self._skip_seed_write = False
        elif not self._hydrating:
            self._write(value)
        return Emission(value, stop_propagation=True)

    def _write(self, value: Any) -> None:
        serialize = self._config.serialize
        try:
            data = serialize(value) if serialize is not None else value
        except Exception:
            logger.exception("Serializing %r failed, not persisted", self._config.key)
            return

        chained = self._last_write is not None and not self._last_write.done()
        if not inspect.isawaitable(data) and not chained:
            self._store(data)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(data):
                data.close()
            logger.error(
                "Asynchronous serialize of %r needs a running event loop, not persisted",
                self._config.key,
            )
            return
        self._last_write = loop.create_task(
            self._write_after(self._last_write if chained else None, data)
        )

    async def _write_after(
        self, previous: Optional["asyncio.Task[None]"], data: Any
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        if inspect.isawaitable(data):
            try:
                data = await data
            except Exception:
                logger.exception(
                    "Serializing %r failed, not persisted", self._config.key
                )
                return
        self._store(data)

    def _store(self, data: Any) -> None:
        try:
            raw = PersistedRecord(data, self._config.app_version).dumps()
            self._storage.set(self._config.key, raw)
        except Exception:
            logger.exception("Writing persisted %r failed", self._config.key)

    async def flush(self) -> None:
        """Wait for asynchronous writes still in flight."""
        while self._last_write is not None and not self._last_write.done():
            await asyncio.wait([self._last_write])


def _settle_held(held: "asyncio.Future[None]", task: "asyncio.Future[None]") -> None:
    if held.done():
        return
    if task.cancelled():
        held.cancel()
    elif task.exception() is not None:
        held.set_exception(task.exception())
    else:
        held.set_result(task.result())
