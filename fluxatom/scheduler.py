"""
fluxatom Update Scheduler
=========================

Serializes ``update()`` requests of one atom against a concurrency policy and
commits reducer results to the atom's ``BehaviorStream``.

Descriptor lifecycle::

    submitted -> awaiting-turn -> reducing -> committed | discarded | failed

Policies:
- queue: every request commits, in submission order. A request waits for
  every descriptor that was pending when it was submitted, so an early
  request with a slow reducer still commits before a later, faster one.
- throttle: while the oldest pending request is younger than the window, new
  requests resolve immediately and do nothing.
- debounce: a new request flags every pending request younger than the window
  as skipped; skipped requests never commit but still complete.

The window is compared against submission timestamps only. No timers run.

Skipped and throttled requests are not cancelled. A reducer already running
when its request is superseded runs to completion and its result is dropped.
"""

import asyncio
import functools
import inspect
import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .behavior import BehaviorStream
from .config import Concurrency, SchedulerConfig

logger = logging.getLogger(__name__)

Reducer = Callable[[Any, Any], Union[Any, Awaitable[Any]]]


class DescriptorState(Enum):
    """Where an update request is in its lifecycle."""

    SUBMITTED = "submitted"
    AWAITING_TURN = "awaiting-turn"
    REDUCING = "reducing"
    COMMITTED = "committed"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass(eq=False)
class UpdateDescriptor:
    """
    Bookkeeping for one in-flight update request.

    Attributes:
        seq: Submission sequence number, unique per scheduler.
        done: Completion signal. Resolved (never failed) once the request
            committed, was discarded or failed, so waiters are never blocked.
        submitted_at: Clock reading at submission.
        skip: Set when a later debounced request supersedes this one.
    """

    seq: int
    done: "asyncio.Future[None]"
    submitted_at: float
    skip: bool = False
    state: DescriptorState = DescriptorState.SUBMITTED


class UpdateScheduler:
    """
    Runs reducers and commits their results under a concurrency policy.

    Args:
        stream: Stream receiving committed states.
        reducer: ``reducer(state, action)`` returning the new state, or an
            awaitable of it. Without a reducer the action is the new state.
        config: Policy and window.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        stream: BehaviorStream,
        reducer: Optional[Reducer] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._stream = stream
        self._reducer = reducer
        self._config = config or SchedulerConfig()
        self._clock = clock or time.monotonic
        self._seqs = itertools.count()
        # Insertion ordered, keyed by seq: O(1) removal of finished requests
        self._pending: Dict[int, UpdateDescriptor] = {}

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def pending(self) -> List[UpdateDescriptor]:
        """Descriptors still eligible to commit, oldest first."""
        return list(self._pending.values())

    def submit(
        self, action: Any, policy: Optional[Concurrency] = None
    ) -> "asyncio.Future[None]":
        """
        Submit ``action`` and return an awaitable resolving after its commit
        or discard.

        All bookkeeping happens synchronously here, so submission order is the
        order of ``submit`` calls. Must be called from a running event loop.

        Args:
            action: Passed to the reducer, or committed as is without one.
            policy: Overrides the configured policy for this request only.
        """
        loop = asyncio.get_running_loop()
        policy = policy or self._config.policy
        now = self._clock()

        if policy is Concurrency.THROTTLE and self._pending:
            first = next(iter(self._pending.values()))
            if self._config.within_window(now - first.submitted_at):
                logger.debug(
                    "Throttled update: request #%d still in flight", first.seq
                )
                throttled = loop.create_future()
                throttled.set_result(None)
                return throttled

        if policy is Concurrency.DEBOUNCE:
            for seq, superseded in list(self._pending.items()):
                if self._config.within_window(now - superseded.submitted_at):
                    superseded.skip = True
                    del self._pending[seq]

        predecessors = [descriptor.done for descriptor in self._pending.values()]
        descriptor = UpdateDescriptor(
            seq=next(self._seqs), done=loop.create_future(), submitted_at=now
        )
        self._pending[descriptor.seq] = descriptor
        task = loop.create_task(self._run(descriptor, action, predecessors))
        # A task cancelled before its first step never enters _run
        task.add_done_callback(functools.partial(self._release, descriptor))
        return task

    async def drain(self) -> None:
        """Wait until every currently pending request has completed."""
        waiting = [descriptor.done for descriptor in self._pending.values()]
        if waiting:
            await asyncio.wait(waiting)

    async def _run(
        self,
        descriptor: UpdateDescriptor,
        action: Any,
        predecessors: List["asyncio.Future[None]"],
    ) -> None:
        try:
            if predecessors:
                descriptor.state = DescriptorState.AWAITING_TURN
                await asyncio.wait(predecessors)

            if descriptor.skip:
                self._discard(descriptor)
                return

            descriptor.state = DescriptorState.REDUCING
            try:
                new_state = await self._reduce(action)
            except Exception:
                if descriptor.skip:
                    logger.exception(
                        "Reducer of superseded update #%d failed", descriptor.seq
                    )
                    self._discard(descriptor)
                    return
                descriptor.state = DescriptorState.FAILED
                raise

            if descriptor.skip:
                self._discard(descriptor)
                return

            self._stream.next(new_state)
            descriptor.state = DescriptorState.COMMITTED
            logger.debug("Committed update #%d", descriptor.seq)
        finally:
            self._pending.pop(descriptor.seq, None)
            if not descriptor.done.done():
                descriptor.done.set_result(None)

    async def _reduce(self, action: Any) -> Any:
        if self._reducer is None:
            return action
        result = self._reducer(self._stream.value, action)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _release(
        self, descriptor: UpdateDescriptor, task: "asyncio.Future[None]"
    ) -> None:
        self._pending.pop(descriptor.seq, None)
        if not descriptor.done.done():
            descriptor.state = DescriptorState.DISCARDED
            logger.debug("Update #%d cancelled before it ran", descriptor.seq)
            descriptor.done.set_result(None)

    def _discard(self, descriptor: UpdateDescriptor) -> None:
        descriptor.state = DescriptorState.DISCARDED
        logger.debug("Discarded superseded update #%d", descriptor.seq)
