"""Background query execution with per-view sequencing.

Work is scheduled as asyncio tasks and its outcome is posted on a queue that
the owning loop drains once per tick. Each view keeps a monotonically
increasing sequence number; only the outcome carrying the latest number for
its view is ever returned by :meth:`QueryExecutor.drain`, whatever order the
tasks finish in.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine

from .config import DEFAULT_LIMIT_SIZE, DEFAULT_MAX_RETAINED_ROWS
from .db.base import DatabaseClient, QueryHandle
from .db.models import PageRequest
from .guardrails import clamp_limit
from .logging_utils import log_extra


class Purpose(str, Enum):
    CONNECT = "connect"
    TABLES = "tables"
    RECORDS = "records"
    METADATA = "metadata"


class OutcomeStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Outcome:
    view_id: str
    seq: int
    purpose: Purpose
    status: OutcomeStatus
    value: Any = None
    error: Exception | None = None
    append: bool = False
    context: Any = None


@dataclass
class _InFlight:
    seq: int
    task: asyncio.Task
    handle: QueryHandle
    client: DatabaseClient | None


Work = Callable[[QueryHandle], Awaitable[Any]]


class QueryExecutor:
    def __init__(
        self,
        page_size: int = DEFAULT_LIMIT_SIZE,
        max_retained_rows: int = DEFAULT_MAX_RETAINED_ROWS,
    ) -> None:
        self.page_size = page_size
        self.max_retained_rows = max_retained_rows
        self._latest: dict[str, int] = {}
        self._inflight: dict[str, _InFlight] = {}
        self._background: set[asyncio.Task] = set()
        self._channel: asyncio.Queue[Outcome] = asyncio.Queue()
        self._ready = asyncio.Event()
        self._log = logging.getLogger(__name__)

    def latest_seq(self, view_id: str) -> int:
        return self._latest.get(view_id, 0)

    def is_in_flight(self, view_id: str) -> bool:
        inflight = self._inflight.get(view_id)
        return inflight is not None and not inflight.task.done()

    def submit(
        self,
        view_id: str,
        purpose: Purpose,
        work: Work,
        *,
        client: DatabaseClient | None = None,
        append: bool = False,
        context: Any = None,
    ) -> int:
        """Schedule ``work`` for ``view_id`` and return its sequence number.

        Any earlier work still running for the same view is cancelled; its
        outcome, if it still arrives, is discarded as stale.
        """
        seq = self.latest_seq(view_id) + 1
        self._latest[view_id] = seq
        self._supersede(view_id)
        handle = QueryHandle()
        task = asyncio.get_running_loop().create_task(
            self._run(view_id, seq, purpose, work, handle, append, context)
        )
        self._inflight[view_id] = _InFlight(seq=seq, task=task, handle=handle, client=client)
        return seq

    def submit_page(
        self,
        view_id: str,
        client: DatabaseClient,
        request: PageRequest,
        offset: int = 0,
        *,
        limit: int | None = None,
        append: bool = False,
        context: Any = None,
    ) -> int:
        page_size = clamp_limit(limit or self.page_size, self.max_retained_rows)
        return self.submit(
            view_id,
            Purpose.RECORDS,
            lambda handle: client.execute_paginated_query(request, offset, page_size, handle),
            client=client,
            append=append,
            context=context,
        )

    def deactivate(self, view_id: str) -> None:
        """Mark everything issued for ``view_id`` stale and cancel it."""
        if view_id not in self._latest:
            return
        self._latest[view_id] += 1
        self._supersede(view_id)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run fire-and-forget work (teardown, advisory cancel) to completion."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def drain(self) -> list[Outcome]:
        """Return every queued outcome that is still current for its view."""
        fresh: list[Outcome] = []
        while True:
            try:
                outcome = self._channel.get_nowait()
            except asyncio.QueueEmpty:
                break
            if outcome.status is OutcomeStatus.CANCELLED:
                continue
            if outcome.seq != self.latest_seq(outcome.view_id):
                self._log.debug(
                    "Stale result dropped",
                    extra=log_extra(
                        view=outcome.view_id,
                        seq=outcome.seq,
                        latest=self.latest_seq(outcome.view_id),
                    ),
                )
                continue
            fresh.append(outcome)
        self._ready.clear()
        return fresh

    async def wait_for_outcome(self) -> None:
        await self._ready.wait()

    async def wait_idle(self) -> None:
        while True:
            pending = [f.task for f in self._inflight.values() if not f.task.done()]
            pending.extend(t for t in self._background if not t.done())
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        for view_id in list(self._inflight):
            self.deactivate(view_id)
        await self.wait_idle()

    def _supersede(self, view_id: str) -> None:
        previous = self._inflight.pop(view_id, None)
        if previous is None or previous.task.done():
            return
        # A worker still waiting for the link sees the flag and never runs.
        previous.handle.cancel()
        previous.task.cancel()
        if previous.client is not None:
            self.spawn(previous.client.cancel(previous.handle))

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.warning(
                "Background task failed",
                extra=log_extra(error_message=str(task.exception())),
            )

    def _post(self, outcome: Outcome) -> None:
        self._channel.put_nowait(outcome)
        self._ready.set()

    async def _run(
        self,
        view_id: str,
        seq: int,
        purpose: Purpose,
        work: Work,
        handle: QueryHandle,
        append: bool,
        context: Any,
    ) -> None:
        started = time.monotonic()
        try:
            value = await work(handle)
        except asyncio.CancelledError:
            self._post(
                Outcome(view_id, seq, purpose, OutcomeStatus.CANCELLED, append=append, context=context)
            )
            raise
        except Exception as exc:
            # Data-path failures become view-scoped outcomes, never loop failures.
            self._log.warning(
                "Background query failed",
                extra=log_extra(
                    view=view_id,
                    seq=seq,
                    purpose=purpose.value,
                    error_message=str(exc),
                ),
            )
            outcome = Outcome(
                view_id, seq, purpose, OutcomeStatus.ERROR, error=exc, append=append, context=context
            )
        else:
            self._log.debug(
                "Background query finished",
                extra=log_extra(
                    view=view_id,
                    seq=seq,
                    purpose=purpose.value,
                    elapsed=round(time.monotonic() - started, 3),
                ),
            )
            outcome = Outcome(
                view_id, seq, purpose, OutcomeStatus.OK, value=value, append=append, context=context
            )
        finally:
            current = self._inflight.get(view_id)
            if current is not None and current.seq == seq:
                del self._inflight[view_id]
        self._post(outcome)
