"""
Polling scheduler for the authenticated lifetime.

Fonctionnement:
    1. start(tasks) lance une boucle asyncio par PollingTask
    2. Chaque boucle exécute un tick immédiatement puis attend interval_s
    3. Chaque tick relit la session (jamais de copie capturée) et la passe
       au TokenGuard; session inutilisable => tick ignoré, aucune requête
    4. stop() annule les boucles en attente, de façon synchrone et idempotente;
       un tick déjà en cours termine sa requête et son résultat est ignoré

A 401 raised by a tick's action is handed to `on_unauthorized`; any other
failure is logged and the loop waits for the next interval.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from .auth_events import ObservabilityEvents, TickOutcome
from .errors import UnauthorizedError
from .observability import EventLog
from .session import Session
from .token_guard import TokenGuard

logger = logging.getLogger("emailsort.polling")

SessionAccessor = Callable[[], Awaitable[Optional[Session]]]

DATA_REFRESH = "data-refresh"
COLLECTION_TRIGGER = "collection-trigger"


@dataclass(frozen=True)
class PollingTask:
    task_id: str
    interval_s: float
    action: Callable[[Session], Awaitable[Any]]
    on_result: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    owner: str = "authenticated-lifetime"


class PollingScheduler:
    """
    Owns timer handles only; session data is read through the accessor on
    every tick.
    """

    def __init__(
        self,
        session_accessor: SessionAccessor,
        token_guard: TokenGuard,
        on_unauthorized: Callable[[UnauthorizedError], None],
        is_active: Callable[[], bool] = lambda: True,
        events: Optional[EventLog] = None,
    ) -> None:
        self._session_accessor = session_accessor
        self._guard = token_guard
        self._on_unauthorized = on_unauthorized
        self._is_active = is_active
        self._events = events or EventLog()
        self.running = False
        self._generation = 0
        self._tasks: Dict[str, asyncio.Task] = {}
        self._ticking: Set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    @property
    def task_ids(self) -> List[str]:
        return list(self._tasks)

    def start(self, tasks: Sequence[PollingTask]) -> bool:
        """Start one loop per task. Returns False (no-op) when already running."""
        if self.running:
            logger.warning("polling_start status=already_running tasks=%s", len(self._tasks))
            return False

        self.running = True
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        for task in tasks:
            self._tasks[task.task_id] = loop.create_task(
                self._run_loop(task, generation), name=f"polling:{task.task_id}"
            )
        logger.info("polling_start status=started tasks=%s", ",".join(self._tasks))
        return True

    def stop(self) -> None:
        """
        Cancel every loop waiting for its next tick. A loop inside a tick is left
        to finish its request; the generation check then discards the result.
        Safe to call repeatedly or before start.
        """
        if not self.running and not self._tasks:
            return

        self.running = False
        self._generation += 1
        current = asyncio.current_task() if _has_running_loop() else None
        for task in self._tasks.values():
            # a loop stopping itself exits through the generation check
            if task is not current and task not in self._ticking:
                task.cancel()
        self._tasks.clear()
        logger.info("polling_stop status=stopped")

    async def shutdown(self) -> None:
        """stop() and wait until the cancelled loops have finished; in-flight ticks drain on their own."""
        pending = [
            t for t in self._tasks.values()
            if t is not asyncio.current_task() and t not in self._ticking
        ]
        self.stop()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _is_current(self, generation: int) -> bool:
        return self.running and generation == self._generation

    async def _run_loop(self, task: PollingTask, generation: int) -> None:
        me = asyncio.current_task()
        while self._is_current(generation):
            self._ticking.add(me)
            try:
                await self._tick(task, generation)
            finally:
                self._ticking.discard(me)
            if not self._is_current(generation):
                break
            await asyncio.sleep(task.interval_s)

    async def _tick(self, task: PollingTask, generation: int) -> None:
        try:
            session = await self._session_accessor()
        except Exception as e:
            logger.error("polling_session_read_error task=%s error=%s", task.task_id, repr(e))
            session = None

        check = self._guard.classify(session)
        if not check.usable:
            self._emit(task, TickOutcome.SKIPPED, reason=check.status.value)
            return

        try:
            result = await task.action(check.session)
        except UnauthorizedError as e:
            self._emit(task, TickOutcome.UNAUTHORIZED, endpoint=e.endpoint)
            if self._is_current(generation):
                self._on_unauthorized(e)
            return
        except Exception as e:
            self._emit(task, TickOutcome.FAILURE, error=repr(e))
            if task.on_error is not None and self._is_current(generation):
                task.on_error(e)
            return

        if not self._is_current(generation) or not self._is_active():
            self._emit(task, TickOutcome.DISCARDED)
            return

        if task.on_result is not None:
            try:
                task.on_result(result)
            except Exception as e:
                logger.error("polling_result_handler_error task=%s error=%s", task.task_id, repr(e), exc_info=True)
        self._emit(task, TickOutcome.SUCCESS)

    def _emit(self, task: PollingTask, outcome: str, **fields: Any) -> None:
        self._events.emit(ObservabilityEvents.TICK, task=task.task_id, outcome=outcome, **fields)


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def default_polling_tasks(
    api: Any,
    refresh_interval_s: float,
    collection_interval_s: float,
    on_snapshot: Optional[Callable[[Any], None]] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> List[PollingTask]:
    """The short-period data refresh and the medium-period collection trigger."""
    return [
        PollingTask(DATA_REFRESH, refresh_interval_s, api.fetch_snapshot,
                    on_result=on_snapshot, on_error=on_error),
        PollingTask(COLLECTION_TRIGGER, collection_interval_s, api.trigger_collection,
                    on_error=on_error),
    ]
