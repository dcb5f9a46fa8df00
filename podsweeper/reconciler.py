from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import asyncio
import logging

from .errors import ConflictError, SerializationError
from .game_engine import Coordinate, GameStatus, is_hint_name, parse_cell_name
from .handlers import GameHandlers
from .materializer import GridMaterializer
from .resources import ResourceManager

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_RETRIES = 5


class Outcome(str, Enum):
    IGNORED = "ignored"
    STILL_PRESENT = "still_present"
    TERMINATING = "terminating"
    NO_GAME = "no_game"
    GAME_OVER = "game_over"
    ALREADY_REVEALED = "already_revealed"
    MINE_HIT = "mine_hit"
    HINT = "hint"
    FLOOD_FILL = "flood_fill"


@dataclass(frozen=True)
class ResourceEvent:
    """A change notification for one named resource, as a watch would deliver it."""

    name: str
    namespace: str


class Reconciler:
    """Turns completed deletions into game-state transitions.

    Not safe to run concurrently against the same store; feed it through a
    Dispatcher. On a save conflict the whole load-classify-mutate cycle runs
    again against the fresh document.
    """

    def __init__(
        self,
        store: Any,
        resources: ResourceManager,
        materializer: Optional[GridMaterializer] = None,
        max_conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
    ) -> None:
        self.store = store
        self.resources = resources
        self.namespace = resources.namespace
        self.materializer = materializer or GridMaterializer(resources)
        self.handlers = GameHandlers(store, self.materializer)
        self.max_conflict_retries = max_conflict_retries

    async def reconcile(self, event: ResourceEvent) -> Outcome:
        if event.namespace != self.namespace:
            return Outcome.IGNORED
        if is_hint_name(event.name):
            # hints are read-only; removing one is not a click
            return Outcome.IGNORED
        coord = parse_cell_name(event.name)
        if coord is None:
            return Outcome.IGNORED

        res = await self.resources.get(event.name)
        if res is not None:
            if res.terminating:
                # handled once removal completes
                logger.info(f"[podsweeper] resource is being deleted name={event.name}")
                return Outcome.TERMINATING
            return Outcome.STILL_PRESENT

        logger.info(f"[podsweeper] resource deleted name={event.name} x={coord.x} y={coord.y}")
        return await self.handle_deletion(coord)

    async def handle_deletion(self, coord: Coordinate) -> Outcome:
        attempt = 0
        while True:
            try:
                return await self._handle_once(coord)
            except ConflictError as e:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    raise
                logger.warning(f"[podsweeper] conflict saving game state, reclassifying coords={coord} attempt={attempt} error={e}")

    async def _handle_once(self, coord: Coordinate) -> Outcome:
        state = await asyncio.to_thread(self.store.load)
        if state is None:
            logger.info("[podsweeper] no active game, ignoring deletion")
            return Outcome.NO_GAME
        if state.status != GameStatus.PLAYING:
            logger.info(f"[podsweeper] game already ended status={state.status.value}")
            return Outcome.GAME_OVER
        if state.is_revealed(coord.x, coord.y):
            logger.info(f"[podsweeper] cell already revealed coords={coord}")
            return Outcome.ALREADY_REVEALED
        if not state.is_valid(coord.x, coord.y):
            logger.info(f"[podsweeper] coordinate outside grid coords={coord} size={state.size}")
            return Outcome.IGNORED

        if state.is_mine(coord.x, coord.y):
            logger.info(f"[podsweeper] mine hit! coords={coord}")
            await self.handlers.handle_mine_hit(state, coord)
            return Outcome.MINE_HIT

        adjacent = state.adjacent_mines(coord.x, coord.y)
        if adjacent > 0:
            logger.info(f"[podsweeper] safe cell with hints coords={coord} adjacent={adjacent}")
            await self.handlers.handle_hint_cell(state, coord, adjacent)
            return Outcome.HINT

        logger.info(f"[podsweeper] empty cell, triggering propagation coords={coord}")
        await self.handlers.handle_empty_cell(state, coord)
        return Outcome.FLOOD_FILL


class Dispatcher:
    """Single consumer of resource events: only one mutation runs at a time.

    Any number of producers may call ``submit``. A failed event is retried
    inline up to ``max_attempts`` times, then put back at the tail of the queue
    so other events get a turn. Waits between attempts grow exponentially from
    ``backoff`` up to ``max_backoff`` seconds. Only malformed state drops an
    event.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        max_attempts: int = 5,
        backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self.reconciler = reconciler
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.queue: asyncio.Queue = asyncio.Queue()
        self._failures: Dict[ResourceEvent, int] = {}
        self._task: Optional[asyncio.Task] = None

    def submit(self, event: ResourceEvent) -> None:
        self.queue.put_nowait(event)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def drain(self) -> None:
        await self.queue.join()

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.process(event)
            finally:
                self.queue.task_done()

    def delay(self, failures: int) -> float:
        return min(self.backoff * 2 ** min(failures - 1, 16), self.max_backoff)

    async def process(self, event: ResourceEvent) -> Optional[Outcome]:
        """Reconcile one event.

        Returns None when the event was dropped or put back on the queue.
        """
        for _ in range(self.max_attempts):
            try:
                outcome = await self.reconciler.reconcile(event)
            except SerializationError as e:
                self._failures.pop(event, None)
                logger.error(f"[podsweeper] game state is malformed, dropping event name={event.name} error={e}")
                return None
            except Exception as e:
                failures = self._failures.get(event, 0) + 1
                self._failures[event] = failures
                delay = self.delay(failures)
                logger.warning(f"[podsweeper] event failed name={event.name} failures={failures} retry_in={delay} error={e}")
                await asyncio.sleep(delay)
            else:
                self._failures.pop(event, None)
                return outcome

        logger.error(f"[podsweeper] requeueing event name={event.name} failures={self._failures.get(event)}")
        self.submit(event)
        return None
