from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import asyncio
import logging
import time

from .errors import AlreadyExistsError, CreationError, ReadyTimeoutError, ResourceNotFoundError
from .game_engine import (
    DEFEAT_NAME,
    VICTORY_NAME,
    Coordinate,
    GameState,
    is_cell_name,
    is_hint_name,
)
from .resources import (
    ANNOTATION_HINT,
    ANNOTATION_MESSAGE,
    APP_NAME,
    LABEL_APP,
    LABEL_COMPONENT,
    LABEL_COORD_X,
    LABEL_COORD_Y,
    LABEL_GAME_ID,
    Resource,
    ResourceManager,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.5

DEFEAT_MESSAGE = """
    _ ._  _ , _ ._
  (_ ' ( `  )_  .__)
( (  (    )   `)  ) _)
(__ (_   (_ . _) _) ,__)
    `~~`\\ ' . /`~~`
         ;   ;
         /   \\
_________/_ __ \\_________

    BOOM!

  You hit a mine at ({x}, {y})!

     GAME OVER
"""

VICTORY_MESSAGE = """
    ___________
   '._==_==_=_.'
   .-\\:      /-.
  | (|:.     |) |
   '-|:.     |-'
     \\::.    /
      '::. .'
        ) (
      _.' '._

  VICTORY!

  Level: {level}
  Clicks: {clicks}
  Mines: {mines}

  Congratulations!
"""


@dataclass
class SpawnResult:
    total: int = 0
    created: int = 0
    failed: int = 0
    failed_coords: List[Coordinate] = field(default_factory=list)
    duration: float = 0.0


def game_id(state: GameState) -> str:
    return f"{state.seed}-{int(state.started_at.timestamp())}"


class GridMaterializer:
    """Creates and removes the resources that make the grid visible."""

    def __init__(
        self,
        resources: ResourceManager,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self.resources = resources
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self.retry_attempts = retry_attempts if retry_attempts > 0 else DEFAULT_RETRY_ATTEMPTS
        self.retry_delay = retry_delay if retry_delay >= 0 else DEFAULT_RETRY_DELAY

    @property
    def namespace(self) -> str:
        return self.resources.namespace

    def _labels(self, component: str, coord: Optional[Coordinate] = None) -> Dict[str, str]:
        labels = {LABEL_APP: APP_NAME, LABEL_COMPONENT: component}
        if coord is not None:
            labels[LABEL_COORD_X] = str(coord.x)
            labels[LABEL_COORD_Y] = str(coord.y)
        return labels

    def build_cell(self, coord: Coordinate, gid: str) -> Resource:
        labels = self._labels("cell", coord)
        labels[LABEL_GAME_ID] = gid
        return Resource(name=coord.name, namespace=self.namespace, labels=labels)

    async def spawn_grid(self, state: GameState) -> SpawnResult:
        """Create one cell resource per coordinate.

        Batches run their coordinates concurrently. A coordinate that still fails
        after all retries is recorded and the spawn carries on; CreationError is
        raised at the end if anything failed, with the result attached.
        """
        start = time.monotonic()
        coords = [Coordinate(x, y) for x in range(state.size) for y in range(state.size)]
        result = SpawnResult(total=len(coords))
        gid = game_id(state)

        for i in range(0, len(coords), self.batch_size):
            batch = coords[i : i + self.batch_size]
            logger.info(f"[podsweeper] spawning batch start={i} end={i + len(batch)} total={len(coords)}")
            outcomes = await asyncio.gather(*(self._create_with_retry(c, gid) for c in batch))
            for coord, ok in zip(batch, outcomes):
                if ok:
                    result.created += 1
                else:
                    result.failed += 1
                    result.failed_coords.append(coord)

        result.duration = time.monotonic() - start
        logger.info(
            f"[podsweeper] grid spawn complete created={result.created} failed={result.failed} "
            f"duration={result.duration:.3f}s"
        )
        if result.failed:
            raise CreationError(f"failed to create {result.failed} cell resources", result)
        return result

    async def _create_with_retry(self, coord: Coordinate, gid: str) -> bool:
        last_err: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            if attempt > 0:
                await asyncio.sleep(self.retry_delay)
            try:
                await self.resources.create(self.build_cell(coord, gid))
                return True
            except AlreadyExistsError:
                return True
            except Exception as e:
                last_err = e
        logger.error(f"[podsweeper] failed to create cell coord={coord} attempts={self.retry_attempts} error={last_err}")
        return False

    async def cleanup_grid(self) -> None:
        """Delete every game resource in the namespace. Nothing to delete is fine."""
        items = await self.resources.list_by_tag({LABEL_APP: APP_NAME})
        logger.info(f"[podsweeper] cleaning up game resources count={len(items)}")
        last_err: Optional[Exception] = None
        deleted = 0
        for res in items:
            try:
                await self.resources.delete(res.name)
                deleted += 1
            except ResourceNotFoundError:
                pass
            except Exception as e:
                logger.error(f"[podsweeper] failed to delete resource name={res.name} error={e}")
                last_err = e
        logger.info(f"[podsweeper] cleanup complete deleted={deleted}")
        if last_err is not None:
            raise last_err

    async def wait_for_ready(self, expected: int, timeout: float, interval: float = 1.0) -> None:
        deadline = time.monotonic() + timeout
        while True:
            items = await self.resources.list_by_tag({LABEL_APP: APP_NAME, LABEL_COMPONENT: "cell"})
            ready = sum(1 for r in items if r.ready)
            logger.debug(f"[podsweeper] waiting for cells ready={ready} expected={expected}")
            if ready >= expected:
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadyTimeoutError(f"only {ready}/{expected} cells ready after {timeout}s")
            await asyncio.sleep(min(interval, remaining))

    async def delete_cell(self, coord: Coordinate) -> None:
        try:
            await self.resources.delete(coord.name)
        except ResourceNotFoundError:
            pass

    async def spawn_hint(self, coord: Coordinate, value: int) -> None:
        res = Resource(
            name=coord.hint_name,
            namespace=self.namespace,
            labels=self._labels("hint", coord),
            annotations={ANNOTATION_HINT: str(value)},
        )
        try:
            await self.resources.create(res)
        except AlreadyExistsError:
            logger.info(f"[podsweeper] hint already present name={res.name}")

    async def wipe_game_resources(self) -> int:
        """Best-effort removal of every cell and hint resource. Returns how many went."""
        items = await self.resources.list_by_tag({LABEL_APP: APP_NAME})
        deleted = 0
        for res in items:
            if not (is_cell_name(res.name) or is_hint_name(res.name)):
                continue
            try:
                await self.resources.delete(res.name)
                deleted += 1
            except ResourceNotFoundError:
                pass
            except Exception as e:
                logger.error(f"[podsweeper] failed to delete resource name={res.name} error={e}")
        return deleted

    async def spawn_defeat(self, coord: Coordinate) -> None:
        await self._spawn_marker(DEFEAT_NAME, "defeat", DEFEAT_MESSAGE.format(x=coord.x, y=coord.y))

    async def spawn_victory(self, state: GameState) -> None:
        message = VICTORY_MESSAGE.format(level=state.level, clicks=state.clicks, mines=state.mine_count)
        await self._spawn_marker(VICTORY_NAME, "victory", message)

    async def _spawn_marker(self, name: str, component: str, message: str) -> None:
        res = Resource(
            name=name,
            namespace=self.namespace,
            labels=self._labels(component),
            annotations={ANNOTATION_MESSAGE: message},
        )
        try:
            await self.resources.create(res)
        except AlreadyExistsError:
            logger.info(f"[podsweeper] marker already present name={name}")
