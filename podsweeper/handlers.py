from __future__ import annotations

from typing import Any
import asyncio
import logging

from .game_engine import Coordinate, GameState, flood_fill
from .materializer import GridMaterializer

logger = logging.getLogger(__name__)


class GameHandlers:
    """Game-state transitions for one completed deletion.

    Each handler mutates the loaded state, drives the materializer and saves.
    Store errors (ConflictError included) propagate to the caller, which owns
    the retry policy.
    """

    def __init__(self, store: Any, materializer: GridMaterializer) -> None:
        self.store = store
        self.materializer = materializer

    async def _save(self, state: GameState) -> None:
        await asyncio.to_thread(self.store.save, state)

    async def handle_mine_hit(self, state: GameState, coord: Coordinate) -> None:
        state.reveal(coord.x, coord.y)
        state.set_lost()
        await self._save(state)

        deleted = await self.materializer.wipe_game_resources()
        logger.info(f"[podsweeper] wiped game resources deleted={deleted}")

        await self.materializer.spawn_defeat(coord)
        logger.info(f"[podsweeper] game over - mine hit coords={coord}")

    async def handle_hint_cell(self, state: GameState, coord: Coordinate, value: int) -> None:
        state.reveal(coord.x, coord.y)
        state.add_hint_cell(coord.x, coord.y)

        await self.materializer.spawn_hint(coord, value)

        if state.check_victory():
            await self.handle_victory(state)
            return
        await self._save(state)

    async def handle_empty_cell(self, state: GameState, coord: Coordinate) -> None:
        interior, boundary = flood_fill(state, coord)
        logger.info(
            f"[podsweeper] flood fill complete start={coord} interior={len(interior)} boundary={len(boundary)}"
        )

        for c in interior:
            state.reveal(c.x, c.y)
        for c in interior:
            try:
                await self.materializer.delete_cell(c)
            except Exception as e:
                logger.error(f"[podsweeper] failed to delete cell during flood fill coords={c} error={e}")

        for c in boundary:
            value = state.adjacent_mines(c.x, c.y)
            state.reveal(c.x, c.y)
            state.add_hint_cell(c.x, c.y)
            try:
                await self.materializer.delete_cell(c)
            except Exception as e:
                logger.error(f"[podsweeper] failed to delete cell for hint coords={c} error={e}")
            try:
                await self.materializer.spawn_hint(c, value)
            except Exception as e:
                logger.error(f"[podsweeper] failed to spawn hint coords={c} error={e}")

        if state.check_victory():
            await self.handle_victory(state)
            return
        await self._save(state)

    async def handle_victory(self, state: GameState) -> None:
        state.set_won()
        await self._save(state)
        await self.materializer.spawn_victory(state)
        logger.info(f"[podsweeper] victory clicks={state.clicks} level={state.level}")
