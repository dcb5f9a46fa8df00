from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from collections import deque
import json
import re

from .errors import SerializationError


class GameStatus(str, Enum):
    PLAYING = "playing"
    WON = "won"
    LOST = "lost"


@dataclass(frozen=True)
class Coordinate:
    x: int
    y: int

    def __str__(self) -> str:
        return f"({self.x},{self.y})"

    @property
    def name(self) -> str:
        return cell_name(self.x, self.y)

    @property
    def hint_name(self) -> str:
        return hint_name(self.x, self.y)


CELL_NAME_RE = re.compile(r"cell-([0-9]+)-([0-9]+)")
HINT_NAME_RE = re.compile(r"hint-([0-9]+)-([0-9]+)")
VICTORY_NAME = "victory"
DEFEAT_NAME = "defeat"


def cell_name(x: int, y: int) -> str:
    return f"cell-{x}-{y}"


def hint_name(x: int, y: int) -> str:
    return f"hint-{x}-{y}"


def _parse(pattern: re.Pattern, name: str) -> Optional[Coordinate]:
    m = pattern.fullmatch(name)
    if m is None:
        return None
    return Coordinate(int(m.group(1)), int(m.group(2)))


def parse_cell_name(name: str) -> Optional[Coordinate]:
    """``"cell-3-5"`` -> ``Coordinate(3, 5)``; None for anything else."""
    return _parse(CELL_NAME_RE, name)


def parse_hint_name(name: str) -> Optional[Coordinate]:
    return _parse(HINT_NAME_RE, name)


def is_cell_name(name: str) -> bool:
    return CELL_NAME_RE.fullmatch(name) is not None


def is_hint_name(name: str) -> bool:
    return HINT_NAME_RE.fullmatch(name) is not None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _matrix(size: int) -> List[List[bool]]:
    return [[False] * size for _ in range(size)]


@dataclass
class GameState:
    """Authoritative state of one game.

    ``mine_map[x][y]`` and ``revealed[x][y]`` address the resource ``cell-x-y``.
    ``version`` is the store's concurrency token; it is never persisted.
    """

    size: int
    seed: int
    level: int = 0
    status: GameStatus = GameStatus.PLAYING
    mine_map: List[List[bool]] = field(default_factory=list)
    revealed: List[List[bool]] = field(default_factory=list)
    hint_cells: List[Coordinate] = field(default_factory=list)
    mine_count: int = 0
    started_at: datetime = field(default_factory=_now)
    ended_at: Optional[datetime] = None
    clicks: int = 0
    version: Any = field(default=None, compare=False, repr=False)

    def is_valid(self, x: int, y: int) -> bool:
        return 0 <= x < self.size and 0 <= y < self.size

    def is_mine(self, x: int, y: int) -> bool:
        if not self.is_valid(x, y):
            return False
        return self.mine_map[x][y]

    def is_revealed(self, x: int, y: int) -> bool:
        if not self.is_valid(x, y):
            return False
        return self.revealed[x][y]

    def reveal(self, x: int, y: int) -> bool:
        """Mark a cell revealed. Returns False when out of bounds or already revealed."""
        if not self.is_valid(x, y) or self.revealed[x][y]:
            return False
        self.revealed[x][y] = True
        self.clicks += 1
        return True

    def set_mine(self, x: int, y: int) -> bool:
        if not self.is_valid(x, y):
            return False
        if not self.mine_map[x][y]:
            self.mine_map[x][y] = True
            self.mine_count += 1
        return True

    def neighbors(self, x: int, y: int) -> List[Coordinate]:
        out: List[Coordinate] = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                nx, ny = x + dx, y + dy
                if self.is_valid(nx, ny):
                    out.append(Coordinate(nx, ny))
        return out

    def adjacent_mines(self, x: int, y: int) -> int:
        return sum(1 for n in self.neighbors(x, y) if self.mine_map[n.x][n.y])

    def unrevealed_safe_cells(self) -> int:
        count = 0
        for x in range(self.size):
            for y in range(self.size):
                if not self.mine_map[x][y] and not self.revealed[x][y]:
                    count += 1
        return count

    def check_victory(self) -> bool:
        return self.unrevealed_safe_cells() == 0

    def set_won(self) -> None:
        self.status = GameStatus.WON
        self.ended_at = _now()

    def set_lost(self) -> None:
        self.status = GameStatus.LOST
        self.ended_at = _now()

    def add_hint_cell(self, x: int, y: int) -> None:
        self.hint_cells.append(Coordinate(x, y))

    def clone(self) -> "GameState":
        return GameState(
            size=self.size,
            seed=self.seed,
            level=self.level,
            status=self.status,
            mine_map=[list(row) for row in self.mine_map],
            revealed=[list(row) for row in self.revealed],
            hint_cells=list(self.hint_cells),
            mine_count=self.mine_count,
            started_at=self.started_at,
            ended_at=self.ended_at,
            clicks=self.clicks,
            version=self.version,
        )

    def stats(self) -> Dict[str, Any]:
        revealed_count = sum(row.count(True) for row in self.revealed)
        return {
            "size": self.size,
            "level": self.level,
            "status": self.status.value,
            "mines": self.mine_count,
            "totalCells": self.size * self.size,
            "revealedCells": revealed_count,
            "remainingSafe": self.unrevealed_safe_cells(),
            "clicks": self.clicks,
            "hintCellsPlaced": len(self.hint_cells),
        }


def new_game_state(size: int, seed: int) -> GameState:
    """Empty grid of the given size; mines are placed by the generator."""
    return GameState(size=size, seed=seed, mine_map=_matrix(size), revealed=_matrix(size))


def flood_fill(state: GameState, start: Coordinate) -> Tuple[List[Coordinate], List[Coordinate]]:
    """Breadth-first expansion from a zero-adjacency cell.

    Returns ``(interior, boundary)``: zero-adjacency cells that were expanded, and
    cells with at least one adjacent mine where expansion stopped. Cells are marked
    visited when enqueued so each one lands in exactly one list.
    """
    visited = {start}
    q = deque([start])
    interior: List[Coordinate] = []
    boundary: List[Coordinate] = []
    while q:
        cur = q.popleft()
        if state.adjacent_mines(cur.x, cur.y) > 0:
            boundary.append(cur)
            continue
        interior.append(cur)
        for n in state.neighbors(cur.x, cur.y):
            if n in visited or state.is_revealed(n.x, n.y) or state.is_mine(n.x, n.y):
                continue
            visited.add(n)
            q.append(n)
    return interior, boundary


def _format_time(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


def _parse_time(raw: Any) -> datetime:
    if not isinstance(raw, str):
        raise SerializationError(f"invalid timestamp: {raw!r}")
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise SerializationError(f"invalid timestamp: {raw!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def to_doc(state: GameState) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "size": state.size,
        "seed": state.seed,
        "level": state.level,
        "status": state.status.value,
        "mineMap": [list(row) for row in state.mine_map],
        "revealed": [list(row) for row in state.revealed],
        "hintCells": [{"x": c.x, "y": c.y} for c in state.hint_cells],
        "mineCount": state.mine_count,
        "startedAt": _format_time(state.started_at),
        "clicks": state.clicks,
    }
    if state.ended_at is not None:
        doc["endedAt"] = _format_time(state.ended_at)
    return doc


def _bool_matrix(raw: Any, size: int, key: str) -> List[List[bool]]:
    if not isinstance(raw, list) or len(raw) != size:
        raise SerializationError(f"{key} must have {size} rows")
    out = []
    for row in raw:
        if not isinstance(row, list) or len(row) != size or not all(isinstance(v, bool) for v in row):
            raise SerializationError(f"{key} must be a {size}x{size} boolean matrix")
        out.append(list(row))
    return out


def from_doc(doc: Any) -> GameState:
    if not isinstance(doc, dict):
        raise SerializationError("game state document must be an object")
    try:
        size = int(doc["size"])
        status = GameStatus(doc["status"])
        mine_map = _bool_matrix(doc["mineMap"], size, "mineMap")
        revealed = _bool_matrix(doc["revealed"], size, "revealed")
        hint_cells = [Coordinate(int(c["x"]), int(c["y"])) for c in doc.get("hintCells") or []]
        state = GameState(
            size=size,
            seed=int(doc["seed"]),
            level=int(doc.get("level", 0)),
            status=status,
            mine_map=mine_map,
            revealed=revealed,
            hint_cells=hint_cells,
            mine_count=int(doc["mineCount"]),
            started_at=_parse_time(doc["startedAt"]),
            ended_at=_parse_time(doc["endedAt"]) if doc.get("endedAt") else None,
            clicks=int(doc.get("clicks", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"malformed game state: {e}") from e
    live = sum(row.count(True) for row in mine_map)
    if live != state.mine_count:
        raise SerializationError(f"mineCount {state.mine_count} does not match mineMap ({live})")
    return state


def to_json(state: GameState, pretty: bool = False) -> str:
    return json.dumps(to_doc(state), indent=2 if pretty else None)


def from_json(data: str | bytes) -> GameState:
    try:
        doc = json.loads(data)
    except ValueError as e:
        raise SerializationError(f"failed to parse game state: {e}") from e
    return from_doc(doc)
