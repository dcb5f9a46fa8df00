from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import os

from .errors import ValidationError
from .grid import DEFAULT_MINE_DENSITY, DEFAULT_SIZE, GridConfig
from .materializer import DEFAULT_BATCH_SIZE, DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY
from .persistence import DEFAULT_COLLECTION, DEFAULT_DOCUMENT
from .resources import DEFAULT_NAMESPACE


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    namespace: str = DEFAULT_NAMESPACE
    grid_size: int = DEFAULT_SIZE
    mine_density: float = DEFAULT_MINE_DENSITY
    min_mine_count: int = 1
    max_mine_count: int = 0
    batch_size: int = DEFAULT_BATCH_SIZE
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    state_collection: str = DEFAULT_COLLECTION
    state_document: str = DEFAULT_DOCUMENT
    use_inmemory: bool = False
    project: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            namespace=os.getenv("PODSWEEPER_NAMESPACE", DEFAULT_NAMESPACE),
            grid_size=_int("PODSWEEPER_GRID_SIZE", DEFAULT_SIZE),
            mine_density=_float("PODSWEEPER_MINE_DENSITY", DEFAULT_MINE_DENSITY),
            min_mine_count=_int("PODSWEEPER_MIN_MINES", 1),
            max_mine_count=_int("PODSWEEPER_MAX_MINES", 0),
            batch_size=_int("PODSWEEPER_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            retry_attempts=_int("PODSWEEPER_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS),
            retry_delay=_int("PODSWEEPER_RETRY_DELAY_MS", int(DEFAULT_RETRY_DELAY * 1000)) / 1000.0,
            state_collection=os.getenv("PODSWEEPER_STATE_COLLECTION", DEFAULT_COLLECTION),
            state_document=os.getenv("PODSWEEPER_STATE_DOCUMENT", DEFAULT_DOCUMENT),
            use_inmemory=_flag("USE_INMEMORY"),
            project=os.getenv("GOOGLE_CLOUD_PROJECT"),
        )

    def grid_config(self, seed: int = 0) -> GridConfig:
        return GridConfig(
            size=self.grid_size,
            seed=seed,
            mine_density=self.mine_density,
            min_mine_count=self.min_mine_count,
            max_mine_count=self.max_mine_count,
        )
