from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List
import random

from .errors import ValidationError
from .game_engine import GameState, new_game_state

DEFAULT_SIZE = 10
DEFAULT_MINE_DENSITY = 0.15
MIN_MINE_DENSITY = 0.05
MAX_MINE_DENSITY = 0.50
MAX_SIZE = 100

_SEED_BITS = 63


@dataclass(frozen=True)
class GridConfig:
    size: int = DEFAULT_SIZE
    seed: int = 0
    mine_density: float = DEFAULT_MINE_DENSITY
    min_mine_count: int = 1
    # 0 means no upper bound
    max_mine_count: int = 0

    def validate(self) -> None:
        if self.size < 1:
            raise ValidationError(f"size must be at least 1, got {self.size}")
        if self.size > MAX_SIZE:
            raise ValidationError(f"size must be at most {MAX_SIZE}, got {self.size}")
        if self.mine_density < MIN_MINE_DENSITY:
            raise ValidationError(f"mine density must be at least {MIN_MINE_DENSITY:.2f}, got {self.mine_density:.2f}")
        if self.mine_density > MAX_MINE_DENSITY:
            raise ValidationError(f"mine density must be at most {MAX_MINE_DENSITY:.2f}, got {self.mine_density:.2f}")
        if self.min_mine_count < 0:
            raise ValidationError(f"min mine count cannot be negative, got {self.min_mine_count}")
        if self.max_mine_count < 0:
            raise ValidationError(f"max mine count cannot be negative, got {self.max_mine_count}")
        if self.max_mine_count > 0 and self.min_mine_count > self.max_mine_count:
            raise ValidationError(
                f"min mine count ({self.min_mine_count}) cannot exceed max mine count ({self.max_mine_count})"
            )

    def calculate_mine_count(self) -> int:
        total = self.size * self.size
        count = round(total * self.mine_density)
        count = max(count, self.min_mine_count)
        if self.max_mine_count > 0:
            count = min(count, self.max_mine_count)
        # at least one safe cell
        return min(count, total - 1)


def _shuffled_indices(total: int, rng: random.Random) -> List[int]:
    positions = list(range(total))
    for i in range(total - 1, 0, -1):
        j = rng.randrange(i + 1)
        positions[i], positions[j] = positions[j], positions[i]
    return positions


class Generator:
    """Places mines on a fresh grid. The same seed always yields the same layout."""

    def __init__(self, config: GridConfig | None = None) -> None:
        config = config or GridConfig()
        config.validate()
        if config.seed == 0:
            config = replace(config, seed=random.SystemRandom().getrandbits(_SEED_BITS) or 1)
        self.config = config

    def generate(self) -> GameState:
        return self.generate_with_seed(self.config.seed)

    def generate_with_seed(self, seed: int) -> GameState:
        rng = random.Random(seed)
        size = self.config.size
        state = new_game_state(size, seed)
        positions = _shuffled_indices(size * size, rng)
        for pos in positions[: self.config.calculate_mine_count()]:
            state.set_mine(pos // size, pos % size)
        return state


def generate_grid(size: int, seed: int, density: float) -> GameState:
    gen = Generator(GridConfig(size=size, seed=seed, mine_density=density))
    return gen.generate_with_seed(seed)


def generate_default_grid(seed: int) -> GameState:
    return generate_grid(DEFAULT_SIZE, seed, DEFAULT_MINE_DENSITY)


DIFFICULTY_PRESETS = {
    "easy": GridConfig(size=8, mine_density=0.10, min_mine_count=5, max_mine_count=10),
    "medium": GridConfig(size=10, mine_density=0.15, min_mine_count=10, max_mine_count=20),
    "hard": GridConfig(size=16, mine_density=0.20, min_mine_count=40, max_mine_count=60),
    "expert": GridConfig(size=20, mine_density=0.25, min_mine_count=80, max_mine_count=120),
}


def difficulty_config(preset: str) -> GridConfig:
    """Config for a named preset; unknown names fall back to the defaults."""
    return DIFFICULTY_PRESETS.get(preset, GridConfig())


def generate_with_difficulty(preset: str, seed: int) -> GameState:
    gen = Generator(replace(difficulty_config(preset), seed=seed))
    return gen.generate_with_seed(seed)
