import pytest
from podsweeper.errors import ValidationError
from podsweeper.grid import (
    DEFAULT_MINE_DENSITY,
    DEFAULT_SIZE,
    Generator,
    GridConfig,
    difficulty_config,
    generate_default_grid,
    generate_grid,
    generate_with_difficulty,
)


def layout(state):
    return [list(row) for row in state.mine_map]


def test_default_config():
    c = GridConfig()
    assert c.size == DEFAULT_SIZE
    assert c.mine_density == DEFAULT_MINE_DENSITY
    assert c.min_mine_count == 1 and c.max_mine_count == 0
    c.validate()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"size": 0},
        {"size": 101},
        {"mine_density": 0.01},
        {"mine_density": 0.51},
        {"min_mine_count": -1},
        {"max_mine_count": -1},
        {"min_mine_count": 10, "max_mine_count": 5},
    ],
)
def test_invalid_configs_fail_validation(kwargs):
    with pytest.raises(ValidationError):
        Generator(GridConfig(**kwargs))


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        GridConfig(size=0).validate()


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"size": 10, "mine_density": 0.15}, 15),
        ({"size": 10, "mine_density": 0.05, "min_mine_count": 8}, 8),
        ({"size": 10, "mine_density": 0.50, "max_mine_count": 20}, 20),
        ({"size": 1, "mine_density": 0.50}, 0),
        ({"size": 2, "mine_density": 0.50, "min_mine_count": 10}, 3),
        ({"size": 3, "mine_density": 0.05, "min_mine_count": 0}, 0),
    ],
)
def test_calculate_mine_count(kwargs, expected):
    assert GridConfig(**kwargs).calculate_mine_count() == expected


def test_mine_count_within_bounds_for_many_configs():
    for size in (1, 2, 3, 5, 9, 17):
        for density in (0.05, 0.2, 0.5):
            for lo, hi in ((0, 0), (1, 0), (3, 4), (50, 60)):
                cfg = GridConfig(size=size, mine_density=density, min_mine_count=lo, max_mine_count=hi)
                total = size * size
                n = cfg.calculate_mine_count()
                upper = min(hi or total - 1, total - 1)
                assert min(lo, total - 1) <= n <= upper


def test_generate_with_seed_is_reproducible():
    gen = Generator(GridConfig(size=12, seed=99, mine_density=0.2))
    a = gen.generate_with_seed(1234)
    b = gen.generate_with_seed(1234)
    c = Generator(GridConfig(size=12, seed=5, mine_density=0.2)).generate_with_seed(1234)
    assert layout(a) == layout(b) == layout(c)
    assert a.seed == 1234


def test_different_seeds_differ():
    gen = Generator(GridConfig(size=10, seed=1))
    layouts = {str(layout(gen.generate_with_seed(s))) for s in range(1, 11)}
    assert len(layouts) > 1


def test_generate_uses_config_seed_and_places_exact_mine_count():
    gen = Generator(GridConfig(size=8, seed=77, mine_density=0.25))
    s = gen.generate()
    assert s.seed == 77
    assert s.mine_count == 16
    assert sum(row.count(True) for row in s.mine_map) == 16
    assert layout(s) == layout(gen.generate_with_seed(77))


def test_zero_seed_picks_random_seed():
    gen = Generator(GridConfig(seed=0))
    assert gen.config.seed != 0


def test_at_least_one_safe_cell_at_max_density():
    for seed in range(1, 20):
        s = generate_grid(3, seed, 0.5)
        assert s.unrevealed_safe_cells() >= 1
    tiny = generate_grid(1, 3, 0.5)
    assert tiny.mine_count == 0


def test_generate_default_grid():
    s = generate_default_grid(8)
    assert s.size == DEFAULT_SIZE
    assert s.mine_count == 15


def test_generate_grid_invalid():
    with pytest.raises(ValidationError):
        generate_grid(0, 1, 0.15)


def test_difficulty_presets():
    assert difficulty_config("easy").size == 8
    assert difficulty_config("expert").size == 20
    assert difficulty_config("unknown") == GridConfig()
    s = generate_with_difficulty("hard", 42)
    assert s.size == 16
    assert 40 <= s.mine_count <= 60
    assert layout(s) == layout(generate_with_difficulty("hard", 42))
