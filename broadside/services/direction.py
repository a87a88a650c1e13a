from enum import IntEnum


class Direction(IntEnum):
    """Grid-space facing (not screen-space). Clockwise order N, E, S, W."""
    N = 0
    E = 1
    S = 2
    W = 3


# unit vectors indexed by Direction (y grows downwards)
DIR_V: tuple[tuple[int, int], ...] = (
    (0, -1),  # N
    (1, 0),   # E
    (0, 1),   # S
    (-1, 0),  # W
)


def left_of(d: int) -> int:
    return (d + 3) % 4


def right_of(d: int) -> int:
    return (d + 1) % 4


def unit_vector(d: int) -> tuple[int, int]:
    return DIR_V[d % 4]
