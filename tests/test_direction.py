import pytest

from broadside.services.direction import DIR_V, Direction, left_of, right_of, unit_vector


def test_unit_vectors():
    # y は下向きに増える
    assert unit_vector(Direction.N) == (0, -1)
    assert unit_vector(Direction.E) == (1, 0)
    assert unit_vector(Direction.S) == (0, 1)
    assert unit_vector(Direction.W) == (-1, 0)
    assert len(DIR_V) == 4


@pytest.mark.parametrize("d, left, right", [
    (Direction.N, Direction.W, Direction.E),
    (Direction.E, Direction.N, Direction.S),
    (Direction.S, Direction.E, Direction.W),
    (Direction.W, Direction.S, Direction.N),
])
def test_left_right(d, left, right):
    assert left_of(d) == left
    assert right_of(d) == right


def test_four_turns_come_back():
    for d in range(4):
        x = d
        for _ in range(4):
            x = right_of(x)
        assert x == d
        assert left_of(right_of(d)) == d
