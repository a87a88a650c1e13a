import pytest

from broadside.schemas import Position
from broadside.services.direction import left_of, right_of
from broadside.services.rules import compute_move_steps, other_actor, resolve_move, resolve_noop

from helpers import make_state, with_ship

NOW = 1000.0


def test_forward_into_open_water():
    state = make_state()
    nxt, out = resolve_move(state, "ship", "F", NOW)
    assert out.reason == "ok" and out.moved
    assert nxt.ship.pos == Position(x=3, y=2)
    assert nxt.ship.prev == Position(x=3, y=3)
    assert nxt.ship.dir == 0
    assert out.animation.waypoints == (Position(x=3, y=3), Position(x=3, y=2))
    # 入力の状態は変わらない
    assert state.ship.pos == Position(x=3, y=3)


def test_left_and_right_two_step():
    state = make_state()
    nxt, out = resolve_move(state, "ship", "L", NOW)
    assert out.reason == "ok"
    assert nxt.ship.pos == Position(x=2, y=2)
    assert nxt.ship.dir == 3
    assert out.steps == (Position(x=3, y=2), Position(x=2, y=2))

    nxt, out = resolve_move(state, "ship", "R", NOW)
    assert nxt.ship.pos == Position(x=4, y=2)
    assert nxt.ship.dir == 1


@pytest.mark.parametrize("kind", ["rock", "reef"])
def test_blocked_at_corner_damages(kind):
    state = make_state(blocked=[(3, 2, kind)])
    nxt, out = resolve_move(state, "ship", "L", NOW)
    assert out.reason == "blocked"
    assert not out.moved
    assert out.damage == 1 and out.damaged
    assert nxt.ship.pos == Position(x=3, y=3)
    assert nxt.ship.hp == 2
    assert nxt.ship.last_damage_at == NOW
    # 失敗しても向きは変わる
    assert nxt.ship.dir == 3
    assert out.animation.hold_index == 1
    assert out.animation.waypoints == (Position(x=3, y=3), Position(x=3, y=2), Position(x=3, y=3))


def test_wall_at_corner_is_harmless():
    state = make_state(blocked=[(3, 2, "wall")])
    nxt, out = resolve_move(state, "ship", "F", NOW)
    assert out.reason == "blocked"
    assert out.damage == 0 and not out.damaged
    assert nxt.ship.hp == 3
    assert nxt.ship.pos == Position(x=3, y=3)


@pytest.mark.parametrize("kind", ["rock", "wall"])
def test_blocked_at_second_step_stops_at_corner(kind):
    state = make_state(blocked=[(4, 2, kind)])
    nxt, out = resolve_move(state, "ship", "R", NOW)
    assert out.reason == "blocked"
    assert out.moved
    assert out.damage == 1
    assert nxt.ship.pos == Position(x=3, y=2)
    assert nxt.ship.hp == 2
    assert nxt.ship.dir == 1
    assert out.animation.hold_index == 2


def test_forward_out_of_bounds():
    state = make_state(ship=(3, 0, 0))
    nxt, out = resolve_move(state, "ship", "F", NOW)
    assert out.kind == "out_of_bounds" and out.reason == "oob"
    assert not out.moved and out.damage == 0
    assert nxt.ship.pos == Position(x=3, y=0)


def test_corner_out_of_bounds_slides_inside():
    state = make_state(ship=(3, 0, 0))
    nxt, out = resolve_move(state, "ship", "L", NOW)
    assert out.reason == "corner_oob_slide"
    assert out.moved
    assert nxt.ship.pos == Position(x=2, y=0)
    assert nxt.ship.dir == 3
    assert nxt.ship.hp == 3


def test_second_step_out_of_bounds_stops_at_corner():
    state = make_state(ship=(0, 3, 0))
    nxt, out = resolve_move(state, "ship", "L", NOW)
    assert out.reason == "corner_oob"
    assert out.moved
    assert nxt.ship.pos == Position(x=0, y=2)
    assert nxt.ship.dir == 3
    assert out.damage == 0


def test_collision_at_corner():
    state = make_state(enemy=(3, 2, 0))
    nxt, out = resolve_move(state, "ship", "F", NOW)
    assert out.reason == "collision"
    assert not out.moved
    assert out.damage == 1
    assert nxt.ship.pos == Position(x=3, y=3)
    assert nxt.ship.hp == 2
    assert nxt.enemy.hp == 3


def test_collision_at_second_step():
    state = make_state(enemy=(4, 2, 0))
    nxt, out = resolve_move(state, "ship", "R", NOW)
    assert out.reason == "collision"
    assert out.moved
    assert nxt.ship.pos == Position(x=3, y=2)
    assert nxt.ship.hp == 2
    assert nxt.enemy.pos == Position(x=4, y=2)


def test_unknown_move_is_noop():
    state = make_state()
    nxt, out = resolve_move(state, "ship", "X", NOW)
    assert out.kind == "noop" and out.reason == "noop"
    assert nxt.ship.pos == state.ship.pos
    assert nxt.ship.dir == state.ship.dir


def test_enemy_moves_independently():
    state = make_state(enemy=(6, 0, 2))
    nxt, out = resolve_move(state, "enemy", "F", NOW)
    assert out.moved
    assert nxt.enemy.pos == Position(x=6, y=1)
    assert nxt.ship == state.ship


def test_enemy_cannot_ram_ship():
    state = make_state(enemy=(3, 2, 2))
    nxt, out = resolve_move(state, "enemy", "F", NOW)
    assert out.reason == "collision"
    assert nxt.enemy.hp == 2
    assert nxt.ship.hp == 3


@pytest.mark.parametrize("d", range(4))
@pytest.mark.parametrize("move", ["F", "L", "R"])
def test_facing_changes_even_when_blocked(d, move):
    state = make_state(ship=(3, 3, d), blocked=[(3, 2, "wall"), (4, 3, "wall"), (3, 4, "wall"), (2, 3, "wall")])
    nxt, out = resolve_move(state, "ship", move, NOW)
    expected = {"F": d, "L": left_of(d), "R": right_of(d)}[move]
    assert nxt.ship.dir == expected
    assert out.new_dir == expected
    assert nxt.ship.pos == Position(x=3, y=3)


def test_compute_move_steps():
    assert compute_move_steps(3, 3, 1, "F") == (1, [Position(x=4, y=3)])
    assert compute_move_steps(3, 3, 1, "L") == (0, [Position(x=4, y=3), Position(x=4, y=2)])
    assert compute_move_steps(3, 3, 2, "R") == (3, [Position(x=3, y=4), Position(x=2, y=4)])
    assert compute_move_steps(3, 3, 2, "?") == (2, [])


def test_resolve_noop_sets_prev():
    state = with_ship(make_state(), prev=Position(x=0, y=0))
    nxt, out = resolve_noop(state, "ship")
    assert out.reason == "noop_tick"
    assert nxt.ship.prev == Position(x=3, y=3)
    assert nxt.ship.pos == Position(x=3, y=3)


def test_other_actor():
    assert other_actor("ship") == "enemy"
    assert other_actor("enemy") == "ship"
    with pytest.raises(ValueError):
        other_actor("kraken")
    with pytest.raises(ValueError):
        resolve_move(make_state(), "kraken", "F", NOW)
