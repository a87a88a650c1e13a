from typing import Optional

from broadside.schemas import (
    AnimationPlan,
    Blocked,
    Collision,
    GameState,
    Moved,
    NoopOutcome,
    OutOfBounds,
    Position,
    Projectile,
    ShipState,
    ShotOutcome,
    ShotTile,
)
from broadside.services.direction import left_of, right_of, unit_vector

"""
行動解決（純粋関数）。
どの関数も GameState を書き換えず、新しい GameState と結果を返す。
"""

COLLISION_DAMAGE = 1
SHOT_DAMAGE = 1
SHOT_RANGE = 3
PROJECTILE_DURATION_MS = 450
BOUNCE_HOLD_MS = 120

# 砲弾は rock / reef を通過する（移動では障害物）
SHOT_TRANSPARENT_KINDS = ("reef", "rock")

ACTORS = ("ship", "enemy")


def other_actor(actor: str) -> str:
    if actor == "ship":
        return "enemy"
    if actor == "enemy":
        return "ship"
    raise ValueError(f"unknown actor: {actor}")


def blocked_damage(kind: Optional[str]) -> int:
    if kind == "wall":
        return 0
    return 1


def compute_move_steps(x: int, y: int, dir: int, move: str) -> tuple[int, list[Position]]:
    """
    F: 前方に1マス
    L: 前方に1マス、続けて左に1マス（2ステップ）。向きは左へ
    R: 前方に1マス、続けて右に1マス（2ステップ）。向きは右へ
    向きは移動の成否に関係なく変わる。
    """
    fx, fy = unit_vector(dir)
    corner = Position(x=x + fx, y=y + fy)
    if move == "F":
        return dir, [corner]
    if move == "L":
        lx, ly = unit_vector(left_of(dir))
        return left_of(dir), [corner, corner.offset(lx, ly)]
    if move == "R":
        rx, ry = unit_vector(right_of(dir))
        return right_of(dir), [corner, corner.offset(rx, ry)]
    return dir, []


def _animation(points: list[Position], old_dir: int, new_dir: int, hold_index: int | None = None) -> AnimationPlan:
    facings = tuple(old_dir if i == 0 else new_dir for i in range(len(points) - 1))
    return AnimationPlan(
        waypoints=tuple(points),
        facings=facings,
        hold_index=hold_index,
        hold_ms=BOUNCE_HOLD_MS if hold_index is not None else 0,
    )


def _commit(state: GameState, actor: str, ship: ShipState) -> GameState:
    return state.model_copy(update={actor: ship})


def resolve_move(state: GameState, actor: str, move: str, now: float):
    """Resolve a move for `actor` ("ship" or "enemy"). Returns (next_state, outcome)."""
    acting = state.ship_by_key(actor)
    other = state.ship_by_key(other_actor(actor))
    world = state.world

    start = acting.pos
    old_dir = acting.dir
    new_dir, steps = compute_move_steps(acting.x, acting.y, acting.dir, move)
    # 成否に関わらず、向きと直前タイルは更新する
    ship = acting.model_copy(update={"dir": new_dir, "prev": start})
    common = dict(steps=tuple(steps), new_dir=new_dir)

    if not steps:
        return _commit(state, actor, ship), NoopOutcome(animation=_animation([start], old_dir, new_dir), **common)

    corner = steps[0]
    two_step = len(steps) == 2

    if not world.in_bounds(corner.x, corner.y):
        if not two_step:
            outcome = OutOfBounds(reason="oob", animation=_animation([start, corner, start], old_dir, new_dir, 1), **common)
            return _commit(state, actor, ship), outcome
        # 斜め移動で角から外に出る場合は、ワールド内に寄せて滑らせる
        landing = world.clamp(steps[1].x, steps[1].y)
        outcome = OutOfBounds(reason="corner_oob_slide", moved=True, animation=_animation([start, landing], old_dir, new_dir), **common)
        return _commit(state, actor, ship.moved_to(landing)), outcome

    if corner == other.pos:
        outcome = Collision(damage=COLLISION_DAMAGE, animation=_animation([start, corner, start], old_dir, new_dir, 1), **common)
        return _commit(state, actor, ship.damaged(COLLISION_DAMAGE, now)), outcome

    kind = world.blocked_kind(corner.x, corner.y)
    if kind is not None:
        damage = blocked_damage(kind)
        outcome = Blocked(damage=damage, animation=_animation([start, corner, start], old_dir, new_dir, 1), **common)
        return _commit(state, actor, ship.damaged(damage, now)), outcome

    if not two_step:
        outcome = Moved(animation=_animation([start, corner], old_dir, new_dir), **common)
        return _commit(state, actor, ship.moved_to(corner)), outcome

    final = steps[1]
    at_corner = ship.moved_to(corner)

    if not world.in_bounds(final.x, final.y):
        outcome = OutOfBounds(reason="corner_oob", moved=True, animation=_animation([start, corner], old_dir, new_dir, 1), **common)
        return _commit(state, actor, at_corner), outcome

    if final == other.pos:
        outcome = Collision(moved=True, damage=COLLISION_DAMAGE, animation=_animation([start, corner, final, corner], old_dir, new_dir, 2), **common)
        return _commit(state, actor, at_corner.damaged(COLLISION_DAMAGE, now)), outcome

    if world.is_blocked(final.x, final.y):
        outcome = Blocked(moved=True, damage=1, animation=_animation([start, corner, final, corner], old_dir, new_dir, 2), **common)
        return _commit(state, actor, at_corner.damaged(1, now)), outcome

    outcome = Moved(animation=_animation([start, corner, final], old_dir, new_dir), **common)
    return _commit(state, actor, ship.moved_to(final)), outcome


def compute_shot_paths(state: GameState, ship: ShipState) -> list[list[ShotTile]]:
    """左舷・右舷の2本の射線。壁で止まり、ワールド外には出ない。"""
    world = state.world
    paths: list[list[ShotTile]] = []
    for side in (left_of(ship.dir), right_of(ship.dir)):
        dx, dy = unit_vector(side)
        path: list[ShotTile] = []
        for i in range(1, SHOT_RANGE + 1):
            x, y = ship.x + dx * i, ship.y + dy * i
            if not world.in_bounds(x, y):
                break
            kind = world.blocked_kind(x, y)
            if kind is not None and kind not in SHOT_TRANSPARENT_KINDS:
                break
            path.append(ShotTile(x=x, y=y, level=SHOT_RANGE + 1 - i))
        paths.append(path)
    return paths


def resolve_shoot(state: GameState, actor: str, now: float):
    """Fire both broadsides. Hits are applied separately by apply_shot_damage()."""
    shooter = state.ship_by_key(actor)
    if shooter.ammo <= 0:
        return state, ShotOutcome(shot=False, reason="no_ammo")

    paths = compute_shot_paths(state, shooter)
    projectiles = list(state.projectiles)
    for path in paths:
        if not path:
            continue
        last = path[-1]
        projectiles.append(Projectile(
            from_x=shooter.x, from_y=shooter.y,
            to_x=last.x, to_y=last.y,
            spawn_time=now, duration_ms=PROJECTILE_DURATION_MS,
            path=tuple(Position(x=t.x, y=t.y) for t in path),
        ))
    ship = shooter.model_copy(update={"ammo": max(0, shooter.ammo - 1)})
    next_state = state.model_copy(update={
        actor: ship,
        "projectiles": tuple(projectiles),
        "shot_tiles": tuple(t for path in paths for t in path),
        "shot_at": now,
    })
    return next_state, ShotOutcome(shot=True, reason="ok", paths=tuple(tuple(p) for p in paths))


def apply_shot_damage(state: GameState, attacker: str, target: str, now: float) -> tuple[GameState, int]:
    """射線上に目標がいれば一律1ダメージ（距離による減衰なし）。"""
    shooter = state.ship_by_key(attacker)
    victim = state.ship_by_key(target)
    paths = compute_shot_paths(state, shooter)
    hit = any(t.x == victim.x and t.y == victim.y for path in paths for t in path)
    if not hit:
        return state, 0
    return state.model_copy(update={target: victim.damaged(SHOT_DAMAGE, now)}), SHOT_DAMAGE


def resolve_noop(state: GameState, actor: str = "ship"):
    """行動なしのティック: 直前タイルだけ現在地に更新する。"""
    ship = state.ship_by_key(actor)
    next_state = state.model_copy(update={actor: ship.model_copy(update={"prev": ship.pos})})
    return next_state, NoopOutcome(reason="noop_tick", new_dir=ship.dir)


def prune_projectiles(state: GameState, now: float) -> GameState:
    alive = tuple(p for p in state.projectiles if now - p.spawn_time < p.duration_ms)
    if len(alive) == len(state.projectiles):
        return state
    return state.model_copy(update={"projectiles": alive})
