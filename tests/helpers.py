from broadside.schemas import GameState
from broadside.services.maps import create_initial_state


def make_state(*, ship=(3, 3, 0), enemy=(6, 6, 0), blocked=(), hazards=(), checkpoints=(),
               rows=7, cols=7, hp=3, ammo=15, enemy_hp=3) -> GameState:
    """7x7 の試験用マップ。blocked は (x, y, kind) のタプル列。"""
    return create_initial_state({
        "id": "test",
        "grid": {"rows": rows, "cols": cols},
        "spawn": {"x": ship[0], "y": ship[1], "dir": ship[2], "hp": hp, "ammo": ammo},
        "enemySpawn": {"x": enemy[0], "y": enemy[1], "dir": enemy[2], "hp": enemy_hp, "ammo": 15},
        "blocked": [{"x": x, "y": y, "kind": kind} for x, y, kind in blocked],
        "hazards": [{"x": x, "y": y, "damage": d} for x, y, d in hazards],
        "checkpoints": list(checkpoints),
    })


def with_ship(state: GameState, key: str = "ship", **fields) -> GameState:
    ship = state.ship_by_key(key)
    return state.model_copy(update={key: ship.model_copy(update=fields)})


class Clock:
    """テスト用の手動時計（ミリ秒）"""
    def __init__(self, t: float = 0):
        self.t = t

    def __call__(self) -> float:
        return self.t
