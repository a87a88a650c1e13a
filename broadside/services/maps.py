from typing import Any, Optional

from broadside.schemas import GameState, MapDef, ShipSpawn, ShipState
from broadside.services.world import World

# 7x7 の基本マップ共通の障害物
_SMALL_BLOCKED = [
    {"x": 1, "y": 1, "kind": "rock"},
    {"x": 2, "y": 1, "kind": "rock"},
    {"x": 5, "y": 2, "kind": "reef"},
    {"x": 3, "y": 4, "kind": "wall"},
    {"x": 4, "y": 4, "kind": "wall"},
]


def _theme(name: str) -> dict:
    base = f"/assets/{name}"
    return {
        "assets": {
            "background": {"image": f"{base}/background.txt"},
            "tiles": {"variants": [f"{base}/tiles/tile_{i}.txt" for i in range(1, 5)]},
            "blocked": {
                "kinds": {
                    "rock": f"{base}/blocked/rock.txt",
                    "reef": f"{base}/blocked/reef.txt",
                    "wall": f"{base}/blocked/wall.txt",
                    "fallback": f"{base}/blocked/fallback.txt",
                },
            },
        },
    }


MAPS: list[MapDef] = [
    MapDef.model_validate({
        "id": "islands",
        "name": "Islands",
        "grid": {"rows": 7, "cols": 7},
        "seed": 1337,
        "spawn": {"x": 3, "y": 3, "dir": 0, "hp": 3, "ammo": 15},
        "enemySpawn": {"x": 6, "y": 0, "dir": 2, "hp": 3, "ammo": 15},
        "blocked": _SMALL_BLOCKED,
        "hazards": [
            {"x": 1, "y": 3, "damage": 1, "kind": "reef"},
            {"x": 5, "y": 3, "damage": 1, "kind": "reef"},
        ],
        "checkpoints": [
            {"id": "cp-dock", "x": 3, "y": 6, "radius": 0, "label": "Dock"},
        ],
        "theme": _theme("islands"),
    }),
    MapDef.model_validate({
        "id": "ice",
        "name": "Ice",
        "grid": {"rows": 7, "cols": 7},
        "seed": 2024,
        "spawn": {"x": 3, "y": 3, "dir": 0, "hp": 3, "ammo": 15},
        "enemySpawn": {"x": 0, "y": 6, "dir": 0, "hp": 3, "ammo": 15},
        "blocked": _SMALL_BLOCKED,
        "hazards": [
            {"x": 0, "y": 0, "damage": 1, "kind": "ice"},
        ],
        "theme": _theme("ice"),
    }),
    MapDef.model_validate({
        "id": "desert",
        "name": "Desert",
        "grid": {"rows": 7, "cols": 7},
        "seed": 909,
        "spawn": {"x": 3, "y": 3, "dir": 0, "hp": 3, "ammo": 15},
        "enemySpawn": {"x": 6, "y": 6, "dir": 3, "hp": 3, "ammo": 15},
        "blocked": _SMALL_BLOCKED,
        "theme": _theme("desert"),
    }),
    MapDef.model_validate({
        "id": "grand-world",
        "name": "Grand World",
        "world": {"minX": 0, "minY": 0, "maxX": 24, "maxY": 24},
        "viewport": {"rows": 13, "cols": 13},
        "seed": 5150,
        "spawn": {"x": 12, "y": 12, "dir": 0, "hp": 6, "ammo": 15},
        "enemySpawn": {"x": 4, "y": 20, "dir": 2, "hp": 6, "ammo": 15},
        "blocked": [
            {"x": 8, "y": 9, "kind": "reef"},
            {"x": 9, "y": 9, "kind": "reef"},
            {"x": 15, "y": 15, "kind": "rock"},
            {"x": 3, "y": 18, "kind": "wall"},
        ],
        "blockedGroups": [
            {
                "id": "northern-wall",
                "kind": "wall",
                "anchor": {"x": 10, "y": 7, "anchorMode": "bottom"},
                "footprint": {"w": 4, "h": 2},
            },
            {
                "id": "eastern-reef",
                "kind": "reef",
                "anchor": {"x": 18, "y": 14, "anchorMode": "bottom"},
                "footprint": {"w": 3, "h": 3},
            },
        ],
        "checkpoints": [
            {"id": "cp-north", "x": 12, "y": 5, "radius": 1, "label": "North Beacon"},
            {"id": "cp-center", "x": 12, "y": 12, "radius": 1, "label": "Center Dock"},
            {"id": "cp-south", "x": 12, "y": 20, "radius": 1, "label": "South Haven"},
        ],
        "hazards": [
            {"x": 7, "y": 12, "damage": 1, "kind": "reef"},
            {"x": 20, "y": 10, "damage": 2, "kind": "reef"},
        ],
        "theme": _theme("desert"),
    }),
]


def get_all_maps() -> list[MapDef]:
    return list(MAPS)


def get_map_by_id(map_id: str | None) -> MapDef:
    """見つからなければ先頭のマップ"""
    return next((m for m in MAPS if m.id == map_id), MAPS[0])


def get_map(ref: Any = None) -> MapDef:
    if isinstance(ref, MapDef):
        return ref
    if isinstance(ref, dict):
        return MapDef.model_validate(ref)
    return get_map_by_id(ref)


def _default_enemy_spawn(world: World) -> ShipSpawn:
    # 右下の角、北向き
    return ShipSpawn(x=world.max_x, y=world.max_y, dir=0)


def create_initial_state(ref: Any = None) -> GameState:
    map_def = get_map(ref)
    world = World.from_map(map_def)
    enemy_spawn: Optional[ShipSpawn] = map_def.enemy_spawn or _default_enemy_spawn(world)
    ship = ShipState.from_spawn(map_def.spawn)
    view = world.view_origin(ship.x, ship.y)
    return GameState(
        map_id=map_def.id,
        map_seed=map_def.seed,
        world=world,
        ship=ship,
        enemy=ShipState.from_spawn(enemy_spawn),
        enemy_spawn=enemy_spawn,
        view_x0=view.x,
        view_y0=view.y,
    )
