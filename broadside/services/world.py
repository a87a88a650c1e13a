import math
from typing import Iterable, Optional

from broadside.schemas import (
    BlockedGroup,
    BlockedTile,
    Checkpoint,
    Hazard,
    MapDef,
    Position,
    WorldBounds,
)


def expand_blocked_groups(groups: Iterable[BlockedGroup]) -> list[BlockedTile]:
    """
    blocked group（アンカー + 矩形フットプリント）を単一タイルに展開する。
    anchor_mode="bottom" はアンカーが矩形の最下段・左端、"top" は最上段・左端。
    """
    tiles: list[BlockedTile] = []
    for group in groups:
        w = max(0, group.footprint.w)
        h = max(0, group.footprint.h)
        ax, ay = group.anchor.x, group.anchor.y
        y0 = ay - h + 1 if group.anchor.anchor_mode == "bottom" else ay
        for y in range(y0, y0 + h):
            for x in range(ax, ax + w):
                tiles.append(BlockedTile(x=x, y=y, kind=group.kind, group_id=group.id))
    return tiles


def make_blocked_map(tiles: Iterable[BlockedTile]) -> dict[str, BlockedTile]:
    result: dict[str, BlockedTile] = {}
    for tile in tiles:
        # 先に登録されたタイルを優先
        result.setdefault(f"{tile.x},{tile.y}", tile)
    return result


class World:
    """
    境界付きのグリッド（座標は両端を含む）。
    ブロックタイル、ハザード、チェックポイント、カメラの表示窓を保持する。
    マップ読み込み時に一度だけ作られ、以後は変更しない。
    """
    def __init__(self, bounds: WorldBounds, *,
                 view_cols: int | None = None, view_rows: int | None = None,
                 blocked: Iterable[BlockedTile] = (),
                 blocked_groups: Iterable[BlockedGroup] = (),
                 hazards: Iterable[Hazard] = (),
                 checkpoints: Iterable[Checkpoint] = ()):
        if bounds.max_x < bounds.min_x or bounds.max_y < bounds.min_y:
            raise ValueError(f"invalid world bounds: {bounds}")
        self.__bounds = bounds
        self.__view_cols = view_cols if view_cols and view_cols > 0 else self.W
        self.__view_rows = view_rows if view_rows and view_rows > 0 else self.H
        self.__blocked = make_blocked_map(list(blocked) + expand_blocked_groups(blocked_groups))
        self.__hazards: dict[str, Hazard] = {f"{h.x},{h.y}": h for h in hazards}
        self.__checkpoints: tuple[Checkpoint, ...] = tuple(checkpoints)

    @staticmethod
    def from_map(map_def: MapDef) -> 'World':
        if map_def.world is not None:
            bounds = map_def.world
        elif map_def.grid is not None:
            bounds = WorldBounds(min_x=0, min_y=0, max_x=map_def.grid.cols - 1, max_y=map_def.grid.rows - 1)
        else:
            raise ValueError(f"map {map_def.id} has neither world nor grid")
        view_cols = map_def.viewport.cols if map_def.viewport else None
        view_rows = map_def.viewport.rows if map_def.viewport else None
        return World(
            bounds,
            view_cols=view_cols,
            view_rows=view_rows,
            blocked=map_def.blocked,
            blocked_groups=map_def.blocked_groups,
            hazards=map_def.hazards,
            checkpoints=map_def.checkpoints,
        )

    @property
    def bounds(self) -> WorldBounds:
        return self.__bounds

    @property
    def min_x(self) -> int:
        return self.__bounds.min_x

    @property
    def min_y(self) -> int:
        return self.__bounds.min_y

    @property
    def max_x(self) -> int:
        return self.__bounds.max_x

    @property
    def max_y(self) -> int:
        return self.__bounds.max_y

    @property
    def W(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def H(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def view_cols(self) -> int:
        return self.__view_cols

    @property
    def view_rows(self) -> int:
        return self.__view_rows

    def in_bounds(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def clamp(self, x: int, y: int) -> Position:
        return Position(x=max(self.min_x, min(self.max_x, x)), y=max(self.min_y, min(self.max_y, y)))

    def view_origin(self, focus_x: int, focus_y: int) -> Position:
        """注目点を中心にした表示窓の左上。窓がワールド外にはみ出さないように丸める。"""
        x0 = focus_x - self.__view_cols // 2
        y0 = focus_y - self.__view_rows // 2
        x_hi = max(self.min_x, self.max_x - self.__view_cols + 1)
        y_hi = max(self.min_y, self.max_y - self.__view_rows + 1)
        return Position(x=max(self.min_x, min(x_hi, x0)), y=max(self.min_y, min(y_hi, y0)))

    def blocked_kind(self, x: int, y: int) -> Optional[str]:
        tile = self.__blocked.get(f"{x},{y}")
        return tile.kind if tile is not None else None

    def is_blocked(self, x: int, y: int) -> bool:
        return f"{x},{y}" in self.__blocked

    def blocked_tile(self, x: int, y: int) -> Optional[BlockedTile]:
        return self.__blocked.get(f"{x},{y}")

    @property
    def blocked_tiles(self) -> list[BlockedTile]:
        return list(self.__blocked.values())

    def hazard_damage(self, x: int, y: int) -> int:
        hazard = self.__hazards.get(f"{x},{y}")
        return hazard.damage if hazard is not None else 0

    @property
    def hazards(self) -> list[Hazard]:
        return list(self.__hazards.values())

    @property
    def checkpoints(self) -> tuple[Checkpoint, ...]:
        return self.__checkpoints

    def checkpoint_at(self, x: int, y: int) -> Optional[Checkpoint]:
        """半径内（ユークリッド距離）にある最初のチェックポイント。"""
        for cp in self.__checkpoints:
            if math.hypot(x - cp.x, y - cp.y) <= cp.radius:
                return cp
        return None

    def to_payload(self) -> dict:
        return {
            "world": self.__bounds.model_dump(),
            "viewport": {"cols": self.__view_cols, "rows": self.__view_rows},
            "blocked": [t.model_dump() for t in self.blocked_tiles],
            "hazards": [h.model_dump() for h in self.hazards],
            "checkpoints": [c.model_dump() for c in self.__checkpoints],
        }

    def dump(self, marks: dict[Position, str] | None = None):
        """キャラクタベースでマップをプリントする。
        '.' 海, '#' rock, '~' reef, '=' wall, '!' hazard。marks で任意の記号を上書きする。
        """
        symbols = {"rock": "#", "reef": "~", "wall": "="}
        marks = marks or {}
        yy = "    "
        for x in range(self.min_x, self.max_x + 1):
            yy += f"{x:3d}"
        print(yy)
        for y in range(self.min_y, self.max_y + 1):
            chars = []
            for x in range(self.min_x, self.max_x + 1):
                pos = Position(x=x, y=y)
                if pos in marks:
                    c = marks[pos]
                elif self.is_blocked(x, y):
                    c = symbols.get(self.blocked_kind(x, y) or "", "?")
                elif self.hazard_damage(x, y) > 0:
                    c = "!"
                else:
                    c = "."
                chars.append(f"{c:>3}")
            print(f"{y:3d}:" + "".join(chars))
