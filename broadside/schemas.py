import os
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SHIP_MAX_HP = 3
SHIP_AMMO = 15
TURN_MS = 2000
LOCK_WINDOW_MS = 200
RESULT_RESET_MS = 2000
TICK_INTERVAL_MS = 100

BlockedKind = Literal["rock", "reef", "wall"]
AnchorMode = Literal["bottom", "top"]
GameMode = Literal["start", "playing", "resultSet"]
GameResult = Literal["win", "loss"]
Phase = Literal["voting", "locked", "resolving"]


class Position(BaseModel, frozen=True):

    x: int
    y: int

    def __hash__(self):
        return hash((self.x, self.y))

    def __eq__(self, other):
        if isinstance(other, Position):
            return self.x == other.x and self.y == other.y
        return False

    def offset(self, dx: int, dy: int) -> 'Position':
        return Position(x=self.x + dx, y=self.y + dy)


# === Map authoring (camelCase on the wire, snake_case in code) ===

class AuthoringModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)


class GridSize(AuthoringModel):
    rows: int
    cols: int


class WorldBounds(AuthoringModel):
    min_x: int = 0
    min_y: int = 0
    max_x: int
    max_y: int


class Viewport(AuthoringModel):
    rows: int
    cols: int


class ShipSpawn(AuthoringModel):
    x: int
    y: int
    dir: int = 0
    hp: int = SHIP_MAX_HP
    ammo: int = SHIP_AMMO


class BlockedTile(AuthoringModel):
    x: int
    y: int
    kind: BlockedKind = "rock"
    group_id: Optional[str] = None


class BlockedAnchor(AuthoringModel):
    x: int
    y: int
    anchor_mode: AnchorMode = "bottom"


class Footprint(AuthoringModel):
    w: int = 1
    h: int = 1


class BlockedGroup(AuthoringModel):
    id: str
    kind: BlockedKind = "rock"
    anchor: BlockedAnchor
    footprint: Footprint = Footprint()


class Hazard(AuthoringModel):
    x: int
    y: int
    damage: int = 1
    kind: Optional[str] = None


class Checkpoint(AuthoringModel):
    id: str
    x: int
    y: int
    radius: float = 1
    label: str = ""


class MapDef(AuthoringModel):
    id: str
    name: str = ""
    seed: int = 0
    grid: Optional[GridSize] = None
    world: Optional[WorldBounds] = None
    viewport: Optional[Viewport] = None
    spawn: ShipSpawn
    enemy_spawn: Optional[ShipSpawn] = None
    blocked: List[BlockedTile] = []
    blocked_groups: List[BlockedGroup] = []
    hazards: List[Hazard] = []
    checkpoints: List[Checkpoint] = []
    theme: Optional[Dict[str, Any]] = None


# === Ships ===

class ShipStats(BaseModel, frozen=True):
    x: int
    y: int
    dir: int
    hp: int
    max_hp: int
    ammo: int


class ShipState(BaseModel, frozen=True):
    x: int
    y: int
    dir: int = 0
    hp: int = SHIP_MAX_HP
    max_hp: int = SHIP_MAX_HP
    ammo: int = SHIP_AMMO
    last_damage_at: float = 0
    prev: Optional[Position] = None  # 前回のタイル（軌跡表示用）

    @property
    def pos(self) -> Position:
        return Position(x=self.x, y=self.y)

    def is_alive(self) -> bool:
        return self.hp > 0

    def damaged(self, amount: int, now: float) -> 'ShipState':
        if amount <= 0:
            return self
        return self.model_copy(update={"hp": max(0, self.hp - amount), "last_damage_at": now})

    def moved_to(self, pos: Position) -> 'ShipState':
        return self.model_copy(update={"x": pos.x, "y": pos.y})

    def stats(self) -> ShipStats:
        return ShipStats(x=self.x, y=self.y, dir=self.dir, hp=self.hp, max_hp=self.max_hp, ammo=self.ammo)

    @staticmethod
    def from_spawn(spawn: ShipSpawn) -> 'ShipState':
        pos = Position(x=spawn.x, y=spawn.y)
        return ShipState(x=spawn.x, y=spawn.y, dir=spawn.dir % 4, hp=spawn.hp, max_hp=spawn.hp, ammo=spawn.ammo, prev=pos)


# === Actions ===

class MoveAction(BaseModel, frozen=True):
    type: Literal["move"] = "move"
    move: str
    label: Optional[str] = None


class ShootAction(BaseModel, frozen=True):
    type: Literal["shoot"] = "shoot"
    label: Optional[str] = None


class NoopAction(BaseModel, frozen=True):
    type: Literal["noop"] = "noop"
    label: Optional[str] = None


Action = Annotated[Union[MoveAction, ShootAction, NoopAction], Field(discriminator="type")]


def coerce_action(raw: Any) -> 'MoveAction|ShootAction|NoopAction':
    """Turn a queued command into an Action. Anything unrecognised becomes a NoopAction."""
    if isinstance(raw, (MoveAction, ShootAction, NoopAction)):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return NoopAction()
    label = raw.get("label") if isinstance(raw.get("label"), str) else None
    kind = raw.get("type")
    if kind == "move":
        move = raw.get("move")
        return MoveAction(move=move if isinstance(move, str) else "", label=label)
    if kind == "shoot":
        return ShootAction(label=label)
    return NoopAction(label=label)


def action_from_choice(choice: str, label: Optional[str] = None) -> 'MoveAction|ShootAction':
    if choice == "SHOOT":
        return ShootAction(label=label)
    return MoveAction(move=choice, label=label)


# === Outcomes ===

class AnimationPlan(BaseModel, frozen=True):
    """Presentation-only description of a move: waypoints, facing per segment and an optional pause."""
    waypoints: Tuple[Position, ...]
    facings: Tuple[int, ...] = ()
    hold_index: Optional[int] = None
    hold_ms: int = 0


class MoveOutcomeBase(BaseModel, frozen=True):
    moved: bool = False
    damage: int = 0
    steps: Tuple[Position, ...] = ()
    new_dir: Optional[int] = None
    animation: Optional[AnimationPlan] = None

    @property
    def damaged(self) -> bool:
        return self.damage > 0


class Moved(MoveOutcomeBase, frozen=True):
    kind: Literal["moved"] = "moved"
    reason: Literal["ok"] = "ok"
    moved: bool = True


class Blocked(MoveOutcomeBase, frozen=True):
    kind: Literal["blocked"] = "blocked"
    reason: Literal["blocked"] = "blocked"


class Collision(MoveOutcomeBase, frozen=True):
    kind: Literal["collision"] = "collision"
    reason: Literal["collision"] = "collision"


class OutOfBounds(MoveOutcomeBase, frozen=True):
    kind: Literal["out_of_bounds"] = "out_of_bounds"
    reason: Literal["oob", "corner_oob", "corner_oob_slide"] = "oob"


class NoopOutcome(MoveOutcomeBase, frozen=True):
    kind: Literal["noop"] = "noop"
    reason: Literal["noop", "noop_tick"] = "noop"


class ShotTile(BaseModel, frozen=True):
    x: int
    y: int
    level: int  # 3=近 2=中 1=遠 (表示用)


class ShotOutcome(BaseModel, frozen=True):
    kind: Literal["shot"] = "shot"
    shot: bool
    reason: Literal["ok", "no_ammo"] = "ok"
    paths: Tuple[Tuple[ShotTile, ...], ...] = ()
    hit_damage: int = 0

    @property
    def moved(self) -> bool:
        return False


Outcome = Union[Moved, Blocked, Collision, OutOfBounds, NoopOutcome, ShotOutcome]


# === Game state ===

class Projectile(BaseModel, frozen=True):
    from_x: int
    from_y: int
    to_x: int
    to_y: int
    spawn_time: float
    duration_ms: int
    path: Tuple[Position, ...] = ()


class CheckpointSnapshot(BaseModel, frozen=True):
    checkpoint_id: str
    turn_index: int
    ship_stats: ShipStats
    enemy_stats: Optional[ShipStats] = None


class GameState(BaseModel, frozen=True):
    """One immutable value per tick. `world` is the per-map grid model (see services/world.py)."""
    map_id: str
    map_seed: int = 0
    world: Any = Field(exclude=True, repr=False)
    ship: ShipState
    enemy: ShipState
    enemy_spawn: Optional[ShipSpawn] = None
    mode: GameMode = "start"
    result: Optional[GameResult] = None
    result_at: Optional[float] = None
    turn_index: int = 0
    queued_action: Optional[Action] = None
    projectiles: Tuple[Projectile, ...] = ()
    shot_tiles: Tuple[ShotTile, ...] = ()
    shot_at: float = 0
    view_x0: int = 0
    view_y0: int = 0
    last_checkpoint_id: Optional[str] = None
    last_checkpoint: Optional[CheckpointSnapshot] = None

    def ship_by_key(self, key: str) -> ShipState:
        if key == "ship":
            return self.ship
        if key == "enemy":
            return self.enemy
        raise ValueError(f"unknown ship key: {key}")

    def to_payload(self) -> dict:
        payload = self.model_dump(mode="json")
        payload.update(self.world.to_payload())
        return payload


# === Config ===

def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    turn_ms: int = TURN_MS
    lock_window_ms: int = LOCK_WINDOW_MS
    result_reset_ms: int = RESULT_RESET_MS
    tick_interval_ms: int = TICK_INTERVAL_MS
    default_map: str = "islands"
    opponent_seed: Optional[int] = None
    auto_start: bool = True
    auto_reset: bool = True

    @classmethod
    def from_env(cls) -> 'Config':
        return cls(
            turn_ms=_env_int("BROADSIDE_TURN_MS", TURN_MS),
            lock_window_ms=_env_int("BROADSIDE_LOCK_WINDOW_MS", LOCK_WINDOW_MS),
            result_reset_ms=_env_int("BROADSIDE_RESULT_RESET_MS", RESULT_RESET_MS),
            tick_interval_ms=_env_int("BROADSIDE_TICK_MS", TICK_INTERVAL_MS),
            default_map=os.getenv("BROADSIDE_MAP") or "islands",
            opponent_seed=_env_int("BROADSIDE_SEED", None),
            auto_start=_env_bool("BROADSIDE_AUTO_START", True),
            auto_reset=_env_bool("BROADSIDE_AUTO_RESET", True),
        )


# === HTTP boundary ===

class VoteRequest(BaseModel):
    name: Optional[str] = None
    action: Optional[str] = None


class VoteResponse(BaseModel):
    ok: bool
    reason: Optional[Literal["missing", "locked", "invalid"]] = None
    message: Optional[str] = None


class ActionRequest(BaseModel):
    type: str
    move: Optional[str] = None
    label: Optional[str] = None


class ActionResponse(BaseModel):
    accepted: bool
    action: Optional[Action] = None


class VoteSummary(BaseModel):
    counts_by_action: Dict[str, float] = {}
    total_votes: float = 0
    unique_voters: int = 0


class StateSnapshot(BaseModel):
    state: Dict[str, Any]
    server_now_ms: float
    turn: int
    mode: GameMode
    result: Optional[GameResult] = None
    phase: Phase
    countdown_ms: float
    queued_action: Optional[str] = None
    votes: Optional[VoteSummary] = None
    last_outcome: Optional[Dict[str, Any]] = None
    last_enemy_outcome: Optional[Dict[str, Any]] = None
    last_checkpoint: Optional[CheckpointSnapshot] = None


class MapListItem(BaseModel):
    id: str
    name: str
    cols: int
    rows: int


class MapListResponse(BaseModel):
    maps: List[MapListItem] = []
