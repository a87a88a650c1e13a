import math
import os
import time
from typing import Any, Callable, Optional

from broadside.schemas import (
    CheckpointSnapshot,
    GameState,
    MapDef,
    MoveAction,
    NoopAction,
    Outcome,
    ShootAction,
    StateSnapshot,
    TURN_MS,
    LOCK_WINDOW_MS,
    action_from_choice,
    coerce_action,
)
from broadside.services.maps import create_initial_state, get_map
from broadside.services.opponent import OpponentPolicy
from broadside.services.rules import (
    apply_shot_damage,
    other_actor,
    prune_projectiles,
    resolve_move,
    resolve_noop,
    resolve_shoot,
)
from broadside.services.votes import VoteCollector, choice_to_label
from broadside.utils.audit import game_write

# Debug flag: enable when running tests or when env var BROADSIDE_DEBUG is set
DEBUG = bool(os.getenv('BROADSIDE_DEBUG')) or ('PYTEST_CURRENT_TEST' in os.environ)


def _dbg(log_id: str | None, *args, **kwargs):
    """Debug helper: prints when DEBUG, always writes to the game log."""
    if DEBUG:
        print(*args, **kwargs)
    game_write(log_id, {"type": "debug", "msg": " ".join(str(a) for a in args)})


def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0


class TurnEngine:
    """
    1ターン = turn_ms。ターンごとにちょうど1つの行動（または何もしない）を解決する。

    行動の優先順位: 直接キューされたコマンド > 投票の勝者 > 何もしない。
    自艦の行動 → ハザード → チェックポイント → 勝敗判定 → 敵艦の行動 → ハザード → 勝敗判定。
    """
    def __init__(self, map_def: MapDef | dict | str | None = None, *,
                 initial_state: GameState | None = None,
                 turn_ms: int = TURN_MS,
                 lock_window_ms: int = LOCK_WINDOW_MS,
                 now: Callable[[], float] | None = None,
                 vote_collector: VoteCollector | None = None,
                 policy: OpponentPolicy | None = None,
                 log_id: str | None = None):
        if turn_ms <= 0:
            raise ValueError("turn_ms must be positive.")
        self.turn_ms = turn_ms
        self.lock_window_ms = lock_window_ms
        self.now: Callable[[], float] = now or monotonic_ms
        self.vote_collector = vote_collector
        self.policy = policy
        self.log_id = log_id
        if initial_state is not None:
            self.map_def: MapDef = get_map(map_def if map_def is not None else initial_state.map_id)
            self.state: GameState = initial_state
        else:
            self.map_def = get_map(map_def)
            self.state = create_initial_state(self.map_def)
        self.next_tick_at: float = self.now() + self.turn_ms
        self.last_outcome: Optional[Outcome] = None
        self.last_enemy_outcome: Optional[Outcome] = None
        self._bootstrap_log()

    def _bootstrap_log(self) -> None:
        world = self.state.world
        game_write(self.log_id, {
            "type": "game_bootstrap",
            "map_id": self.state.map_id,
            "seed": self.state.map_seed,
            "bounds": [world.min_x, world.min_y, world.max_x, world.max_y],
            "turn_ms": self.turn_ms,
            "ship": self.state.ship.stats().model_dump(),
            "enemy": self.state.enemy.stats().model_dump(),
        })

    # --- inputs ---

    def queue_action(self, action: Any) -> None:
        """直接コマンド。次に解決されるターンで消費され、投票より優先される。"""
        self.state = self.state.model_copy(update={"queued_action": coerce_action(action)})

    def start(self, now: float | None = None) -> None:
        """start -> playing のみ。決着後は load_map() で start に戻してから呼ぶ。"""
        if self.state.mode != "start":
            return
        t = self.now() if now is None else now
        self.state = self.state.model_copy(update={"mode": "playing"})
        self.next_tick_at = t + self.turn_ms
        _dbg(self.log_id, f"[Engine] start map={self.state.map_id}")

    def load_map(self, map_ref: MapDef | dict | str | None = None, now: float | None = None) -> None:
        """状態・スケジュール・直前の結果をすべて初期化する。"""
        t = self.now() if now is None else now
        self.map_def = get_map(map_ref if map_ref is not None else self.map_def)
        self.state = create_initial_state(self.map_def)
        self.next_tick_at = t + self.turn_ms
        self.last_outcome = None
        self.last_enemy_outcome = None
        if self.vote_collector is not None:
            self.vote_collector.reset()
        if self.policy is not None:
            self.policy.reset()
        self._bootstrap_log()

    # --- clock ---

    def update(self, now: float | None = None) -> bool:
        """Advance the clock. Returns True when a turn was resolved."""
        t = self.now() if now is None else now
        if self.state.projectiles:
            self.state = prune_projectiles(self.state, t)
        if self.state.mode != "playing":
            return False
        if t < self.next_tick_at:
            return False

        # catch-up without drift: at most one turn per call
        overdue = t - self.next_tick_at
        self.next_tick_at += (math.floor(overdue / self.turn_ms) + 1) * self.turn_ms

        self._resolve_turn(t)
        return True

    def ms_left(self, now: float | None = None) -> float:
        t = self.now() if now is None else now
        return self.next_tick_at - t

    def phase(self, now: float | None = None) -> str:
        if self.state.result is not None:
            return "resolving"
        # 開始前はスケジュールが動いていないので締め切りもない
        if self.state.mode == "start":
            return "voting"
        if max(0.0, self.ms_left(now)) <= self.lock_window_ms:
            return "locked"
        return "voting"

    # --- turn resolution ---

    def _select_action(self):
        # 投票は毎ターン必ず1回だけ締め切る（直接コマンドが勝った場合も）
        winner = self.vote_collector.take_winner() if self.vote_collector is not None else None
        if self.state.queued_action is not None:
            return self.state.queued_action
        if winner is not None:
            return action_from_choice(winner, label=f"VOTE: {choice_to_label(winner)}")
        return None

    def _resolve_turn(self, t: float) -> None:
        turn = self.state.turn_index + 1
        action = self._select_action()
        self.state = self.state.model_copy(update={"queued_action": None})
        game_write(self.log_id, {"type": "turn_start", "turn": turn,
                                 "action": action.model_dump() if action is not None else None})

        self.last_outcome = self._resolve_action("ship", action, t)
        self._check_result(t)

        self.last_enemy_outcome = None
        if self.state.result is None and self.policy is not None:
            enemy_action = self.policy.choose(self.state)
            if enemy_action is not None:
                self.last_enemy_outcome = self._resolve_action("enemy", enemy_action, t)
                self._check_result(t)

        ship = self.state.ship
        view = self.state.world.view_origin(ship.x, ship.y)
        self.state = self.state.model_copy(update={"turn_index": turn, "view_x0": view.x, "view_y0": view.y})

        enemy = self.state.enemy
        _dbg(self.log_id,
             f"[Turn {turn}] end: ship({ship.x},{ship.y}) HP={ship.hp} ammo={ship.ammo} / "
             f"enemy({enemy.x},{enemy.y}) HP={enemy.hp} ammo={enemy.ammo}")
        game_write(self.log_id, {
            "type": "turn_end",
            "turn": turn,
            "ship": {"pos": [ship.x, ship.y], "hp": ship.hp, "ammo": ship.ammo},
            "enemy": {"pos": [enemy.x, enemy.y], "hp": enemy.hp, "ammo": enemy.ammo},
            "result": self.state.result,
        })

    def _resolve_action(self, actor: str, action: Any, t: float) -> Outcome:
        if isinstance(action, MoveAction):
            before = self.state.ship_by_key(actor).pos
            self.state, outcome = resolve_move(self.state, actor, action.move, t)
            after = self.state.ship_by_key(actor)
            game_write(self.log_id, {
                "type": "move",
                "turn": self.state.turn_index + 1,
                "actor": actor,
                "move": action.move,
                "reason": outcome.reason,
                "from": [before.x, before.y],
                "to": [after.x, after.y],
                "damage": outcome.damage,
            })
            if outcome.moved:
                self._apply_hazard_damage(actor, t)
                if actor == "ship":
                    self._capture_checkpoint()
            return outcome

        if isinstance(action, ShootAction):
            self.state, outcome = resolve_shoot(self.state, actor, t)
            if outcome.shot:
                self.state, hit = apply_shot_damage(self.state, actor, other_actor(actor), t)
                outcome = outcome.model_copy(update={"hit_damage": hit})
            game_write(self.log_id, {
                "type": "shoot",
                "turn": self.state.turn_index + 1,
                "actor": actor,
                "reason": outcome.reason,
                "hit_damage": outcome.hit_damage,
            })
            return outcome

        # None / NoopAction / 不明な行動は何もしないティック
        if action is not None and not isinstance(action, NoopAction):
            _dbg(self.log_id, f"[Engine] unknown action treated as noop: {action!r}")
        self.state, outcome = resolve_noop(self.state, actor)
        return outcome

    def _apply_hazard_damage(self, actor: str, t: float) -> None:
        ship = self.state.ship_by_key(actor)
        damage = self.state.world.hazard_damage(ship.x, ship.y)
        if damage <= 0:
            return
        self.state = self.state.model_copy(update={actor: ship.damaged(damage, t)})
        _dbg(self.log_id, f"[Turn {self.state.turn_index + 1}] {actor} hazard at {ship.x},{ship.y} dmg={damage}")
        game_write(self.log_id, {"type": "hazard", "actor": actor, "pos": [ship.x, ship.y], "damage": damage})

    def _capture_checkpoint(self) -> None:
        ship = self.state.ship
        cp = self.state.world.checkpoint_at(ship.x, ship.y)
        if cp is None or cp.id == self.state.last_checkpoint_id:
            return
        snap = CheckpointSnapshot(
            checkpoint_id=cp.id,
            turn_index=self.state.turn_index + 1,
            ship_stats=ship.stats(),
            enemy_stats=self.state.enemy.stats(),
        )
        self.state = self.state.model_copy(update={"last_checkpoint_id": cp.id, "last_checkpoint": snap})
        _dbg(self.log_id, f"[Turn {snap.turn_index}] checkpoint {cp.id} ({cp.label})")
        game_write(self.log_id, {"type": "checkpoint", "turn": snap.turn_index, "checkpoint": cp.id})

    def _check_result(self, t: float) -> None:
        """先にHPが0になった側で決着。一度決まったら上書きしない。"""
        if self.state.result is not None:
            return
        if not self.state.enemy.is_alive():
            result = "win"
        elif not self.state.ship.is_alive():
            result = "loss"
        else:
            return
        self.state = self.state.model_copy(update={"result": result, "result_at": t, "mode": "resultSet"})
        _dbg(self.log_id, f"[Turn {self.state.turn_index + 1}] result: {result}")
        game_write(self.log_id, {"type": "result", "turn": self.state.turn_index + 1, "result": result})

    # --- outputs ---

    @property
    def mode(self) -> str:
        return self.state.mode

    @property
    def result(self) -> Optional[str]:
        return self.state.result

    @property
    def turn_index(self) -> int:
        return self.state.turn_index

    def result_elapsed(self, now: float | None = None) -> Optional[float]:
        if self.state.result_at is None:
            return None
        t = self.now() if now is None else now
        return t - self.state.result_at

    def snapshot(self, now: float | None = None) -> StateSnapshot:
        t = self.now() if now is None else now
        if self.vote_collector is not None:
            votes = self.vote_collector.summary()
            queued = choice_to_label(self.vote_collector.resolve_winner())
        else:
            votes = None
            queued = None
        data = dict(
            state=self.state.to_payload(),
            server_now_ms=t,
            turn=self.state.turn_index + 1,
            mode=self.state.mode,
            result=self.state.result,
            phase=self.phase(t),
            countdown_ms=float(self.turn_ms) if self.state.mode == "start" else max(0.0, self.ms_left(t)),
            queued_action=queued,
            last_outcome=self.last_outcome.model_dump(mode="json") if self.last_outcome is not None else None,
            last_enemy_outcome=self.last_enemy_outcome.model_dump(mode="json") if self.last_enemy_outcome is not None else None,
            last_checkpoint=self.state.last_checkpoint,
        )
        if votes is not None:
            data["votes"] = votes
        return StateSnapshot(**data)
