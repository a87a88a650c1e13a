import asyncio
import json
import os
import uuid
from threading import Lock
from typing import Any, Callable, Optional

from broadside.schemas import (
    ActionResponse,
    Config,
    MapListItem,
    MapListResponse,
    StateSnapshot,
    VoteResponse,
    coerce_action,
)
from broadside.services.engine import TurnEngine, monotonic_ms
from broadside.services.maps import get_all_maps, get_map_by_id
from broadside.services.opponent import OpponentPolicy, RandomPolicy
from broadside.services.votes import VoteCollector, label_to_choice
from broadside.utils.audit import game_write

# Debug flag: enable when running tests or when env var BROADSIDE_DEBUG is set
DEBUG = bool(os.getenv('BROADSIDE_DEBUG')) or ('PYTEST_CURRENT_TEST' in os.environ)


def _dbg(*args, **kwargs):
    if DEBUG:
        print(*args, **kwargs)


class GameSession:
    """
    サーバ側で1つのゲームを持つ。
    - 定期的な tick() でエンジンを進め、決着後は一定時間でマップを読み直す
    - 投票・直接コマンドの受付
    - 購読者（SSE）へのスナップショット配信
    """
    def __init__(self, config: Config | None = None, *,
                 now: Callable[[], float] | None = None,
                 policy: OpponentPolicy | None = None,
                 session_id: str | None = None,
                 log_enabled: bool = True):
        self.config = config or Config()
        self.session_id = session_id or str(uuid.uuid4())
        self.lock = Lock()
        self.collector = VoteCollector()
        self.engine = TurnEngine(
            get_map_by_id(self.config.default_map),
            turn_ms=self.config.turn_ms,
            lock_window_ms=self.config.lock_window_ms,
            now=now or monotonic_ms,
            vote_collector=self.collector,
            policy=policy or RandomPolicy(self.config.opponent_seed),
            log_id=self.session_id if log_enabled else None,
        )
        self.subscribers: list[asyncio.Queue[str]] = []

    @property
    def log_id(self) -> Optional[str]:
        return self.engine.log_id

    def now(self) -> float:
        return self.engine.now()

    # --- clock ---

    def tick(self, now: float | None = None) -> bool:
        with self.lock:
            t = self.now() if now is None else now
            self._handle_result_reset(t)
            if self.config.auto_start and self.engine.mode == "start":
                self.engine.start(t)
            resolved = self.engine.update(t)
        self.broadcast()
        return resolved

    def _handle_result_reset(self, t: float) -> None:
        if not self.config.auto_reset or self.engine.result is None:
            return
        elapsed = self.engine.result_elapsed(t)
        if elapsed is None or elapsed < self.config.result_reset_ms:
            return
        _dbg(f"[Session {self.session_id}] result {self.engine.result} shown, reloading {self.engine.map_def.id}")
        self.engine.load_map(now=t)

    # --- inputs ---

    def submit_vote(self, voter_id: str | None, action: str | None, weight: float = 1) -> VoteResponse:
        if not voter_id or not action:
            return VoteResponse(ok=False, reason="missing", message="Missing name or action")
        with self.lock:
            if self.engine.phase() != "voting":
                return VoteResponse(ok=False, reason="locked", message="Voting is locked")
            choice = label_to_choice(action)
            accepted = choice is not None and self.collector.add_vote(voter_id, choice, weight)
        if not accepted:
            game_write(self.log_id, {"type": "vote_rejected", "voter": voter_id, "action": action})
            return VoteResponse(ok=False, reason="invalid", message="Invalid action")
        self.broadcast()
        return VoteResponse(ok=True)

    def queue_action(self, raw: Any) -> ActionResponse:
        action = coerce_action(raw)
        with self.lock:
            self.engine.queue_action(action)
        return ActionResponse(accepted=action.type != "noop", action=action)

    def start(self) -> StateSnapshot:
        with self.lock:
            self.engine.start()
        return self.snapshot()

    def reset(self) -> StateSnapshot:
        with self.lock:
            self.engine.load_map()
        self.broadcast()
        return self.snapshot()

    def load_map(self, map_id: str) -> StateSnapshot:
        with self.lock:
            self.engine.load_map(get_map_by_id(map_id))
        self.broadcast()
        return self.snapshot()

    # --- outputs ---

    def snapshot(self) -> StateSnapshot:
        return self.engine.snapshot()

    def snapshot_payload(self) -> dict:
        return self.snapshot().model_dump(mode="json")

    def list_maps(self) -> MapListResponse:
        items = []
        for m in get_all_maps():
            if m.world is not None:
                cols = m.world.max_x - m.world.min_x + 1
                rows = m.world.max_y - m.world.min_y + 1
            else:
                cols = m.grid.cols if m.grid else 0
                rows = m.grid.rows if m.grid else 0
            items.append(MapListItem(id=m.id, name=m.name, cols=cols, rows=rows))
        return MapListResponse(maps=items)

    # --- SSE subscribe/unsubscribe and broadcast ---

    def subscribe(self) -> asyncio.Queue[str]:
        q: asyncio.Queue[str] = asyncio.Queue(maxsize=100)
        self.subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue[str]) -> None:
        try:
            self.subscribers.remove(q)
        except ValueError:
            pass

    def broadcast(self) -> None:
        if not self.subscribers:
            return
        data = json.dumps(self.snapshot_payload(), ensure_ascii=False)
        for q in list(self.subscribers):
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                # 遅い購読者にはこのフレームを送らない
                pass
