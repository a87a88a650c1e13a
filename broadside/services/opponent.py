from abc import ABC, abstractmethod
import random
from typing import Iterable, Optional

from broadside.schemas import GameState, MoveAction, NoopAction, ShootAction, action_from_choice

"""敵艦の行動選択ルーチン（差し替え可能な戦略）"""

ENEMY_CHOICES: tuple[str, ...] = ("F", "L", "R", "SHOOT")

EnemyAction = MoveAction | ShootAction | NoopAction


class OpponentPolicy(ABC):
    """敵艦の行動を1ターンに1つ選ぶ抽象クラス"""
    name = "opponent"

    @abstractmethod
    def choose(self, state: GameState) -> Optional[EnemyAction]:
        """None を返した場合、敵艦はそのターン何もしない"""

    def reset(self) -> None:
        """マップ再読み込み時に呼ばれる"""


class RandomPolicy(OpponentPolicy):
    """F/L/R/SHOOT から一様ランダム。seed を与えると再現可能"""
    name = "random"

    def __init__(self, seed: int | None = None, choices: Iterable[str] = ENEMY_CHOICES):
        self.seed = seed
        self.choices = tuple(choices)
        self.rng = random.Random(seed)

    def choose(self, state: GameState) -> Optional[EnemyAction]:
        if not self.choices:
            return None
        return action_from_choice(self.rng.choice(self.choices))

    def reset(self) -> None:
        self.rng = random.Random(self.seed)


class ScriptedPolicy(OpponentPolicy):
    """決められた順に行動する。使い切ったら何もしない"""
    name = "scripted"

    def __init__(self, choices: Iterable[str]):
        self.script = tuple(choices)
        self.index = 0

    def choose(self, state: GameState) -> Optional[EnemyAction]:
        if self.index >= len(self.script):
            return None
        choice = self.script[self.index]
        self.index += 1
        if choice == "NOOP":
            return NoopAction()
        return action_from_choice(choice)

    def reset(self) -> None:
        self.index = 0


class IdlePolicy(OpponentPolicy):
    """何もしない"""
    name = "idle"

    def choose(self, state: GameState) -> Optional[EnemyAction]:
        return None
