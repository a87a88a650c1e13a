from threading import Lock
from typing import Optional

from broadside.schemas import VoteSummary

"""視聴者投票の集計。1ターンにつき1つの行動を決める。"""

VOTE_CHOICES: tuple[str, ...] = ("F", "L", "R", "SHOOT")

CHOICE_LABELS: dict[str, str] = {
    "F": "FORWARD",
    "L": "LEFT",
    "R": "RIGHT",
    "SHOOT": "SHOOT",
}
LABEL_CHOICES: dict[str, str] = {label: choice for choice, label in CHOICE_LABELS.items()}

# chat message -> action label
ACTION_TOKENS: dict[str, str] = {
    "forward": "FORWARD",
    "f": "FORWARD",
    "⬆": "FORWARD",
    "⬆️": "FORWARD",
    "left": "LEFT",
    "l": "LEFT",
    "⬅": "LEFT",
    "⬅️": "LEFT",
    "right": "RIGHT",
    "r": "RIGHT",
    "➡": "RIGHT",
    "➡️": "RIGHT",
    "shoot": "SHOOT",
    "s": "SHOOT",
    "🔫": "SHOOT",
    "💥": "SHOOT",
}


def label_to_choice(label: str | None) -> Optional[str]:
    if not label:
        return None
    return LABEL_CHOICES.get(str(label).strip().upper())


def choice_to_label(choice: str | None) -> Optional[str]:
    if choice is None:
        return None
    return CHOICE_LABELS.get(choice)


def parse_vote_action(text: str | None) -> Optional[str]:
    """Map a raw chat message to an action label, or None when it is not a vote."""
    if not text:
        return None
    return ACTION_TOKENS.get(str(text).strip().lower())


def _valid_weight(weight) -> bool:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        return False
    return weight > 0


class VoteCollector:
    """Last vote per voter wins; ties go to the earliest choice in priority order.

    Every method takes the same lock, so a vote is either counted in the
    window closed by take_winner() or in the next one.
    """
    def __init__(self, priority: tuple[str, ...] | list[str] = VOTE_CHOICES):
        self.priority: tuple[str, ...] = tuple(priority)
        self._votes: dict[str, tuple[str, float]] = {}
        self._lock = Lock()

    def add_vote(self, voter_id: str, choice: str, weight: float = 1) -> bool:
        if not voter_id or choice not in self.priority:
            return False
        if not _valid_weight(weight):
            return False
        with self._lock:
            self._votes[voter_id] = (choice, weight)
        return True

    def reset(self) -> None:
        with self._lock:
            self._votes.clear()

    def tally(self) -> dict[str, float]:
        with self._lock:
            return self._tally()

    def resolve_winner(self) -> Optional[str]:
        with self._lock:
            return self._winner(self._tally())

    def take_winner(self) -> Optional[str]:
        """resolve_winner() and reset() as one step."""
        with self._lock:
            winner = self._winner(self._tally())
            self._votes.clear()
            return winner

    def voter_count(self) -> int:
        with self._lock:
            return len(self._votes)

    def summary(self) -> VoteSummary:
        with self._lock:
            counts = self._tally()
            voters = len(self._votes)
        return VoteSummary(
            counts_by_action={CHOICE_LABELS.get(c, c): n for c, n in counts.items()},
            total_votes=sum(counts.values()),
            unique_voters=voters,
        )

    def _tally(self) -> dict[str, float]:
        counts: dict[str, float] = {c: 0 for c in self.priority}
        for choice, weight in self._votes.values():
            counts[choice] += weight
        return counts

    def _winner(self, counts: dict[str, float]) -> Optional[str]:
        best = None
        best_score = 0
        for choice in self.priority:
            score = counts[choice]
            if score > best_score:
                best = choice
                best_score = score
        return best
