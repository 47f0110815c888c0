"""Per-cycle dispatch result value object."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field


@dataclass
class DispatchSummary:
    selected: int = 0
    outcomes: Counter = field(default_factory=Counter)

    def record(self, outcome: str) -> None:
        self.outcomes[outcome] += 1

    def count(self, outcome: str) -> int:
        return self.outcomes.get(outcome, 0)

    @property
    def processed(self) -> int:
        return sum(self.outcomes.values())

    def as_dict(self) -> dict[str, int]:
        return {"selected": self.selected, **dict(self.outcomes)}
