from typing import Dict

from .errors import BudgetExceeded


class StepBudget:
    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_steps - self.used)

    def snapshot(self) -> Dict[str, int]:
        return {"used": self.used, "remaining": self.remaining, "max": self.max_steps}

    def consume(self, label: str) -> None:
        self.used += 1
        if self.used > self.max_steps:
            raise BudgetExceeded(label, self.max_steps)
