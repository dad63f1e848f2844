from typing import Optional


class HarnessError(Exception):
    """Base class for failures that abort a run."""


class ExtractionFailed(HarnessError):
    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class BudgetExceeded(HarnessError):
    def __init__(self, label: str, max_steps: int):
        super().__init__(f"Step budget exceeded ({max_steps}). Last step: {label}")
        self.label = label
        self.max_steps = max_steps


class Aborted(HarnessError):
    """Cancellation was observed at a checkpoint; callers treat this as a user stop."""

    def __init__(self, stage: Optional[str] = None):
        super().__init__(f"aborted before {stage}" if stage else "aborted")
        self.stage = stage
