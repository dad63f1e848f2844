import json
import sys
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Protocol, TextIO, Union

from pydantic import BaseModel, Field


class _EventBase(BaseModel):
    completed_steps: int = 0
    estimated_total_steps: int = 1
    cost_so_far_usd: Optional[float] = None
    cost_so_far_priced: bool = False
    cost_so_far_partially_priced: bool = False
    cost_so_far_missing_pricing_for: List[str] = Field(default_factory=list)


class RunStart(_EventBase):
    type: Literal["run_start"] = "run_start"
    input: str


class StepStart(_EventBase):
    type: Literal["step_start"] = "step_start"
    step_id: str
    title: str
    detail: Optional[str] = None


class StepEnd(_EventBase):
    type: Literal["step_end"] = "step_end"
    step_id: str
    title: str
    learned: str


class StepDetail(_EventBase):
    type: Literal["step_detail"] = "step_detail"
    step_id: str
    title: str
    level: Literal[1, 2, 3]
    message: str


class BudgetUpdate(_EventBase):
    type: Literal["budget_update"] = "budget_update"
    remaining_steps: int


class RunEnd(_EventBase):
    type: Literal["run_end"] = "run_end"
    final_answer_chars: int
    usage: Optional[Dict[str, int]] = None
    usage_details: Optional[Dict[str, int]] = None
    cost_usd: Optional[float] = None
    cost_priced: bool = False
    cost_partially_priced: bool = False
    cost_missing_pricing_for: List[str] = Field(default_factory=list)


ProgressEvent = Annotated[
    Union[RunStart, StepStart, StepEnd, StepDetail, BudgetUpdate, RunEnd],
    Field(discriminator="type"),
]


class Reporter(Protocol):
    def emit(self, event: Any) -> None: ...


class NullReporter:
    def emit(self, event: Any) -> None:
        return None


class CollectingReporter:
    def __init__(self) -> None:
        self.events: List[Any] = []

    def emit(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Any]:
        return [e for e in self.events if e.type == event_type]


def truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    cleaned = text.strip()
    if len(cleaned) <= max_chars:
        return cleaned
    return f"{cleaned[: max(0, max_chars - 14)].rstrip()} ...(truncated)"


def format_elapsed(ms: float) -> str:
    total_seconds = max(0, int(ms // 1000))
    s = total_seconds % 60
    m = (total_seconds // 60) % 60
    h = total_seconds // 3600
    if h > 0:
        return f"{h}h{m:02d}m{s:02d}s"
    if m > 0:
        return f"{m}m{s:02d}s"
    return f"{s}s"


def format_usd_label(cost_usd: Optional[float]) -> str:
    if cost_usd is None or cost_usd < 0:
        return ""
    if 0 < cost_usd < 0.01:
        return "$<0.01"
    return f"${cost_usd:.2f}"


DETAIL_LIMITS = {1: 400, 2: 1400, 3: 4500}


class ConsoleReporter:
    """Pretty progress lines on stderr, or one JSON record per line."""

    def __init__(
        self,
        pretty: bool = True,
        jsonl: bool = False,
        verbosity: int = 0,
        stream: Optional[TextIO] = None,
        json_stream: Optional[TextIO] = None,
    ):
        self.pretty = pretty
        self.jsonl = jsonl
        self.verbosity = verbosity
        self.stream = stream or sys.stderr
        self.json_stream = json_stream or sys.stdout
        self.started = time.monotonic()
        self.last_pct = 0

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def percent(self, event: Any) -> int:
        if event.type == "run_start":
            pct = 0
        elif event.type == "run_end":
            pct = 100
        else:
            total = max(1, event.estimated_total_steps)
            pct = min(100, round(event.completed_steps / total * 100))
        # Monotonic even when the estimate is revised upward.
        pct = max(pct, self.last_pct)
        self.last_pct = pct
        return pct

    def _write(self, line: str) -> None:
        print(line, file=self.stream, flush=True)

    def emit(self, event: Any) -> None:
        elapsed = self.elapsed_ms()
        if self.jsonl or not self.pretty:
            record = {**event.model_dump(), "elapsed_ms": elapsed}
            print(json.dumps(record, ensure_ascii=False), file=self.json_stream, flush=True)
            return

        pct = self.percent(event)
        cost_label = format_usd_label(event.cost_so_far_usd)
        prefix = f"[{pct:>3}%][{format_elapsed(elapsed):>8}]" + (f"[{cost_label}]" if cost_label else "")
        step_tag = f" [{event.step_id}]" if self.verbosity >= 2 and hasattr(event, "step_id") else ""

        if event.type == "run_start":
            self._write(f"{prefix} starting: {event.input}")
        elif event.type == "step_start":
            detail = f" ({event.detail})" if event.detail else ""
            self._write(f"{prefix} -> {event.title}{step_tag}{detail}")
        elif event.type == "step_end":
            self._write(f"{prefix} <- {event.title}{step_tag}: {event.learned}")
        elif event.type == "step_detail":
            if self.verbosity < event.level:
                return
            message = truncate(event.message, DETAIL_LIMITS.get(self.verbosity, 4500))
            if message:
                self._write(f"{prefix}    {event.title} [v{event.level}]: {message}")
        elif event.type == "budget_update":
            self._write(f"{prefix} budget: {event.remaining_steps} steps remaining")
        elif event.type == "run_end":
            self._write(f"{prefix} done ({event.final_answer_chars} chars{self._usage_suffix(event)})")

    def _usage_suffix(self, event: RunEnd) -> str:
        parts = ""
        if event.usage:
            parts += (
                f", tokens={event.usage.get('total_tokens', 0)}"
                f" (in={event.usage.get('input_tokens', 0)}, out={event.usage.get('output_tokens', 0)})"
            )
        if event.usage_details:
            parts += (
                f", cached_in={event.usage_details.get('cached_input_tokens', 0)}"
                f", reasoning={event.usage_details.get('reasoning_tokens', 0)}"
                f", web_search_calls={event.usage_details.get('web_search_calls', 0)}"
            )
        if event.cost_priced and event.cost_usd is not None:
            parts += f", cost=${event.cost_usd:.4f}"
        elif event.cost_partially_priced and event.cost_usd is not None:
            missing = ", ".join(event.cost_missing_pricing_for)
            parts += f", cost~${event.cost_usd:.4f} (partial; missing {missing})"
        else:
            parts += ", cost=unpriced"
        return parts
