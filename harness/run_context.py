import asyncio
import logging
from typing import Any, List, Optional

from .budget import StepBudget
from .config import HarnessSettings
from .cost import CostSummary, CostTracker
from .errors import Aborted
from .llm import LLMResult, ResponsesClient
from .progress import BudgetUpdate, Reporter, StepDetail, StepEnd, StepStart
from .sandbox import PythonResult, PythonSandbox
from .web_search import WebSearchResult, WebSearchTool


logger = logging.getLogger(__name__)

INITIAL_ESTIMATED_STEPS = 12
SUMMARY_FALLBACK = "No notable output."


class RunContext:
    """Per-run state shared by every stage.

    Owns the step budget, cost tracker, progress counters, cancellation flag
    and the background progress summaries. All inference and tool calls go
    through here so usage is always recorded.
    """

    def __init__(
        self,
        settings: HarnessSettings,
        reporter: Reporter,
        llm: ResponsesClient,
        web_search: WebSearchTool,
        sandbox: PythonSandbox,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.settings = settings
        self.reporter = reporter
        self.llm = llm
        self.web_search_tool = web_search
        self.sandbox = sandbox
        self.cancel_event = cancel_event
        self.budget = StepBudget(settings.max_steps)
        self.cost = CostTracker()
        self.completed_steps = 0
        self.estimated_total_steps = INITIAL_ESTIMATED_STEPS
        self.pending: List[asyncio.Task] = []

    @property
    def estimated(self) -> int:
        return max(1, self.estimated_total_steps)

    def check_aborted(self, stage: Optional[str] = None) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Aborted(stage)

    def consume(self, label: str) -> None:
        self.budget.consume(label)

    def cost_summary(self) -> CostSummary:
        return self.cost.summary(
            self.settings.pricing_usd_per_1m_tokens,
            self.settings.web_search_usd_per_1k_calls,
            self.settings.tavily_usd_per_1k_calls,
        )

    # progress

    def emit(self, event_cls: Any, **fields: Any) -> None:
        summary = self.cost_summary()
        fields.setdefault("completed_steps", self.completed_steps)
        fields.setdefault("estimated_total_steps", self.estimated)
        event = event_cls(
            cost_so_far_usd=summary.totals.cost_usd,
            cost_so_far_priced=summary.priced,
            cost_so_far_partially_priced=summary.partially_priced,
            cost_so_far_missing_pricing_for=summary.missing_pricing_for,
            **fields,
        )
        self.reporter.emit(event)

    def step_start(self, step_id: str, title: str, detail: Optional[str] = None) -> None:
        self.emit(StepStart, step_id=step_id, title=title, detail=detail)

    def step_end(self, step_id: str, title: str, learned: str) -> None:
        self.emit(StepEnd, step_id=step_id, title=title, learned=learned)

    def detail(self, step_id: str, title: str, level: int, message: str) -> None:
        self.emit(StepDetail, step_id=step_id, title=title, level=level, message=message)

    def bump(self, label: str) -> None:
        self.completed_steps += 1
        logger.debug("stage complete: %s (%s/%s)", label, self.completed_steps, self.estimated)
        self.emit(BudgetUpdate, remaining_steps=self.budget.remaining)

    # inference and tools

    async def call_text(
        self,
        model: str,
        input: str,
        temperature: Optional[float] = None,
        reasoning_effort: Optional[str] = None,
    ) -> LLMResult:
        result = await self.llm.call_text(
            model, input, temperature=temperature, reasoning_effort=reasoning_effort
        )
        self.cost.record(model, result.usage)
        return result

    async def web_search(self, query: str, top_k: Optional[int] = None) -> WebSearchResult:
        result = await self.web_search_tool.search(query, top_k=top_k)
        if result.billed_tool:
            self.cost.record_web_search_call(result.billed_tool)
        if result.model:
            self.cost.record(result.model, result.usage)
        return result

    async def run_python(self, code: str, timeout_ms: Optional[int] = None) -> PythonResult:
        return await self.sandbox.run(code, timeout_ms=timeout_ms or self.settings.python_timeout_ms)

    # background summaries

    async def summarize(self, title: str, raw: str) -> str:
        prompt = "\n".join(
            [
                "Summarize the following tool output in 1-2 sentences for a progress log.",
                "Be concrete: include counts, key outcomes, and any errors.",
                "",
                f"Title: {title}",
                "",
                raw,
            ]
        )
        try:
            result = await self.call_text(self.settings.model_cheap, prompt, temperature=0)
        except Exception as exc:
            logger.warning("Progress summary failed for %s: %s", title, exc)
            return SUMMARY_FALLBACK
        return result.text.strip() or SUMMARY_FALLBACK

    def spawn_summary(self, step_id: str, title: str, raw: str) -> asyncio.Task:
        async def _run() -> str:
            learned = await self.summarize(title, raw)
            self.detail(step_id, "Summary", 1, learned)
            return learned

        task = asyncio.create_task(_run())
        self.pending.append(task)
        return task

    async def drain(self) -> None:
        pending, self.pending = self.pending, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_pending(self) -> None:
        pending, self.pending = self.pending, []
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
