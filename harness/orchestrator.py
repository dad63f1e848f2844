import asyncio
import logging
from typing import List, Optional, Tuple

from .candidates import (
    candidate_count,
    critique,
    generate_candidate,
    needs_verification,
    overlays_for,
    polish,
    repair,
    select_best,
    verify,
)
from .config import HarnessSettings
from .executor import evidence_lines, execute_plan
from .llm import ResponsesClient
from .planning import PLANNED_RECIPES, build_context_pack, plan, route, with_assumptions
from .progress import Reporter, RunEnd, RunStart
from .run_context import RunContext
from .sandbox import PythonSandbox
from .schemas import Candidate, ContextPack, Review, RunResult, TaskSpec
from .tavily import TavilyClient
from .web_search import WebSearchTool


logger = logging.getLogger(__name__)

BOOTSTRAP_MIN_REMAINING = 2
EXTRA_SEARCH_MIN_REMAINING = 3
EXTRA_SEARCH_DEFAULT_TOP_K = 6
REPAIR_MIN_REMAINING = 2
REVERIFY_MIN_REMAINING = 3


def estimate_base_steps(spec: TaskSpec) -> int:
    # Rough; grows when optional searches are added.
    if spec.recipe == "direct":
        return 6
    if spec.recipe == "best_of_n":
        return {"low": 10, "medium": 16, "high": 20}[spec.stakes]
    return 18


async def _search_stage(
    ctx: RunContext,
    pack: ContextPack,
    step_id: str,
    title: str,
    detail: str,
    query: str,
    top_k: int,
) -> ContextPack:
    ctx.consume(step_id)
    ctx.step_start(step_id, title, detail)
    ctx.check_aborted(step_id)
    result = await ctx.web_search(query, top_k=top_k)
    pack = pack.with_evidence(result.evidence)
    ctx.check_aborted(step_id)
    ctx.detail(step_id, "web_search (evidence)", 2, evidence_lines(result.evidence))
    ctx.spawn_summary(step_id, f"{title.lower()}: {query}", result.summary or result.error or "")
    ctx.step_end(step_id, title, f"{len(result.evidence)} evidence items")
    ctx.bump(step_id)
    return pack


async def _generate_and_review(
    ctx: RunContext, pack: ContextPack, spec: TaskSpec
) -> List[Tuple[Candidate, Review]]:
    overlays = overlays_for(spec)
    pairs: List[Tuple[Candidate, Review]] = []
    for i in range(candidate_count(spec)):
        candidate_id = f"C{i + 1}"
        ctx.check_aborted(f"generate:{candidate_id}")
        candidate = await generate_candidate(ctx, pack, spec, overlays[i % len(overlays)], candidate_id)
        ctx.bump(f"gen:{candidate_id}")
        ctx.check_aborted(f"critic:{candidate_id}")
        review = await critique(ctx, pack, spec, candidate)
        ctx.bump(f"critic:{candidate_id}")
        pairs.append((candidate, review))
    return pairs


async def _verify_and_repair(
    ctx: RunContext, pack: ContextPack, spec: TaskSpec, candidate: Candidate
) -> Candidate:
    cycles = ctx.settings.max_repair_cycles
    for cycle in range(max(1, cycles)):
        if cycle > 0 and ctx.budget.remaining < REVERIFY_MIN_REMAINING:
            break
        ctx.check_aborted("verifier")
        verification = await verify(ctx, pack, spec, candidate)
        ctx.bump("verifier")
        if cycles == 0 or not verification.required_edits or ctx.budget.remaining < REPAIR_MIN_REMAINING:
            break
        ctx.check_aborted("repair")
        candidate = await repair(ctx, pack, spec, candidate, verification.required_edits)
        ctx.bump("repair")
        ctx.check_aborted("re-critic")
        review = await critique(ctx, pack, spec, candidate)
        ctx.bump("re-critic")
        if not needs_verification(spec, review):
            break
    return candidate


async def _run(ctx: RunContext, input: str) -> RunResult:
    ctx.check_aborted("run_start")
    ctx.emit(RunStart, input=input)

    ctx.check_aborted("router")
    spec = await route(ctx, input)
    ctx.bump("router")
    ctx.estimated_total_steps = estimate_base_steps(spec)

    pack = build_context_pack(input)
    if spec.clarification_needed:
        pack = with_assumptions(pack, spec.clarification_questions)

    if spec.recipe in PLANNED_RECIPES:
        ctx.check_aborted("planner")
        tool_plan = await plan(ctx, pack, spec)
        ctx.bump("planner")
        ctx.check_aborted("execute")
        pack = await execute_plan(ctx, pack, tool_plan)
        ctx.bump("execute")

    if (
        spec.needs_tool("web_search")
        and not pack.retrieved_evidence
        and ctx.budget.remaining >= BOOTSTRAP_MIN_REMAINING
    ):
        ctx.estimated_total_steps += 2
        ctx.check_aborted("bootstrap:web_search")
        pack = await _search_stage(
            ctx,
            pack,
            "bootstrap:web_search",
            "Bootstrap Web Search",
            "initial evidence gathering",
            input,
            ctx.settings.search_top_k,
        )

    pairs = await _generate_and_review(ctx, pack, spec)
    best, best_review = select_best(pairs)
    logger.info("selected %s of %s candidates (score %.2f)", best.id, len(pairs), best_review.overall_score)

    requests = best_review.web_search_requests()
    if requests and ctx.budget.remaining >= EXTRA_SEARCH_MIN_REMAINING:
        ctx.estimated_total_steps += 3
        request = requests[0]
        ctx.check_aborted("extra:web_search")
        pack = await _search_stage(
            ctx,
            pack,
            "extra:web_search",
            "Extra Web Search",
            request.input.query,
            request.input.query,
            request.input.topK or EXTRA_SEARCH_DEFAULT_TOP_K,
        )

    if needs_verification(spec, best_review):
        best = await _verify_and_repair(ctx, pack, spec, best)

    ctx.check_aborted("polish")
    best = await polish(ctx, best)
    ctx.bump("polish")

    await ctx.drain()
    cost = ctx.cost_summary()
    totals = cost.totals
    ctx.emit(
        RunEnd,
        final_answer_chars=len(best.draft_text),
        usage={
            "input_tokens": totals.input_tokens,
            "output_tokens": totals.output_tokens,
            "total_tokens": totals.total_tokens,
        },
        usage_details={
            "cached_input_tokens": totals.cached_input_tokens,
            "reasoning_tokens": totals.reasoning_tokens,
            "web_search_calls": totals.web_search_calls,
        },
        cost_usd=totals.cost_usd,
        cost_priced=cost.priced,
        cost_partially_priced=cost.partially_priced,
        cost_missing_pricing_for=cost.missing_pricing_for,
    )
    return RunResult(
        final_answer=best.draft_text,
        task_spec=spec,
        cost=cost.model_dump(),
        budget=ctx.budget.snapshot(),
    )


async def run_harness(
    input: str,
    settings: HarnessSettings,
    reporter: Reporter,
    cancel_event: Optional[asyncio.Event] = None,
    *,
    llm: Optional[ResponsesClient] = None,
    web_search: Optional[WebSearchTool] = None,
    sandbox: Optional[PythonSandbox] = None,
) -> RunResult:
    """Answer ``input`` end to end.

    Clients passed in are left open; anything created here is closed on exit.
    Raises ExtractionFailed, BudgetExceeded or Aborted; transport errors from
    the inference service propagate unchanged.
    """
    owned_llm = llm is None
    llm = llm or ResponsesClient(settings.openai_api_key, settings.openai_base_url)
    owned_tavily: Optional[TavilyClient] = None
    if web_search is None:
        owned_tavily = TavilyClient(settings.tavily_api_key)
        web_search = WebSearchTool(
            llm, owned_tavily, backend=settings.search_backend, search_model=settings.model_cheap
        )
    sandbox = sandbox or PythonSandbox(settings.python_command, settings.python_timeout_ms)

    ctx = RunContext(settings, reporter, llm, web_search, sandbox, cancel_event)
    try:
        return await _run(ctx, input)
    except BaseException:
        await ctx.cancel_pending()
        raise
    finally:
        if owned_tavily is not None:
            await owned_tavily.close()
        if owned_llm:
            await llm.close()
