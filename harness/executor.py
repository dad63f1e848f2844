import json
import logging
from typing import Any, Dict, List, Optional

from .run_context import RunContext
from .schemas import ContextPack, EvidenceItem, Plan, PlanStep


logger = logging.getLogger(__name__)


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return None


def evidence_lines(evidence: List[EvidenceItem], limit: int = 10) -> str:
    lines = [
        f"- {e.title or e.url or 'untitled'}" + (f" ({e.url})" if e.url else "")
        for e in evidence[:limit]
    ]
    return "\n".join(lines) or "(no evidence)"


async def _run_web_search(ctx: RunContext, pack: ContextPack, step: PlanStep, step_key: str):
    query = str(step.tool_call.input.get("query") or "")
    result = await ctx.web_search(query, top_k=_optional_int(step.tool_call.input.get("topK")))
    artifact: Dict[str, Any] = {
        "query": query,
        "summary": result.summary,
        "evidence": [e.model_dump() for e in result.evidence],
    }
    if result.error:
        artifact["error"] = result.error
    ctx.detail(step_key, "web_search (evidence)", 2, evidence_lines(result.evidence))
    raw = f"Summary:\n{result.summary}\n\nEvidence items: {len(result.evidence)}"
    if result.error:
        raw += f"\nError: {result.error}"
    ctx.spawn_summary(step_key, f"web_search: {query}", raw)
    learned = f"{len(result.evidence)} evidence items" + (f" (error: {result.error})" if result.error else "")
    return pack.with_evidence(result.evidence), artifact, learned


async def _run_python(ctx: RunContext, pack: ContextPack, step: PlanStep, step_key: str):
    code = str(step.tool_call.input.get("code") or "")
    result = await ctx.run_python(code, timeout_ms=_optional_int(step.tool_call.input.get("timeoutMs")))
    raw = f"exit_code={result.exit_code}\nstdout:\n{result.stdout}\nstderr:\n{result.stderr}"
    ctx.detail(step_key, "python (raw)", 2, raw)
    ctx.spawn_summary(step_key, "python", raw)
    learned = f"exit_code={result.exit_code}" + (" (timed out)" if result.timed_out else "")
    return pack, result.to_artifact(), learned


TOOL_RUNNERS = {
    "web_search": _run_web_search,
    "python": _run_python,
}


async def execute_plan(ctx: RunContext, pack: ContextPack, plan: Plan) -> ContextPack:
    """Run plan steps in order and fold their results into a new context pack.

    Steps without a recognised tool are skipped. Tool failures become artifacts.
    """
    artifacts: Dict[str, Any] = {}
    for step in plan.plan:
        step_key = f"exec:{step.step_id}"
        runner = TOOL_RUNNERS.get(step.tool or "")
        if runner is None:
            reason = f"unknown tool {step.tool}" if step.tool else "no tool_call"
            ctx.detail(step_key, f"Skip {step.step_id}", 3, f"{reason}; goal={step.goal}")
            continue

        ctx.check_aborted(step_key)
        ctx.consume(f"execute:{step.step_id}")
        ctx.step_start(step_key, f"Execute {step.step_id}", f"{step.tool} ({step.goal})")
        pack, artifact, learned = await runner(ctx, pack, step, step_key)
        artifacts[step.artifact_key] = artifact
        ctx.step_end(step_key, f"Execute {step.step_id}", learned)
        ctx.check_aborted(step_key)

    if artifacts:
        logger.debug("plan artifacts: %s", json.dumps(sorted(artifacts)))
    return pack.with_artifacts(artifacts)
