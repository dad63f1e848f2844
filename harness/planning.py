import json
from typing import Iterable

from .extract import extract_json
from .prompts import PLANNER_INSTRUCTION, ROOT_SYSTEM, ROUTER_INSTRUCTION, TOOL_DESCRIPTION, USER_RULES
from .run_context import RunContext
from .schemas import ContextPack, EvidenceItem, Plan, TaskSpec


PLANNED_RECIPES = {"rag_cited", "plan_execute_verify"}


def build_context_pack(input: str) -> ContextPack:
    return ContextPack(
        system_rules=ROOT_SYSTEM,
        user_rules="\n".join(USER_RULES),
        conversation_summary=f"User request:\n{input}",
    )


def with_assumptions(pack: ContextPack, questions: Iterable[str]) -> ContextPack:
    """Open clarification questions become assumptions the answer must state."""
    items = [q for q in questions if q.strip()]
    if not items:
        return pack
    lines = ["No clarification is possible; answer with reasonable assumptions for:"]
    lines.extend(f"- {q}" for q in items)
    lines.append("State those assumptions briefly in the answer.")
    return pack.model_copy(update={"user_rules": pack.user_rules + "\n" + "\n".join(lines)})


def task_spec_json(spec: TaskSpec) -> str:
    return json.dumps(spec.model_dump(), ensure_ascii=False)


def evidence_block(evidence: Iterable[EvidenceItem]) -> str:
    blocks = []
    for idx, item in enumerate(evidence, start=1):
        bits = [f"[E{idx}] {item.title or item.url or 'untitled'}"]
        if item.url:
            bits.append(f"URL: {item.url}")
        if item.snippet:
            bits.append(f"Snippet: {item.snippet}")
        blocks.append("\n".join(bits))
    return "\n\n".join(blocks) if blocks else "No web evidence retrieved."


async def route(ctx: RunContext, input: str) -> TaskSpec:
    ctx.consume("router")
    ctx.step_start("router", "Routing", "classify task, stakes, and recipe")
    spec = await extract_json(ctx, ROUTER_INSTRUCTION, f"System:\n{ROOT_SYSTEM}\n\nUser:\n{input}", TaskSpec)
    ctx.step_end("router", "Routing", f"task={spec.task_type}, stakes={spec.stakes}, recipe={spec.recipe}")
    ctx.detail("router", "TaskSpec", 1, task_spec_json(spec))
    if spec.clarification_needed and spec.clarification_questions:
        ctx.detail(
            "router",
            "Clarification (assumed)",
            1,
            "\n".join(f"- {q}" for q in spec.clarification_questions),
        )
    return spec


async def plan(ctx: RunContext, pack: ContextPack, spec: TaskSpec) -> Plan:
    ctx.consume("planner")
    ctx.step_start("planner", "Planning", "produce an executable tool plan")
    prompt = "\n".join(
        [
            pack.system_rules,
            "",
            pack.user_rules,
            "",
            f"TaskSpec:\n{task_spec_json(spec)}",
            "",
            "Conversation summary:",
            pack.conversation_summary,
            "",
            TOOL_DESCRIPTION,
        ]
    )
    result = await extract_json(ctx, PLANNER_INSTRUCTION, prompt, Plan)
    ctx.step_end("planner", "Planning", f"planned {len(result.plan)} steps")
    ctx.detail(
        "planner",
        "Plan (summary)",
        1,
        f"acceptance_criteria={len(result.acceptance_criteria)}, risks={len(result.risks)}",
    )
    ctx.detail(
        "planner",
        "Plan (steps)",
        2,
        "\n".join(f"{s.step_id}: tool={s.tool or '(none)'} goal={s.goal}" for s in result.plan),
    )
    return result
