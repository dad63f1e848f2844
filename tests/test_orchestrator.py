import asyncio

import pytest

from harness.errors import Aborted, BudgetExceeded, ExtractionFailed
from harness.orchestrator import estimate_base_steps, run_harness
from harness.progress import CollectingReporter
from harness.schemas import TaskSpec
from tests.fakes import (
    DEFAULT_TASK_SPEC,
    FakeResponsesClient,
    FakeSandbox,
    FakeWebSearch,
    review,
    verification,
)


def spec(**overrides):
    return {**DEFAULT_TASK_SPEC, **overrides}


async def run(settings, fake, reporter=None, cancel_event=None, search=None, sandbox=None, **settings_overrides):
    reporter = reporter or CollectingReporter()
    if settings_overrides:
        settings = settings.model_copy(update=settings_overrides)
    result = await run_harness(
        "What changed in the latest release?",
        settings,
        reporter,
        cancel_event,
        llm=fake,
        web_search=search or FakeWebSearch(),
        sandbox=sandbox or FakeSandbox(),
    )
    return result, reporter


def step_ids(reporter, event_type="step_start"):
    return [e.step_id for e in reporter.of_type(event_type)]


@pytest.mark.parametrize(
    "recipe,stakes,expected",
    [
        ("direct", "high", 6),
        ("best_of_n", "low", 10),
        ("best_of_n", "medium", 16),
        ("best_of_n", "high", 20),
        ("rag_cited", "low", 18),
        ("plan_execute_verify", "low", 18),
    ],
)
def test_estimate_base_steps(recipe, stakes, expected):
    assert estimate_base_steps(TaskSpec(task_type="other", stakes=stakes, recipe=recipe)) == expected


@pytest.mark.asyncio
async def test_direct_low_stakes_runs_single_pass(settings):
    fake = FakeResponsesClient(router=spec())
    search = FakeWebSearch()
    result, reporter = await run(settings, fake, search=search)

    assert step_ids(reporter) == ["router", "gen:C1", "critic:C1", "polish:C1"]
    assert result.final_answer == "Draft answer 1 (polished)"
    assert result.budget == {"used": 4, "remaining": 16, "max": 20}
    assert search.queries == []
    assert reporter.events[0].type == "run_start"
    assert reporter.events[-1].type == "run_end"
    assert reporter.events[-1].cost_priced is True
    assert result.cost["totals"]["total_tokens"] == 120 * len(fake.calls)
    assert not fake.closed

    gen = fake.stage_calls("generate")[0]
    assert gen["model"] == "gpt-5.2"
    assert gen["reasoning_effort"] == "high"
    assert "Single-pass high-quality answer." in gen["input"]
    polish_call = fake.stage_calls("polish")[0]
    assert polish_call["model"] == "gpt-5-mini"
    assert polish_call["reasoning_effort"] == "low"


@pytest.mark.asyncio
async def test_best_of_n_high_stakes_verifies_and_repairs_winner(settings):
    fake = FakeResponsesClient(
        router=spec(recipe="best_of_n", stakes="high"),
        reviews=[review(7), review(7), review(9.5), review(7), review(7), review(7), review(9)],
        verifications=[verification(edits=["Cite the release notes."])],
    )
    result, reporter = await run(settings, fake)

    assert len(fake.stage_calls("generate")) == 6
    overlays = {c["input"].split("Candidate generator overlay:\n", 1)[1].splitlines()[0] for c in fake.stage_calls("generate")}
    assert len(overlays) == 6
    ids = step_ids(reporter)
    assert ids[-4:] == ["verifier:C3", "repair:C3", "critic:C3", "polish:C3"]
    assert result.final_answer == "Repaired answer. (polished)"
    assert result.budget["used"] == 17


@pytest.mark.asyncio
async def test_high_stakes_without_edits_skips_repair(settings):
    fake = FakeResponsesClient(router=spec(recipe="best_of_n", stakes="high"), verifications=[verification()])
    result, reporter = await run(settings, fake)
    ids = step_ids(reporter)
    assert "verifier:C1" in ids
    assert not any(i.startswith("repair:") for i in ids)
    assert result.final_answer == "Draft answer 1 (polished)"


@pytest.mark.asyncio
async def test_repair_needs_two_remaining_steps(settings):
    fake = FakeResponsesClient(
        router=spec(recipe="best_of_n", stakes="high"),
        verifications=[verification(edits=["fix"])],
    )
    result, reporter = await run(settings, fake, max_steps=15)
    assert not any(i.startswith("repair:") for i in step_ids(reporter))
    assert result.budget == {"used": 15, "remaining": 0, "max": 15}


@pytest.mark.asyncio
async def test_low_score_triggers_verification_for_low_stakes(settings):
    fake = FakeResponsesClient(router=spec(), reviews=[review(5.0)])
    _, reporter = await run(settings, fake)
    assert "verifier:C1" in step_ids(reporter)


@pytest.mark.asyncio
async def test_plan_web_search_adds_evidence_once(settings):
    plan = {
        "plan": [
            {
                "step_id": "S1",
                "goal": "gather sources",
                "tool_call": {"tool": "web_search", "input": {"query": "release notes"}},
                "expected_artifact": "release_sources",
            },
            {"step_id": "S2", "goal": "write up"},
        ],
        "acceptance_criteria": ["cites sources"],
        "risks": [],
    }
    fake = FakeResponsesClient(router=spec(recipe="rag_cited", tools_needed=["web_search"]), plan=plan)
    search = FakeWebSearch(results_per_query=2)
    result, reporter = await run(settings, fake, search=search)

    assert [q["query"] for q in search.queries] == ["release notes"]
    assert step_ids(reporter)[:3] == ["router", "planner", "exec:S1"]
    gen_input = fake.stage_calls("generate")[0]["input"]
    assert "[E1]" in gen_input and "[E2]" in gen_input and "[E3]" not in gen_input
    assert result.cost["totals"]["web_search_calls"] == 1


@pytest.mark.asyncio
async def test_bootstrap_search_when_router_needs_web_and_no_evidence(settings):
    fake = FakeResponsesClient(router=spec(tools_needed=["web_search"]))
    search = FakeWebSearch()
    _, reporter = await run(settings, fake, search=search)

    assert search.queries == [{"query": "What changed in the latest release?", "top_k": 8}]
    assert step_ids(reporter)[:2] == ["router", "bootstrap:web_search"]
    assert reporter.events[-1].estimated_total_steps == 8


@pytest.mark.asyncio
async def test_extra_search_uses_first_critic_request(settings):
    requests = [
        {"tool": "web_search", "input": {"query": "release date"}},
        {"tool": "web_search", "input": {"query": "second query", "topK": 3}},
    ]
    fake = FakeResponsesClient(router=spec(), reviews=[review(9, tool_requests=requests)])
    search = FakeWebSearch()
    _, reporter = await run(settings, fake, search=search)

    assert search.queries == [{"query": "release date", "top_k": 6}]
    assert "extra:web_search" in step_ids(reporter)


@pytest.mark.asyncio
async def test_cancellation_between_stages_raises_aborted(settings):
    cancel = asyncio.Event()

    class CancelAfterRouting(CollectingReporter):
        def emit(self, event):
            super().emit(event)
            if event.type == "budget_update":
                cancel.set()

    fake = FakeResponsesClient(router=spec())
    reporter = CancelAfterRouting()
    with pytest.raises(Aborted):
        await run(settings, fake, reporter=reporter, cancel_event=cancel)
    assert step_ids(reporter) == ["router"]
    assert [c["stage"] for c in fake.calls] == ["router"]
    assert not reporter.of_type("run_end")


@pytest.mark.asyncio
async def test_budget_exceeded_propagates(settings):
    fake = FakeResponsesClient(router=spec())
    with pytest.raises(BudgetExceeded) as excinfo:
        await run(settings, fake, max_steps=2)
    assert excinfo.value.label == "critic:C1"


@pytest.mark.asyncio
async def test_router_extraction_failure_is_fatal(settings):
    fake = FakeResponsesClient(router="garbage", repaired={"router": "more garbage"})
    with pytest.raises(ExtractionFailed):
        await run(settings, fake)
    assert not fake.stage_calls("generate")


@pytest.mark.asyncio
async def test_clarification_questions_become_assumptions(settings):
    fake = FakeResponsesClient(
        router=spec(clarification_needed=True, clarification_questions=["Which product?"])
    )
    await run(settings, fake)
    gen_input = fake.stage_calls("generate")[0]["input"]
    assert "- Which product?" in gen_input
