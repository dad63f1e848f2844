import asyncio

import pytest

from harness.event_log import EventLog


@pytest.fixture
async def event_log(tmp_path):
    log = EventLog(str(tmp_path / "events.db"))
    await log.init()
    return log


@pytest.mark.asyncio
async def test_event_seq_is_per_run_and_monotonic(event_log):
    await event_log.create_run("r1", "first")
    await event_log.create_run("r2", "second")
    first = await event_log.append_event("r1", "run_start", {"input": "first"})
    second = await event_log.append_event("r1", "step_start", {"step_id": "router"})
    other = await event_log.append_event("r2", "run_start", {"input": "second"})

    assert (first["seq"], second["seq"], other["seq"]) == (1, 2, 1)
    events = await event_log.list_events("r1", after_seq=1)
    assert [e["event_type"] for e in events] == ["step_start"]
    assert events[0]["payload"] == {"step_id": "router"}


@pytest.mark.asyncio
async def test_concurrent_appends_get_distinct_seqs(event_log):
    await event_log.create_run("r1", "prompt")
    stored = await asyncio.gather(*(event_log.append_event("r1", "step_detail", {"i": i}) for i in range(10)))
    assert sorted(s["seq"] for s in stored) == list(range(1, 11))


@pytest.mark.asyncio
async def test_finish_run_round_trips_json_columns(event_log):
    await event_log.create_run("r1", "prompt")
    run = await event_log.get_run("r1")
    assert run["status"] == "running"
    assert run["task_spec"] is None

    await event_log.finish_run(
        "r1",
        "completed",
        final_answer="42",
        task_spec={"recipe": "direct"},
        cost={"totals": {"total_tokens": 10}},
    )
    run = await event_log.get_run("r1")
    assert run["status"] == "completed"
    assert run["final_answer"] == "42"
    assert run["task_spec"] == {"recipe": "direct"}
    assert run["cost"]["totals"]["total_tokens"] == 10
    assert run["finished_at"]
    assert await event_log.get_run("missing") is None
