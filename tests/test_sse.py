import asyncio
import json

import pytest
from asgi_lifespan import LifespanManager

from harness.main import stream_events


def decode(chunk) -> dict:
    line = chunk.decode("utf-8") if isinstance(chunk, (bytes, bytearray)) else chunk
    return json.loads(line.replace("data:", "").strip())


@pytest.mark.asyncio
async def test_sse_replays_past_events_then_streams_live(app_factory):
    app, _ = app_factory()
    async with LifespanManager(app):
        event_log = app.state.event_log
        bus = app.state.bus
        await event_log.create_run("run-sse", "question")
        await bus.emit("run-sse", "run_start", {"input": "question"})

        response = await stream_events("run-sse", event_log=event_log, bus=bus)
        first = decode(await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1))
        assert first["event_type"] == "run_start"
        assert first["seq"] == 1

        await bus.emit("run-sse", "step_start", {"step_id": "router"})
        await bus.emit("run-sse", "run_finished", {"status": "completed"})
        second = decode(await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1))
        third = decode(await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1))
        assert [second["seq"], third["seq"]] == [2, 3]
        assert third["payload"] == {"status": "completed"}

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1)


@pytest.mark.asyncio
async def test_sse_for_finished_run_ends_after_replay(app_factory):
    app, _ = app_factory()
    async with LifespanManager(app):
        event_log = app.state.event_log
        bus = app.state.bus
        await event_log.create_run("run-done", "question")
        await bus.emit("run-done", "run_end", {"final_answer_chars": 3})
        await bus.emit("run-done", "run_finished", {"status": "completed"})

        response = await stream_events("run-done", event_log=event_log, bus=bus)
        chunks = []
        async for chunk in response.body_iterator:
            chunks.append(decode(chunk))
        assert [c["event_type"] for c in chunks] == ["run_end", "run_finished"]
        assert "run-done" not in bus.subscribers
