import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from .config import HarnessSettings, load_settings
from .errors import Aborted
from .event_log import EventLog
from .llm import ResponsesClient
from .orchestrator import run_harness
from .sandbox import PythonSandbox
from .schemas import StartRunRequest
from .tavily import TavilyClient
from .web_search import WebSearchTool


logger = logging.getLogger("uvicorn.error")

TERMINAL_EVENT = "run_finished"


def new_run_id() -> str:
    return uuid.uuid4().hex


class EventBus:
    """In-memory fan-out for SSE plus persisted events."""

    def __init__(self, event_log: EventLog):
        self.event_log = event_log
        self.subscribers: Dict[str, List[asyncio.Queue]] = {}
        self.lock = asyncio.Lock()

    async def emit(self, run_id: str, event_type: str, payload: dict) -> dict:
        stored = await self.event_log.append_event(run_id, event_type, dict(payload or {}))
        async with self.lock:
            queues = list(self.subscribers.get(run_id, []))
        for q in queues:
            await q.put(stored)
        return stored

    async def subscribe(self, run_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        async with self.lock:
            self.subscribers.setdefault(run_id, []).append(queue)
        return queue

    async def unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        async with self.lock:
            queues = self.subscribers.get(run_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self.subscribers.pop(run_id, None)


class BusReporter:
    """Progress sink that persists events in emission order.

    ``emit`` is synchronous, so events are queued and written by one pump task.
    Detail lines above ``verbosity`` are dropped.
    """

    def __init__(self, bus: EventBus, run_id: str, verbosity: int = 1):
        self.bus = bus
        self.run_id = run_id
        self.verbosity = verbosity
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task = asyncio.create_task(self._pump())

    def emit(self, event: Any) -> None:
        if event.type == "step_detail" and event.level > self.verbosity:
            return
        self.queue.put_nowait(event)

    async def _pump(self) -> None:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            try:
                await self.bus.emit(self.run_id, event.type, event.model_dump())
            except Exception:
                logger.exception("Failed to persist %s event for run %s", event.type, self.run_id)

    async def close(self) -> None:
        self.queue.put_nowait(None)
        await self.task


def get_settings(request: Request) -> HarnessSettings:
    return request.app.state.settings


def get_event_log(request: Request) -> EventLog:
    return request.app.state.event_log


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_llm(request: Request) -> ResponsesClient:
    return request.app.state.llm


def get_web_search(request: Request) -> WebSearchTool:
    return request.app.state.web_search


def get_sandbox(request: Request) -> PythonSandbox:
    return request.app.state.sandbox


def get_run_tasks(request: Request) -> Dict[str, asyncio.Task]:
    return request.app.state.run_tasks


def get_run_stop_events(request: Request) -> Dict[str, asyncio.Event]:
    return request.app.state.run_stop_events


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


async def execute_run(
    run_id: str,
    prompt: str,
    settings: HarnessSettings,
    verbosity: int,
    event_log: EventLog,
    bus: EventBus,
    llm: ResponsesClient,
    web_search: WebSearchTool,
    sandbox: PythonSandbox,
    stop_event: asyncio.Event,
) -> None:
    reporter = BusReporter(bus, run_id, verbosity)
    status = "error"
    error: Optional[str] = None
    result = None
    try:
        result = await run_harness(
            prompt, settings, reporter, stop_event, llm=llm, web_search=web_search, sandbox=sandbox
        )
        status = "completed"
    except Aborted:
        status = "stopped"
    except asyncio.CancelledError:
        status = "stopped"
        raise
    except Exception as exc:
        logger.exception("Run %s failed", run_id)
        error = str(exc) or exc.__class__.__name__
    finally:
        await reporter.close()
        if error:
            await bus.emit(run_id, "error", {"message": error})
        await event_log.finish_run(
            run_id,
            status,
            final_answer=result.final_answer if result else None,
            task_spec=result.task_spec.model_dump() if result else None,
            cost=result.cost if result else None,
            error=error,
        )
        await bus.emit(run_id, TERMINAL_EVENT, {"status": status})


router = APIRouter()


@router.get("/settings")
async def get_settings_route(settings: HarnessSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.post("/api/run")
async def start_run(
    payload: StartRunRequest,
    settings: HarnessSettings = Depends(get_settings),
    event_log: EventLog = Depends(get_event_log),
    bus: EventBus = Depends(get_event_bus),
    llm: ResponsesClient = Depends(get_llm),
    web_search: WebSearchTool = Depends(get_web_search),
    sandbox: PythonSandbox = Depends(get_sandbox),
    run_tasks: Dict[str, asyncio.Task] = Depends(get_run_tasks),
    run_stop_events: Dict[str, asyncio.Event] = Depends(get_run_stop_events),
):
    prompt = payload.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required.")
    run_settings = settings
    if payload.max_steps is not None:
        run_settings = settings.model_copy(update={"max_steps": payload.max_steps})

    run_id = new_run_id()
    await event_log.create_run(run_id, prompt)
    stop_event = asyncio.Event()
    run_stop_events[run_id] = stop_event

    async def run_and_cleanup() -> None:
        try:
            await execute_run(
                run_id,
                prompt,
                run_settings,
                payload.verbosity,
                event_log,
                bus,
                llm,
                web_search,
                sandbox,
                stop_event,
            )
        finally:
            run_tasks.pop(run_id, None)
            run_stop_events.pop(run_id, None)

    run_tasks[run_id] = asyncio.create_task(run_and_cleanup())
    return {"run_id": run_id}


@router.get("/api/run/{run_id}")
async def get_run(run_id: str, event_log: EventLog = Depends(get_event_log)):
    run = await event_log.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.get("/api/run/{run_id}/events")
async def list_run_events(run_id: str, after_seq: int = 0, event_log: EventLog = Depends(get_event_log)):
    run = await event_log.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    events = await event_log.list_events(run_id, after_seq=after_seq)
    last_seq = events[-1]["seq"] if events else after_seq
    return {"events": events, "last_seq": last_seq}


@router.post("/api/run/{run_id}/stop")
async def stop_run(
    run_id: str,
    event_log: EventLog = Depends(get_event_log),
    run_stop_events: Dict[str, asyncio.Event] = Depends(get_run_stop_events),
):
    stop_event = run_stop_events.get(run_id)
    if stop_event is not None:
        stop_event.set()
        return {"ok": True, "status": "stopping"}
    run = await event_log.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return {"ok": True, "status": run["status"]}


@router.get("/runs/{run_id}/events")
async def stream_events(
    run_id: str,
    event_log: EventLog = Depends(get_event_log),
    bus: EventBus = Depends(get_event_bus),
):
    # Preload past events then stream new ones until the run finishes.
    async def event_generator():
        queue = await bus.subscribe(run_id)
        last_seq = 0
        try:
            for ev in await event_log.list_events(run_id):
                last_seq = ev["seq"]
                yield sse_format(ev)
                if ev["event_type"] == TERMINAL_EVENT:
                    return
            while True:
                ev = await queue.get()
                if ev["seq"] <= last_seq:
                    continue
                last_seq = ev["seq"]
                yield sse_format(ev)
                if ev["event_type"] == TERMINAL_EVENT:
                    return
        except asyncio.CancelledError:
            pass
        finally:
            await bus.unsubscribe(run_id, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


def create_app(
    settings: HarnessSettings,
    *,
    event_log: Optional[EventLog] = None,
    llm: Optional[ResponsesClient] = None,
    tavily_client: Optional[TavilyClient] = None,
    web_search: Optional[WebSearchTool] = None,
    sandbox: Optional[PythonSandbox] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.event_log.init()
        try:
            yield
        finally:
            tasks = list(app.state.run_tasks.values())
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await app.state.llm.close()
            await app.state.tavily_client.close()

    app = FastAPI(title="Pro Harness", lifespan=lifespan)
    app.state.settings = settings
    app.state.event_log = event_log or EventLog(settings.database_path)
    app.state.llm = llm or ResponsesClient(settings.openai_api_key, settings.openai_base_url)
    app.state.tavily_client = tavily_client or TavilyClient(settings.tavily_api_key)
    app.state.web_search = web_search or WebSearchTool(
        app.state.llm,
        app.state.tavily_client,
        backend=settings.search_backend,
        search_model=settings.model_cheap,
    )
    app.state.sandbox = sandbox or PythonSandbox(settings.python_command, settings.python_timeout_ms)
    app.state.bus = EventBus(app.state.event_log)
    app.state.run_tasks = {}
    app.state.run_stop_events = {}

    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("HARNESS_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "harness.main:app",
            host=settings.host,
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
