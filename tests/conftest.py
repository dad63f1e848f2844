from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from harness.config import HarnessSettings
from harness.event_log import EventLog
from harness.main import create_app
from harness.progress import CollectingReporter
from harness.run_context import RunContext
from tests.fakes import FakeResponsesClient, FakeSandbox, FakeWebSearch


def make_settings(tmp_path: Path, **overrides) -> HarnessSettings:
    settings = HarnessSettings(
        openai_api_key="test-key",
        openai_base_url="http://llm.test/v1",
        model_thinking="gpt-5.2",
        model_cheap="gpt-5-mini",
        max_steps=20,
        tavily_api_key=None,
        search_backend="openai",
        database_path=str(tmp_path / "test.db"),
        host="127.0.0.1",
        port=8000,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def settings(tmp_path: Path) -> HarnessSettings:
    return make_settings(tmp_path)


@pytest.fixture
def ctx_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: FakeResponsesClient | None = None,
        web_search: FakeWebSearch | None = None,
        sandbox: FakeSandbox | None = None,
        cancel_event=None,
        **settings_overrides,
    ) -> RunContext:
        return RunContext(
            make_settings(tmp_path, **settings_overrides),
            CollectingReporter(),
            fake_llm or FakeResponsesClient(),
            web_search or FakeWebSearch(),
            sandbox or FakeSandbox(),
            cancel_event,
        )

    return _factory


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: FakeResponsesClient | None = None,
        web_search: FakeWebSearch | None = None,
        sandbox: FakeSandbox | None = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        llm = fake_llm or FakeResponsesClient()
        app = create_app(
            settings,
            event_log=EventLog(settings.database_path),
            llm=llm,
            web_search=web_search or FakeWebSearch(),
            sandbox=sandbox or FakeSandbox(),
        )
        return app, llm

    return _factory


@pytest.fixture
async def client(app_factory):
    app, llm = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = llm  # type: ignore[attr-defined]
            yield http_client
