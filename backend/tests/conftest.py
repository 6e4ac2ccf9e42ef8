"""Shared fixtures: temporary SQLite ledger, fake workflow engine, tokens."""

import time

import httpx
import jwt
import pytest
import pytest_asyncio

from factorydash.api.app import create_app
from factorydash.config import Settings
from factorydash.db import build_engine, build_session_factory, init_database
from factorydash.services.fanout import Broadcaster
from factorydash.services.ledger import SessionLedger
from factorydash.services.workflow_client import WorkflowEngineClient

TEST_SECRET = "test-secret"
ENGINE_BASE_URL = "http://engine.test"


def make_token(login: str = "alice", role: str = "admin", secret: str = TEST_SECRET, expires_in: int = 3600) -> str:
    payload = {"login": login, "role": role, "exp": int(time.time()) + expires_in}
    return jwt.encode(payload, secret, algorithm="HS256")


class FakeWorkflowEngine:
    """Records outbound calls; answers with ``status_code`` or raises ``fail_with``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.fail_with = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        return httpx.Response(self.status_code, json={"ok": True})

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


def make_settings(database_url: str) -> Settings:
    return Settings(
        database={"url": database_url},
        auth={"jwt_secret": TEST_SECRET},
        workflow_engine={"base_url": ENGINE_BASE_URL},
    )


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/ledger.db"


@pytest.fixture
def settings(database_url):
    return make_settings(database_url)


@pytest_asyncio.fixture
async def db_engine(database_url):
    engine = build_engine(database_url)
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def ledger(db_engine):
    return SessionLedger(build_session_factory(db_engine))


@pytest.fixture
def broadcaster():
    return Broadcaster(queue_size=16)


@pytest.fixture
def fake_engine():
    return FakeWorkflowEngine()


@pytest_asyncio.fixture
async def workflow_client(settings, fake_engine):
    client = WorkflowEngineClient(settings.workflow_engine, transport=httpx.MockTransport(fake_engine.handler))
    yield client
    await client.close()


@pytest.fixture
def app(settings, db_engine, workflow_client, broadcaster):
    return create_app(
        settings=settings,
        engine=db_engine,
        workflow_client=workflow_client,
        broadcaster=broadcaster,
    )


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}
