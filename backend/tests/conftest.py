"""Shared pytest fixtures for the automation engine test suite.

Provides:
- A file-backed async SQLite database per test (no PostgreSQL needed)
- Session factory, engine and scheduler wired to in-memory collaborators
- A controllable clock
- A helper that writes graphs straight into the database
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("WEBHOOK_SIGNING_SECRET", "")

from automation.collaborators import (  # noqa: E402
    InMemoryMessagingTransport,
    InMemoryNotificationTransport,
    InMemorySubjectRepository,
)
from automation.factory import Collaborators, build_runtime  # noqa: E402
from core import metrics  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402
from db.models.automation_graph import AutomationEdge, AutomationGraph, AutomationNode  # noqa: E402

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"

LEADS = [
    {
        "id": "lead-1",
        "organization_id": ORG_ID,
        "name": "Maria Silva",
        "phone": "11987654321",
        "email": "maria@example.com",
        "stage_id": "stage-new",
        "assigned_user_id": "user-1",
        "tag_ids": ["tag-vip"],
        "city": "Campinas",
    },
    {
        "id": "lead-2",
        "organization_id": ORG_ID,
        "name": "João Souza",
        "phone": "21912345678",
        "stage_id": "stage-new",
        "assigned_user_id": None,
        "tag_ids": [],
    },
]


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def no_sleep(delay: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite file per test; every session gets its own connection."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def subjects() -> InMemorySubjectRepository:
    return InMemorySubjectRepository(LEADS)


@pytest.fixture
def messaging() -> InMemoryMessagingTransport:
    return InMemoryMessagingTransport()


@pytest.fixture
def notifications() -> InMemoryNotificationTransport:
    return InMemoryNotificationTransport()


@pytest.fixture
def collaborators(subjects, messaging, notifications) -> Collaborators:
    return Collaborators(subjects=subjects, messaging=messaging, notifications=notifications)


@pytest.fixture
def make_runtime(session_factory, collaborators, clock):
    """Build a runtime; keyword arguments go to the execution engine."""

    def _make(**engine_options):
        engine_options.setdefault("retry_sleep", no_sleep)
        engine_options.setdefault("episode_timeout", 10.0)
        return build_runtime(session_factory, collaborators, clock=clock, **engine_options)

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def scheduler(runtime):
    return runtime.scheduler


# ---------------------------------------------------------------------------
# Graph fixtures
# ---------------------------------------------------------------------------

@dataclass
class BuiltGraph:
    id: str
    nodes: dict[str, str]

    def __getitem__(self, label: str) -> str:
        return self.nodes[label]


@pytest.fixture
def build_graph(session_factory):
    """Write a graph straight into the database.

    ``nodes`` maps a label to ``(kind, config)``; ``edges`` lists
    ``(source_label, target_label, branch_key)``. A target label not in
    ``nodes`` is written as a raw node id, which makes dangling edges
    possible. Returns the graph id and the node ids by label.
    """

    async def _build(
        trigger_type: str,
        nodes: dict[str, tuple],
        edges: list[tuple],
        organization_id: str = ORG_ID,
        enabled: bool = True,
        name: Optional[str] = None,
    ) -> BuiltGraph:
        async with session_factory() as session:
            graph = AutomationGraph(
                organization_id=organization_id,
                name=name or f"{trigger_type} automation",
                trigger_type=trigger_type,
                is_enabled=enabled,
            )
            session.add(graph)
            await session.flush()

            ids: dict[str, str] = {}
            for label, (kind, config) in nodes.items():
                node = AutomationNode(graph_id=graph.id, kind=kind, label=label, config=config)
                session.add(node)
                await session.flush()
                ids[label] = node.id

            for source, target, branch_key in edges:
                session.add(
                    AutomationEdge(
                        graph_id=graph.id,
                        source_node_id=ids.get(source, source),
                        target_node_id=ids.get(target, target),
                        branch_key=branch_key,
                    )
                )
            await session.commit()
            return BuiltGraph(id=graph.id, nodes=ids)

    return _build


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_engine, session_factory, runtime, monkeypatch):
    """FastAPI app whose sessions and engine point at the test database."""
    import db.database as db_mod
    from app.dependencies import get_db, get_engine
    from app.main import create_app

    monkeypatch.setattr(db_mod, "engine", db_engine)
    monkeypatch.setattr(db_mod, "AsyncSessionLocal", session_factory)

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app()
    test_app.dependency_overrides[get_db] = _get_db
    test_app.dependency_overrides[get_engine] = lambda: runtime.engine
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
