"""Tests for Postgres engine creation and liveness check (no real database)."""

import pytest

from whatomate.errors import BackendConnectionError, InvalidConnectionURLError
from whatomate.settings import DatabaseConfig
from whatomate.stores import postgres
from whatomate.stores.postgres import Database, connect_database


class FakeConnection:
    def __init__(self, engine: "FakeEngine") -> None:
        self.engine = engine

    async def __aenter__(self) -> "FakeConnection":
        if self.engine.error is not None:
            raise self.engine.error
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def execute(self, statement) -> None:
        self.engine.statements.append(str(statement))


class FakeEngine:
    def __init__(self, url, error: Exception | None, **kwargs) -> None:
        self.url = url
        self.error = error
        self.kwargs = kwargs
        self.statements: list[str] = []
        self.disposed = False

    def connect(self) -> FakeConnection:
        return FakeConnection(self)

    async def dispose(self) -> None:
        self.disposed = True


class EngineFactory:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.created: list[FakeEngine] = []

    def __call__(self, url, **kwargs) -> FakeEngine:
        engine = FakeEngine(url, self.error, **kwargs)
        self.created.append(engine)
        return engine


@pytest.fixture
def engines(monkeypatch: pytest.MonkeyPatch) -> EngineFactory:
    factory = EngineFactory()
    monkeypatch.setattr(postgres, "create_async_engine", factory)
    return factory


@pytest.mark.asyncio
async def test_connect_database_pings_before_returning(engines: EngineFactory):
    db = await connect_database(DatabaseConfig(url="postgres://app:pw@db.example.com:5432/app"))

    assert isinstance(db, Database)
    engine = engines.created[0]
    assert engine.statements == ["SELECT 1"]
    assert engine.url.drivername == "postgresql+asyncpg"
    assert engine.kwargs["pool_pre_ping"] is True
    assert not engine.disposed


@pytest.mark.asyncio
async def test_connect_database_applies_pool_and_driver_settings(engines: EngineFactory):
    config = DatabaseConfig(
        url="postgresql://app:pw@postgres.railway.internal:5432/railway",
        max_open_conns=20,
        max_idle_conns=4,
        conn_max_lifetime=600,
    )
    await connect_database(config, timeout=3)

    kwargs = engines.created[0].kwargs
    assert kwargs["pool_size"] == 4
    assert kwargs["max_overflow"] == 16
    assert kwargs["pool_recycle"] == 600
    assert kwargs["connect_args"] == {"ssl": False, "timeout": 3}


@pytest.mark.asyncio
@pytest.mark.parametrize("debug", [True, False])
async def test_debug_only_changes_echo(engines: EngineFactory, debug: bool):
    config = DatabaseConfig(host="localhost", name="whatomate")
    await connect_database(config, debug=debug)
    assert engines.created[0].kwargs["echo"] is debug

    engines.error = OSError("connection refused")
    with pytest.raises(BackendConnectionError):
        await connect_database(config, debug=debug)


@pytest.mark.asyncio
async def test_connect_database_wraps_ping_failure(engines: EngineFactory):
    refused = ConnectionRefusedError("connect call failed ('10.0.0.1', 5432)")
    engines.error = refused

    with pytest.raises(BackendConnectionError) as exc_info:
        await connect_database(DatabaseConfig(url="postgres://bad-host/db"))

    error = exc_info.value
    assert not isinstance(error, InvalidConnectionURLError)
    assert error.stage == "database"
    assert error.cause is refused
    assert error.__cause__ is refused
    assert engines.created[0].disposed


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["::not a url::", "mysql://app@db/app", "postgres://u:p@host:notaport/db"])
async def test_connect_database_rejects_invalid_url(engines: EngineFactory, url: str):
    with pytest.raises(InvalidConnectionURLError) as exc_info:
        await connect_database(DatabaseConfig(url=url))
    assert exc_info.value.stage == "database"
    assert exc_info.value.cause is not None
    assert engines.created == []


class FakeSession:
    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


@pytest.mark.asyncio
async def test_session_commits_on_success_and_rolls_back_on_error():
    sessions: list[FakeSession] = []

    def session_factory() -> FakeSession:
        sessions.append(FakeSession())
        return sessions[-1]

    db = Database(engine=FakeEngine("postgresql+asyncpg://db/app", None), session_factory=session_factory)

    async with db.session():
        pass
    assert sessions[0].committed and not sessions[0].rolled_back

    with pytest.raises(RuntimeError):
        async with db.session():
            raise RuntimeError("boom")
    assert sessions[1].rolled_back and not sessions[1].committed

    await db.close()
    assert db.engine.disposed
