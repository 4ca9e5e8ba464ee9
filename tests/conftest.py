"""Shared fixtures: a scripted fake backend behind ``httpx.MockTransport``
and a fully wired auth core on a temporary SQLite database."""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Union

import httpx
import pytest
import pytest_asyncio

from portal.auth import SessionStore
from portal.config import AppConfig
from portal.database import LocalDatabase
from portal.logger import StructuredLogger
from portal.models import Identity, Session
from portal.schema import initialize_schema
from portal.services.auth_service import AuthService
from portal.services.backend_api import BackendApi
from portal.services.login_flow import LoginStateMachine
from portal.services.profile_service import ProfileService
from portal.services.request_gate import RequestGate
from portal.services.two_factor_flow import TwoFactorFlow
from portal.token_storage import TokenStorage

BASE_URL = "http://backend.test/api"

Responder = Union[
    tuple[int, Any],
    Callable[[httpx.Request], Any],
    Exception,
]


class FakeBackend:
    """Scripted backend.  Each route holds a queue of responders; the last
    one is reused once the queue is down to a single entry."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self.routes.setdefault((method, path), []).append((status, json))

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes.setdefault((method, path), []).append(handler)

    def add_error(self, method: str, path: str, error: Exception) -> None:
        self.routes.setdefault((method, path), []).append(error)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.url.path.removeprefix("/api") == path]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path.removeprefix("/api"))
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"error": "Route not found"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            result = item(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        status, body = item
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(tz=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the salt file, log file and .env lookup inside *tmp_path*."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    monkeypatch.chdir(tmp_path)
    # Full-strength key derivation is far too slow for a test suite.
    monkeypatch.setattr(TokenStorage, "_PBKDF2_ITERATIONS", 1_000)
    return home


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(API_BASE_URL=BASE_URL, SESSION_MAX_AGE_S=3600)


@pytest.fixture
def logger(tmp_path: Path) -> StructuredLogger:
    return StructuredLogger(name="portal.tests", log_file=str(tmp_path / "test.log"))


@pytest.fixture
def db(tmp_path: Path, logger: StructuredLogger) -> Iterator[LocalDatabase]:
    database = LocalDatabase(sqlite_path=tmp_path / "portal.db", logger=logger)
    initialize_schema(database.sqlite, logger)
    yield database
    database.close()


# ---------------------------------------------------------------------------
# Auth core
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(db: LocalDatabase, logger: StructuredLogger) -> TokenStorage:
    return TokenStorage(db=db, logger=logger)


@pytest.fixture
def store(storage: TokenStorage, logger: StructuredLogger, clock: FakeClock) -> SessionStore:
    return SessionStore(storage=storage, logger=logger, max_age_seconds=3600, clock=clock)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def client(backend: FakeBackend) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(backend.handle),
        base_url=BASE_URL,
    ) as http_client:
        yield http_client


@pytest.fixture
def gate(client: httpx.AsyncClient, store: SessionStore, logger: StructuredLogger) -> RequestGate:
    return RequestGate(client=client, store=store, logger=logger)


@pytest.fixture
def api(gate: RequestGate, client: httpx.AsyncClient, logger: StructuredLogger) -> BackendApi:
    return BackendApi(gate=gate, client=client, logger=logger)


@pytest.fixture
def login(api: BackendApi, store: SessionStore, logger: StructuredLogger) -> LoginStateMachine:
    return LoginStateMachine(api=api, store=store, logger=logger)


@pytest.fixture
def two_factor(api: BackendApi, store: SessionStore, logger: StructuredLogger) -> TwoFactorFlow:
    return TwoFactorFlow(api=api, store=store, logger=logger)


@pytest.fixture
def profile(api: BackendApi, store: SessionStore, logger: StructuredLogger) -> ProfileService:
    return ProfileService(api=api, store=store, logger=logger)


@pytest.fixture
def auth(api: BackendApi, store: SessionStore, logger: StructuredLogger) -> AuthService:
    return AuthService(api=api, store=store, logger=logger)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@pytest.fixture
def user_payload() -> dict[str, Any]:
    return {
        "id": 7,
        "email": "a@b.com",
        "first_name": "Ada",
        "last_name": "Byron",
        "phone": None,
        "account_verified": False,
        "role": None,
    }


@pytest.fixture
def signed_in(store: SessionStore, user_payload: dict[str, Any]) -> Session:
    session = Session(token="session-token-1", user=Identity.model_validate(user_payload))
    store.commit(session)
    return session
