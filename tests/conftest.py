"""Shared fixtures for the edu-client test suite."""

import os

# Console-only logging; must be set before edu_client reads its configuration.
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "DEBUG"

from typing import Callable, Optional, Union

import httpx
import pytest
import pytest_asyncio

from edu_client.database import DatabaseManager
from edu_client.logger import StructuredLogger
from edu_client.schema import initialize_schema
from edu_client.services.session_events import SessionExpiryBroadcaster
from edu_client.services.token_cipher import TokenCipher
from edu_client.services.token_manager import TokenManager
from edu_client.services.token_store import TokenStore

API_ROOT = "http://test/api/teacher"
API_PREFIX = "/api/teacher"

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------
class FakeBackend:
    """Scripted teacher backend served through ``httpx.MockTransport``.

    Replies are queued per ``(method, path)``; the last queued reply is
    repeated once the queue runs dry.  Paths are relative to the API
    prefix, e.g. ``("GET", "/auth/me")``.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *replies: Reply) -> None:
        self._routes.setdefault((method.upper(), path), []).extend(replies)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and self._path(r) == path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, self._path(request)))
        if not queue:
            return httpx.Response(404, json={"error": "Not found"})

        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        # Fresh copy: a queued reply may be served more than once.
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_PREFIX):] if path.startswith(API_PREFIX) else path


class DictBackend:
    """In-memory ``KeyValueBackend`` that can be told to fail."""

    def __init__(self, fail_writes: bool = False, fail_reads: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads

    def read(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise OSError("storage unavailable")
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise OSError("quota exceeded")
        self.data[key] = value

    def delete(self, key: str) -> None:
        if self.fail_writes:
            raise OSError("quota exceeded")
        self.data.pop(key, None)


def json_reply(status: int, body: object = None) -> httpx.Response:
    return httpx.Response(status, json=body)


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def logger():
    return StructuredLogger(name="edu_client.tests", log_file="")


@pytest.fixture
def db(tmp_path, logger):
    manager = DatabaseManager(sqlite_path=tmp_path / "tokens.db", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def cipher(tmp_path, logger):
    return TokenCipher(salt_path=tmp_path / "salt", logger=logger, iterations=1_000)


@pytest.fixture
def backend():
    return DictBackend()


@pytest.fixture
def store(backend, logger):
    return TokenStore(backend=backend, logger=logger)


@pytest.fixture
def fake():
    return FakeBackend()


@pytest_asyncio.fixture
async def http(fake):
    transport = httpx.MockTransport(fake.handler)
    async with httpx.AsyncClient(transport=transport, base_url=API_ROOT) as client:
        yield client


@pytest.fixture
def tokens(store, http, logger):
    return TokenManager(store=store, http=http, logger=logger)


@pytest.fixture
def broadcaster(logger):
    return SessionExpiryBroadcaster(logger=logger)
