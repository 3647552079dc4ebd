"""Pytest configuration and shared fixtures."""
import inspect

import httpx
import pytest

from streamchat.api_client import ApiClient
from streamchat.auth_client import AuthClient
from streamchat.auth_request import AuthenticatedRequest
from streamchat.session import SessionManager
from streamchat.simulator import DegradedSimulator
from streamchat.streaming import StreamingChatClient
from streamchat.token_store import MemoryTokenStore

BASE_URL = "http://backend.test"

IDENTITY = {"id": "u-1", "username": "alice", "email": "alice@example.com"}


class FakeBackend:
    """Scripted chat backend served through httpx.MockTransport.

    Each route holds a queue of replies; the last one repeats. A reply is an
    httpx.Response, an exception to raise, or a callable building either.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list] = {}

    def route(self, method: str, path: str, *replies) -> None:
        self.routes[(method, path)] = list(replies)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "no such route"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply) and not isinstance(reply, httpx.Response):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        return reply


def login_reply(access="access-1", refresh="refresh-1", user_info=None):
    return httpx.Response(
        200,
        json={
            "access_token": access,
            "refresh_token": refresh,
            "user_info": IDENTITY if user_info is None else user_info,
        },
    )


def sse_body(*lines: str) -> bytes:
    return "".join(f"{line}\n" for line in lines).encode()


def sse_reply(*lines: str):
    return lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=sse_body(*lines)
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def api(backend):
    return ApiClient(BASE_URL, transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def session(store, api):
    return SessionManager(store, AuthClient(api))


@pytest.fixture
def authed_request(api, session):
    return AuthenticatedRequest(api, session)


@pytest.fixture
def simulator():
    return DegradedSimulator(chunk_delay_sec=0)


@pytest.fixture
def chat(api, session, simulator):
    return StreamingChatClient(api, session, simulator)


@pytest.fixture
def sign_in(backend, session):
    """Log the session in through the fake backend."""

    async def _sign_in(access="access-1", refresh="refresh-1"):
        backend.route("POST", "/auth/login", login_reply(access, refresh))
        return await session.login("alice", "secret")

    return _sign_in
