import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .api_client import ApiClient
from .auth_client import AuthClient
from .auth_request import AuthenticatedRequest
from .config import settings
from .errors import AuthError, ChatClientError, HttpError
from .models import ChatMessage
from .session import SessionManager
from .simulator import DegradedSimulator
from .streaming import StreamingChatClient
from .token_store import build_token_store

logger = logging.getLogger(__name__)


class LoginIn(BaseModel):
    username: str
    password: str


class ChatIn(BaseModel):
    message: str
    history: List[ChatMessage] = []


class ProxyIn(BaseModel):
    json_body: Optional[dict] = None


def _http_exception(e: ChatClientError) -> HTTPException:
    if isinstance(e, AuthError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, HttpError):
        return HTTPException(status_code=e.status, detail=e.message)
    return HTTPException(status_code=502, detail=str(e))


def create_app(
    session: SessionManager,
    chat: StreamingChatClient,
    requests: AuthenticatedRequest,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await session.restore()
        yield
        await session.close()

    app = FastAPI(title="streamchat bridge", lifespan=lifespan)

    @app.post("/login")
    async def login(inp: LoginIn):
        try:
            identity = await session.login(inp.username, inp.password)
        except ChatClientError as e:
            logger.warning("login failed for %s: %s", inp.username, e)
            raise _http_exception(e) from e
        return identity.model_dump()

    @app.post("/logout")
    async def logout():
        await session.logout()
        return {"ok": True}

    @app.get("/me")
    async def me():
        try:
            identity = await session.get_current_identity()
        except ChatClientError as e:
            raise _http_exception(e) from e
        if identity is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return identity.model_dump()

    @app.post("/chat")
    async def chat_turn(inp: ChatIn):
        queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

        async def turn() -> None:
            try:
                await chat.send(inp.message, inp.history, queue.put)
            finally:
                await queue.put(None)

        async def body():
            task = asyncio.create_task(turn())
            try:
                while True:
                    chunk = await queue.get()
                    if chunk is None:
                        break
                    yield chunk
            finally:
                # client went away: abandon the upstream stream
                if not task.done():
                    task.cancel()

        return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

    @app.get("/api/{path:path}")
    async def api_get(path: str):
        try:
            return await requests.execute(f"/{path}")
        except ChatClientError as e:
            raise _http_exception(e) from e

    @app.post("/api/{path:path}")
    async def api_post(path: str, inp: ProxyIn):
        try:
            return await requests.execute(f"/{path}", method="POST", json=inp.json_body)
        except ChatClientError as e:
            raise _http_exception(e) from e

    return app


logging.basicConfig(level=settings.LOG_LEVEL)

store = build_token_store(settings)
api = ApiClient(settings.API_BASE_URL, settings.HTTP_TIMEOUT_SEC, settings.STREAM_TIMEOUT_SEC)
auth = AuthClient(api)
session = SessionManager(store, auth, settings.IDENTITY_CACHE_TTL_SEC)
chat = StreamingChatClient(
    api,
    session,
    DegradedSimulator(chunk_delay_sec=settings.SIMULATOR_CHUNK_DELAY_SEC),
    model=settings.CHAT_MODEL,
)

app = create_app(session, chat, AuthenticatedRequest(api, session))
