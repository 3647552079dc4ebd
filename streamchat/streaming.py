from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import httpx

from .api_client import ApiClient
from .errors import AuthError, HttpError
from .models import ChatMessage
from .session import SessionManager
from .simulator import DegradedSimulator
from .sink import ChunkSink, deliver
from .sse import DATA_PREFIX, SSEDecoder

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/agent/chat/completions"
DEFAULT_MODEL = "volcengine/deepseek-v3"

AUTH_REFRESHED_NOTICE = "[Authentication refreshed. Please try sending your message again.]"
LOGIN_REQUIRED_NOTICE = "[Authentication failed. Please log in again.]"
INVALID_SESSION_NOTICE = "[Your session is invalid. Please log in again.]"

# Some backends answer 200 with an error body instead of 401.
INVALID_SESSION_MARKERS = ("invalid user", "unauthorized", "not authorized")


def build_messages(history: Sequence[ChatMessage], message: str) -> List[Dict[str, str]]:
    messages = [{"role": m.role, "content": m.content} for m in history]
    messages.append({"role": "user", "content": message})
    return messages


def looks_like_invalid_session(body: bytes) -> bool:
    """Check a 200 response body for an auth error reported in-band.

    Only bodies that are not event-stream frames are inspected, so model
    output that happens to mention these words is never matched.
    """
    text = body.decode("utf-8", errors="ignore").lstrip().lower()
    if not text or is_event_frame(body):
        return False
    return any(marker in text for marker in INVALID_SESSION_MARKERS)


def is_event_frame(head: bytes) -> bool:
    return head.lstrip().startswith(DATA_PREFIX.strip().encode())



class StreamingChatClient:
    """Sends one chat turn and streams the assistant reply to ``on_chunk``.

    ``send`` always returns some reply text: auth problems become a short
    notice, any other failure falls back to the local simulator.
    """

    def __init__(
        self,
        api: ApiClient,
        session: SessionManager,
        simulator: Optional[DegradedSimulator] = None,
        model: str = DEFAULT_MODEL,
    ):
        self.api = api
        self.session = session
        self.simulator = simulator or DegradedSimulator()
        self.model = model

    async def send(
        self,
        message: str,
        history: Sequence[ChatMessage] = (),
        on_chunk: Optional[ChunkSink] = None,
    ) -> str:
        if not self.session.is_authenticated:
            return await self.simulator.stream(message, on_chunk)

        try:
            return await self._send_streaming(message, tuple(history), on_chunk)
        except Exception:
            logger.exception("error in completion request, using simulated reply")
            return await self.simulator.stream(message, on_chunk)

    async def _send_streaming(
        self,
        message: str,
        history: Sequence[ChatMessage],
        on_chunk: Optional[ChunkSink],
    ) -> str:
        access = await self.session.get_valid_access_token()
        if not access:
            return await self.simulator.stream(message, on_chunk)

        payload = {
            "model": self.model,
            "messages": build_messages(history, message),
            "stream": True,
        }
        async with self.api.stream("POST", COMPLETIONS_PATH, access, json=payload) as r:
            if r.status_code != 401:
                return await self._consume(r, on_chunk)

        # streamed requests are not replayed; the user resends instead
        try:
            await self.session.refresh_if_possible()
        except AuthError as e:
            logger.warning("refresh after streaming 401 failed: %s", e)
            return await self._notice(on_chunk, LOGIN_REQUIRED_NOTICE)
        return await self._notice(on_chunk, AUTH_REFRESHED_NOTICE)

    async def _consume(self, r: httpx.Response, on_chunk: Optional[ChunkSink]) -> str:
        if not r.is_success:
            raise HttpError(r.status_code)

        chunks = r.aiter_bytes()
        head = await anext(chunks, b"")
        if r.status_code == 200 and not is_event_frame(head):
            # plain body: read all of it before looking for an auth error
            body = bytearray(head)
            async for data in chunks:
                body.extend(data)
            head = bytes(body)
            if looks_like_invalid_session(head):
                logger.warning("completion endpoint reported an invalid session")
                await self.session.logout()
                return await self._notice(on_chunk, INVALID_SESSION_NOTICE)

        decoder = SSEDecoder()
        parts: List[str] = []

        async def emit(deltas: List[str]) -> None:
            for text in deltas:
                await deliver(on_chunk, text)
                parts.append(text)

        await emit(decoder.feed(head))
        async for data in chunks:
            await emit(decoder.feed(data))
        await emit(decoder.flush())
        return "".join(parts)

    @staticmethod
    async def _notice(on_chunk: Optional[ChunkSink], text: str) -> str:
        await deliver(on_chunk, text)
        return text
