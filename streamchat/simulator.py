from __future__ import annotations

import asyncio
import random
from typing import Optional, Sequence

from .sink import ChunkSink, deliver

CANNED_REPLIES = (
    "I understand your question. Let me help you with that.",
    "That's an interesting point. Here's what I think...",
    "Based on my analysis, I would suggest...",
    "Let me break this down for you...",
)


class DegradedSimulator:
    """Local stand-in for the completion service.

    Used when there is no session or the real stream could not be opened,
    so a chat turn always gets an answer.
    """

    def __init__(
        self,
        replies: Sequence[str] = CANNED_REPLIES,
        chunk_delay_sec: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        if not replies:
            raise ValueError("at least one canned reply is required")
        self.replies = tuple(replies)
        self.chunk_delay = chunk_delay_sec
        self.rng = rng or random.Random()

    def compose(self, message: str) -> str:
        return f"{self.rng.choice(self.replies)} {message}"

    async def stream(self, message: str, on_chunk: ChunkSink) -> str:
        reply = self.compose(message)
        words = reply.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(self.chunk_delay)
            await deliver(on_chunk, word + (" " if i < len(words) - 1 else ""))
        return reply
