from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Optional, Union

ChunkSink = Callable[[str], Union[None, Awaitable[None]]]


async def deliver(on_chunk: Optional[ChunkSink], text: str) -> None:
    """Hand one chunk to the consumer; coroutine sinks are awaited."""
    if on_chunk is None:
        return
    result = on_chunk(text)
    if inspect.isawaitable(result):
        await result
