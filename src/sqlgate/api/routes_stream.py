from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import cast

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from sqlgate.api.routes_runs import require_control_token
from sqlgate.bridge import AgentSQLBridge

router = APIRouter(prefix="/api", dependencies=[Depends(require_control_token)])

KEEPALIVE_INTERVAL_S = 15.0


def _encode_sse(*, event: str, data: str) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode()


@router.get("/events/stream")
async def stream_events(request: Request) -> StreamingResponse:
    bridge = cast(AgentSQLBridge, request.app.state.bridge)
    queue = bridge.events.subscribe()

    async def generator() -> AsyncIterator[bytes]:
        try:
            yield b": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL_S)
                except TimeoutError:
                    yield b": ping\n\n"
                    continue
                payload = json.dumps(event.payload(), separators=(",", ":"))
                yield _encode_sse(event=event.name, data=payload)
        finally:
            bridge.events.unsubscribe(queue)

    return StreamingResponse(generator(), media_type="text/event-stream")
