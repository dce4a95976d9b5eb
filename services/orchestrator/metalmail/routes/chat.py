from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from ..deps import Services, get_services
from ..schemas import ChatRequest


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _format_sse(data: Dict[str, Any]) -> bytes:
    # SSE lines must be "data: ..." + double newline
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n".encode("utf-8")


def _require_prompt(body: ChatRequest) -> str:
    if not body.prompt or not body.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt is required")
    return body.prompt


def request_metadata(body: ChatRequest) -> Dict[str, Any]:
    ctx = body.context
    return {
        "prompt": body.prompt,
        "contextProvided": "Yes" if ctx is not None else "No",
        "emailId": ctx.email_id if ctx else None,
        "hasEmailThread": bool(ctx and (ctx.email_thread or ctx.thread_emails)),
        "hasCurrentDraft": bool(ctx and ctx.has_draft()),
        "conversationHistoryLength": len(body.history()),
    }


@router.post("/chat")
async def chat(body: ChatRequest, services: Services = Depends(get_services)) -> Any:
    """
    Body:
      {
        "prompt": "make it shorter",
        "context": {"currentDraft": "...", "selectedEmailId": "...", "threadEmails": [...]},
        "conversationHistory": [{"role": "user", "content": "...", "timestamp": "..."}]
      }
    """
    _require_prompt(body)
    try:
        outcome = await services.orchestrator.run(body)
    except Exception as e:
        logger.exception("[chat] request failed")
        return JSONResponse(status_code=500, content={"error": "Failed to process chat request", "details": str(e)})
    return {**outcome.to_dict(), **request_metadata(body)}


@router.post("/chat/stream")
async def chat_stream(body: ChatRequest, services: Services = Depends(get_services)) -> StreamingResponse:
    """
    SSE streaming chat endpoint. Each line is `data: {"type": ..., "data": ...}`; the last event is `done`.
    """
    _require_prompt(body)

    async def event_stream() -> AsyncIterator[bytes]:
        async for event in services.orchestrator.stream(body):
            yield _format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
