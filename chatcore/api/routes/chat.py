import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from chatcore.api.middleware.rate_limit import GENERATION_LIMIT, limiter
from chatcore.common.models import (
    ChatCompletionBody,
    ChatMessage,
    ChatStreamBody,
    ImageGenerationBody,
)
from chatcore.common.utils import _format_sse_chunk, generate_conversation_title
from chatcore.engine.costs import ensure_affordable

logger = logging.getLogger("ChatCore")

router = APIRouter()


async def _check_credits(request: Request, user_id, model_id: str) -> None:
    state = request.app.state
    await ensure_affordable(state.credit_ledger, user_id, model_id, state.config["model_costs"])


@router.post("/v1/chat/completions", summary="Generate a chat completion with provider fallback")
@limiter.limit(GENERATION_LIMIT)
async def handle_chat_completions(request: Request, body: ChatCompletionBody):
    logger.info(
        f"Chat completion request received for {body.config.provider.value}:{body.config.model}"
    )
    state = request.app.state
    state.orchestrator.validate(body)
    await _check_credits(request, body.user_id, body.config.model)

    result = await state.orchestrator.generate(body.to_request())

    response = result.model_dump(mode="json")
    if body.conversation_id:
        first_user = next((m.content for m in body.messages if m.role == "user"), "")
        response["title"] = generate_conversation_title(first_user)
        conversation = list(body.messages)
        if result.content:
            conversation.append(ChatMessage(role="assistant", content=result.content))
        state.indexer.schedule(body.conversation_id, conversation)
    return response


@router.post("/v1/chat/stream", summary="Stream a chat completion as server-sent events")
@limiter.limit(GENERATION_LIMIT)
async def handle_chat_stream(request: Request, body: ChatStreamBody):
    state = request.app.state
    state.orchestrator.validate(body)
    await _check_credits(request, body.user_id, body.config.model)

    emitter = state.emitter
    session = emitter.start_stream(body.to_request(), mode=body.mode)

    async def event_source():
        try:
            async for event in session.events():
                yield _format_sse_chunk(event.model_dump(mode="json", exclude_none=True))
        finally:
            # Client went away before the terminal event
            if not session.is_finished:
                emitter.cancel(session)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"X-Stream-Session-Id": session.id},
    )


@router.post("/v1/chat/stream/{session_id}/cancel")
async def handle_cancel_stream(session_id: str, request: Request):
    cancelled = request.app.state.emitter.cancel(session_id)
    logger.info(f"Cancel request for stream session {session_id}: {cancelled}")
    return {"cancelled": cancelled}


@router.post("/v1/images/generations", summary="Generate images (no provider fallback)")
@limiter.limit(GENERATION_LIMIT)
async def handle_image_generations(request: Request, body: ImageGenerationBody):
    logger.info(f"Image generation request received for {body.config.model}")
    state = request.app.state
    await _check_credits(request, body.user_id, body.config.model)
    result = await state.orchestrator.generate_image(body.to_request())
    return result.model_dump(mode="json")
