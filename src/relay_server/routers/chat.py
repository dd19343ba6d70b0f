"""Chat API endpoints.

This module provides the endpoints that run one inbound message through the
invocation loop, either returning the final reply or streaming loop progress
via SSE.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from relay_server.dependencies import (
    get_local_registry,
    get_orchestrator,
    get_session_store,
    get_tool_manager,
)
from relay_server.mcp import PromptContext, ToolManager
from relay_server.models.chat import (
    ChatRequest,
    ChatResponse,
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    ToolCallEvent,
    ToolResultEvent,
    ToolResultResponse,
)
from relay_server.services import LoopEvent, LoopOutcome, LoopState, Orchestrator
from relay_server.sessions import (
    Message,
    SessionStore,
    SystemMessage,
    UserMessage,
    message_from_dict,
)
from relay_server.tools import CapabilityDescriptor, LocalToolRegistry
from relay_server.tools.assembly import collect_descriptors, describe_tools

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

EVENT_MODELS = {
    "tool_call": ToolCallEvent,
    "tool_result": ToolResultEvent,
    "message": MessageEvent,
}


def _build_messages(
    body: ChatRequest,
    tool_manager: ToolManager,
    active_tools: list[CapabilityDescriptor],
) -> list[Message]:
    """Assemble system prompt, caller-supplied history and the new message.

    The system prompt is the caller's prompt, then matching MCP server
    prompts, then (if requested) a plain-text overview of the active tools.

    Raises:
        HTTPException: 422 if a history entry has an unknown role or malformed tool calls
    """
    context = PromptContext(
        message_type=body.context.message_type if body.context else None,
        group_id=body.context.group_id if body.context else None,
        message=body.message,
    )
    system_prompt = (body.system_prompt or "") + tool_manager.get_system_prompts(context)
    if body.include_tool_overview:
        system_prompt += "\n\n[Available tools]\n" + describe_tools(active_tools)

    messages: list[Message] = []
    if system_prompt.strip():
        messages.append(SystemMessage(content=system_prompt.strip()))

    for index, item in enumerate(body.history):
        try:
            messages.append(message_from_dict(item.model_dump()))
        except ValueError as e:
            raise HTTPException(
                status_code=422,
                detail={
                    "error": {
                        "code": "invalid_history",
                        "message": str(e),
                        "details": {"index": index},
                    }
                },
            )

    messages.append(UserMessage(content=body.message))
    return messages


def _active_tools(
    body: ChatRequest,
    request: Request,
    local_registry: LocalToolRegistry,
    tool_manager: ToolManager,
) -> list[CapabilityDescriptor]:
    allowed = body.tools if body.tools is not None else request.app.state.settings.local_tools
    return collect_descriptors(local_registry, tool_manager, allowed)


def _no_answer(session_id: str, outcome: LoopOutcome) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={
            "error": {
                "code": "no_answer",
                "message": "The model did not produce an answer",
                "details": {"session_id": session_id, "reason": outcome.error},
            }
        },
    )


@router.post("", response_model=ChatResponse)
async def chat(
    request_body: ChatRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    session_store: SessionStore = Depends(get_session_store),
    tool_manager: ToolManager = Depends(get_tool_manager),
    local_registry: LocalToolRegistry = Depends(get_local_registry),
) -> ChatResponse:
    """Run one message through the invocation loop and return the reply.

    Args:
        request_body: Chat request containing message, history and tool options
        request: FastAPI request object
        orchestrator: Injected invocation loop
        session_store: Injected store of live sessions
        tool_manager: Injected MCP tool manager
        local_registry: Injected local tool registry

    Returns:
        ChatResponse with the final reply and every tool result

    Raises:
        HTTPException: 422 for invalid history, 502 with code no_answer if the loop aborted
    """
    active_tools = _active_tools(request_body, request, local_registry, tool_manager)
    messages = _build_messages(request_body, tool_manager, active_tools)

    async with session_store.session(messages=messages, active_tools=active_tools) as session:
        logger.info(
            f"Chat session {session.session_id}: {len(messages)} messages, "
            f"{len(active_tools)} tools"
        )
        outcome = await orchestrator.run(session, forced_tool=request_body.forced_tool)
        session_id = session.session_id
        last_tool_used = session.last_tool_used

    if outcome.state is LoopState.ABORTED or outcome.reply is None:
        raise _no_answer(session_id, outcome)

    return ChatResponse(
        session_id=session_id,
        reply=outcome.reply,
        state=outcome.state.value,
        rounds=outcome.rounds,
        tool_results=[ToolResultResponse.model_validate(r) for r in outcome.tool_results],
        last_tool_used=last_tool_used,
    )


@router.post("/stream")
async def chat_streaming(
    request_body: ChatRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    session_store: SessionStore = Depends(get_session_store),
    tool_manager: ToolManager = Depends(get_tool_manager),
    local_registry: LocalToolRegistry = Depends(get_local_registry),
) -> EventSourceResponse:
    """Stream invocation loop progress via Server-Sent Events (SSE).

    SSE Events:
        - tool_call: The model requested a tool
        - tool_result: A tool call has a result
        - message: The final reply
        - error: The loop aborted or failed
        - done: Stream is complete

    Raises:
        HTTPException: 422 for invalid history
    """
    active_tools = _active_tools(request_body, request, local_registry, tool_manager)
    messages = _build_messages(request_body, tool_manager, active_tools)

    async def event_generator():
        """Forward loop events to the client as they occur."""
        queue: asyncio.Queue[LoopEvent | None] = asyncio.Queue()
        session_ids: list[str] = []

        async def on_event(event: LoopEvent) -> None:
            await queue.put(event)

        async def drive() -> LoopOutcome:
            try:
                async with session_store.session(
                    messages=messages, active_tools=active_tools
                ) as session:
                    session_ids.append(session.session_id)
                    return await orchestrator.run(
                        session, forced_tool=request_body.forced_tool, on_event=on_event
                    )
            finally:
                await queue.put(None)

        task = asyncio.create_task(drive())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break

                if event.kind == "aborted":
                    error_event = ErrorEvent(
                        code="no_answer",
                        message="The model did not produce an answer",
                        details={"reason": event.data.get("error")},
                    )
                    yield {"event": "error", "data": error_event.model_dump_json()}
                    continue

                model = EVENT_MODELS.get(event.kind)
                if model is None:
                    continue
                yield {"event": event.kind, "data": model(**event.data).model_dump_json()}

            outcome = await task
            done_event = DoneEvent(
                session_id=session_ids[0] if session_ids else "",
                state=outcome.state.value,
                rounds=outcome.rounds,
            )
            yield {"event": "done", "data": done_event.model_dump_json()}

        except Exception as e:
            logger.error(f"Error during streaming chat: {e}")
            error_event = ErrorEvent(
                code="loop_error",
                message=f"Failed to generate response: {str(e)}",
                details={},
            )
            yield {"event": "error", "data": error_event.model_dump_json()}
        finally:
            if not task.done():
                task.cancel()

    return EventSourceResponse(event_generator())
