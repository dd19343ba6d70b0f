"""Multi-round tool invocation loop.

The Orchestrator drives the completion provider through tool calls until it
produces a text reply. Each pass through ``step`` advances an explicit state
machine:

    AWAITING_MODEL -> EXECUTING_TOOLS -> AWAITING_MODEL ...
    AWAITING_MODEL -> DONE      (text reply)
    AWAITING_MODEL -> ABORTED   (no choice, or provider retries exhausted)

After ``max_rounds`` passes through EXECUTING_TOOLS one final request is made
with tools disabled, and whatever comes back ends the loop.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from relay_server.completion.client import CompletionClient
from relay_server.completion.types import CompletionMessage, ToolChoice, forced_tool_choice
from relay_server.errors import (
    ArgumentParseError,
    ProviderRequestError,
    ServerDisconnectedError,
    ToolExecutionError,
    UnknownToolError,
)
from relay_server.mcp.manager import ToolManager, flatten_tool_result
from relay_server.services.limiter import ConcurrencyLimiter
from relay_server.sessions.session import TurnSession
from relay_server.sessions.types import AssistantMessage, ToolMessage, to_provider_messages
from relay_server.tools.assembly import build_tool_definitions
from relay_server.tools.local import LocalToolRegistry
from relay_server.tools.types import (
    CapabilityDescriptor,
    ToolCallRequest,
    ToolCallResult,
    ToolOrigin,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 5
DEFAULT_REQUEST_RETRIES = 1
EMPTY_RESULT_PLACEHOLDER = "completed"


class LoopState(str, Enum):
    """States of one invocation loop run."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopState.DONE, LoopState.ABORTED)


@dataclass
class LoopEvent:
    """Progress notification emitted while the loop runs.

    ``kind`` is one of ``tool_call``, ``tool_result``, ``message`` or ``aborted``.
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


EventHook = Callable[[LoopEvent], Awaitable[None]]


@dataclass
class LoopOutcome:
    """Result of a finished loop.

    Attributes:
        state: DONE or ABORTED
        reply: Final text; None when the loop aborted (distinct from "")
        rounds: Number of tool-executing rounds
        requests: Number of provider requests issued, retries included
        tool_results: Every tool result of every round, in order
        error: Why the loop aborted
    """

    state: LoopState
    reply: str | None
    rounds: int = 0
    requests: int = 0
    tool_results: list[ToolCallResult] = field(default_factory=list)
    error: str | None = None


@dataclass
class LoopRun:
    """Mutable state of one loop run, advanced by Orchestrator.step."""

    session: TurnSession
    forced_tool: str | None = None
    on_event: EventHook | None = None
    state: LoopState = LoopState.AWAITING_MODEL
    rounds: int = 0
    requests: int = 0
    pending: CompletionMessage | None = None
    reply: str | None = None
    error: str | None = None
    tool_results: list[ToolCallResult] = field(default_factory=list)

    def outcome(self) -> LoopOutcome:
        return LoopOutcome(
            state=self.state,
            reply=self.reply,
            rounds=self.rounds,
            requests=self.requests,
            tool_results=list(self.tool_results),
            error=self.error,
        )


class Orchestrator:
    """Runs the invocation loop for TurnSessions.

    Provider requests and tool executions go through two distinct limiters,
    so a limited request never waits on its own tool calls for a slot.

    Attributes:
        max_rounds: Tool-executing rounds allowed before the final request
        request_retries: Extra attempts for a failed provider request
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        tool_manager: ToolManager | None = None,
        local_registry: LocalToolRegistry | None = None,
        tool_limiter: ConcurrencyLimiter | None = None,
        request_limiter: ConcurrencyLimiter | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        request_retries: int = DEFAULT_REQUEST_RETRIES,
    ) -> None:
        if max_rounds < 0:
            raise ValueError("max_rounds must not be negative")
        self.completion_client = completion_client
        self.tool_manager = tool_manager
        self.local_registry = local_registry or LocalToolRegistry()
        self.tool_limiter = tool_limiter or ConcurrencyLimiter()
        self.request_limiter = request_limiter or ConcurrencyLimiter()
        self.max_rounds = max_rounds
        self.request_retries = max(request_retries, 0)

    async def run(
        self,
        session: TurnSession,
        forced_tool: str | None = None,
        on_event: EventHook | None = None,
    ) -> LoopOutcome:
        """Drive the session to a terminal state.

        Args:
            session: Session holding the message list and active tools
            forced_tool: Tool the model must call in the first round
            on_event: Optional async hook receiving LoopEvents

        Returns:
            LoopOutcome with state DONE or ABORTED
        """
        loop_run = LoopRun(session=session, forced_tool=forced_tool, on_event=on_event)
        logger.info(
            f"Starting loop for session {session.session_id} with "
            f"{len(session.active_tools)} tools (max_rounds={self.max_rounds})"
        )
        while not loop_run.state.is_terminal:
            await self.step(loop_run)

        logger.info(
            f"Loop for session {session.session_id} ended {loop_run.state.value} "
            f"after {loop_run.rounds} rounds and {loop_run.requests} requests"
        )
        return loop_run.outcome()

    async def step(self, loop_run: LoopRun) -> LoopState:
        """Advance the loop by one transition and return the new state."""
        if loop_run.state is LoopState.AWAITING_MODEL:
            await self._await_model(loop_run)
        elif loop_run.state is LoopState.EXECUTING_TOOLS:
            await self._execute_tools(loop_run)
        return loop_run.state

    # ── AWAITING_MODEL ────────────────────────────────────────────────────

    async def _await_model(self, loop_run: LoopRun) -> None:
        session = loop_run.session
        final = loop_run.rounds >= self.max_rounds
        tools, tool_choice = self._tools_for_round(loop_run, final)

        try:
            message = await self._request(loop_run, tools, tool_choice)
        except ProviderRequestError as e:
            await self._abort(loop_run, f"Completion request failed: {e}")
            return

        if message is None:
            await self._abort(loop_run, "Completion response contained no choices")
            return

        if message.has_tool_calls and not final:
            loop_run.pending = message
            loop_run.state = LoopState.EXECUTING_TOOLS
            return

        if message.has_tool_calls:
            logger.warning(
                f"Session {session.session_id}: model requested tools after the round cap, ignoring"
            )

        loop_run.reply = message.content or ""
        session.add_message(AssistantMessage(content=loop_run.reply))
        loop_run.state = LoopState.DONE
        await self._emit(loop_run, LoopEvent("message", {"content": loop_run.reply}))

    def _tools_for_round(
        self, loop_run: LoopRun, final: bool
    ) -> tuple[list[dict[str, Any]] | None, ToolChoice]:
        session = loop_run.session
        if final:
            if self.max_rounds:
                logger.info(
                    f"Session {session.session_id} reached {self.max_rounds} rounds, "
                    "requesting final answer without tools"
                )
            return None, "none"

        if loop_run.rounds == 0 and loop_run.forced_tool:
            descriptor = session.find_tool(loop_run.forced_tool)
            if descriptor is not None:
                logger.debug(f"Forcing tool {descriptor.name} for the first round")
                return build_tool_definitions([descriptor]), forced_tool_choice(descriptor.name)
            logger.warning(f"Forced tool {loop_run.forced_tool} is not active, ignoring")

        if not session.active_tools:
            return None, "auto"
        return build_tool_definitions(session.active_tools), "auto"

    async def _request(
        self,
        loop_run: LoopRun,
        tools: list[dict[str, Any]] | None,
        tool_choice: ToolChoice,
    ) -> CompletionMessage | None:
        messages = to_provider_messages(loop_run.session.messages)
        attempts = self.request_retries + 1
        last_error: ProviderRequestError | None = None

        for attempt in range(1, attempts + 1):
            loop_run.requests += 1
            try:
                return await self.request_limiter.run(
                    self.completion_client.complete, messages, tools, tool_choice
                )
            except ProviderRequestError as e:
                last_error = e
                logger.warning(f"Completion request attempt {attempt}/{attempts} failed: {e}")

        raise last_error

    async def _abort(self, loop_run: LoopRun, error: str) -> None:
        logger.error(f"Session {loop_run.session.session_id} aborted: {error}")
        loop_run.state = LoopState.ABORTED
        loop_run.reply = None
        loop_run.error = error
        await self._emit(loop_run, LoopEvent("aborted", {"error": error}))

    # ── EXECUTING_TOOLS ───────────────────────────────────────────────────

    async def _execute_tools(self, loop_run: LoopRun) -> None:
        session = loop_run.session
        message = loop_run.pending
        loop_run.pending = None
        calls = message.tool_calls

        unique: dict[tuple[str, str], ToolCallRequest] = {}
        for call in calls:
            await self._emit(
                loop_run,
                LoopEvent(
                    "tool_call",
                    {"id": call.id, "name": call.tool_name, "arguments": call.raw_arguments},
                ),
            )
            if call.dedup_key in unique:
                logger.info(f"Skipping duplicate call {call.id} to {call.tool_name}")
                continue
            unique[call.dedup_key] = call

        executed = await asyncio.gather(
            *(self._execute_call(session, call) for call in unique.values())
        )
        by_key = dict(zip(unique.keys(), executed))

        results: list[ToolCallResult] = []
        for call in calls:
            shared = by_key[call.dedup_key]
            results.append(
                ToolCallResult(
                    request_id=call.id,
                    tool_name=call.tool_name,
                    output=shared.output,
                    succeeded=shared.succeeded,
                    error_detail=shared.error_detail,
                )
            )

        session.add_tool_round(
            AssistantMessage(content=message.content, tool_calls=list(calls)),
            [
                ToolMessage(tool_call_id=r.request_id, tool_name=r.tool_name, content=r.output)
                for r in results
            ],
        )

        loop_run.tool_results.extend(results)
        loop_run.rounds += 1
        loop_run.state = LoopState.AWAITING_MODEL

        for result in results:
            await self._emit(
                loop_run,
                LoopEvent(
                    "tool_result",
                    {
                        "id": result.request_id,
                        "name": result.tool_name,
                        "output": result.output,
                        "succeeded": result.succeeded,
                    },
                ),
            )

    async def _execute_call(self, session: TurnSession, call: ToolCallRequest) -> ToolCallResult:
        """Resolve, parse and execute one call. Never raises."""
        name = call.tool_name
        descriptor = self._resolve(session, name)
        if descriptor is None:
            logger.warning(f"Model requested unavailable tool {name}")
            return _failed(call, f"Tool {name} is not available", str(UnknownToolError(name)))

        try:
            arguments = parse_arguments(call.raw_arguments)
        except ArgumentParseError as e:
            logger.warning(f"Skipping {name}: {e}")
            return _failed(call, f"Invalid arguments for {name}: {e}", str(e))

        # Calls start in request order, so the last one to get here is the
        # last tool executed this round.
        session.last_tool_used = name

        last_error: Exception | None = None
        for attempt in (1, 2):
            try:
                output = await self.tool_limiter.run(self._invoke, descriptor, arguments)
                break
            except (UnknownToolError, ServerDisconnectedError) as e:
                logger.warning(f"Tool {name} cannot be executed: {e}")
                return _failed(call, f"Error executing {name}: {e}", str(e))
            except Exception as e:
                last_error = e
                logger.warning(f"Tool {name} failed on attempt {attempt}: {e}")
        else:
            logger.error(f"Tool {name} failed after retry: {last_error}")
            return _failed(call, f"Error executing {name}: {last_error}", str(last_error))

        if not output.strip():
            output = EMPTY_RESULT_PLACEHOLDER
        return ToolCallResult(request_id=call.id, tool_name=name, output=output)

    def _resolve(self, session: TurnSession, name: str) -> CapabilityDescriptor | None:
        descriptor = session.find_tool(name)
        if descriptor is not None:
            return descriptor
        # Remote tools registered after the session was created are still callable.
        if self.tool_manager is not None and self.tool_manager.is_known_tool(name):
            return CapabilityDescriptor(
                name=name,
                origin=ToolOrigin.REMOTE,
                server_name=self.tool_manager.resolve_server(name),
            )
        return None

    async def _invoke(self, descriptor: CapabilityDescriptor, arguments: dict[str, Any]) -> str:
        if descriptor.is_remote:
            if self.tool_manager is None:
                raise UnknownToolError(descriptor.name)
            result = await self.tool_manager.execute(descriptor.name, arguments)
            text = flatten_tool_result(result)
            if isinstance(result, dict) and result.get("isError"):
                raise ToolExecutionError(text or f"MCP tool {descriptor.name} reported an error")
            return text

        tool = self.local_registry.get(descriptor.name)
        if tool is None:
            raise UnknownToolError(descriptor.name)
        result = await tool.execute(arguments)
        if result is None:
            return ""
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)

    @staticmethod
    async def _emit(loop_run: LoopRun, event: LoopEvent) -> None:
        if loop_run.on_event is None:
            return
        try:
            await loop_run.on_event(event)
        except Exception as e:
            logger.error(f"Loop event hook failed for {event.kind}: {e}")


def parse_arguments(raw_arguments: str | None) -> dict[str, Any]:
    """Parse a tool call's JSON argument string into an object.

    Empty input is treated as no arguments.

    Raises:
        ArgumentParseError: If the string is not a JSON object
    """
    if raw_arguments is None or not raw_arguments.strip():
        return {}
    try:
        value = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(f"Arguments are not valid JSON: {e.msg}") from e
    if not isinstance(value, dict):
        raise ArgumentParseError("Arguments must be a JSON object")
    return value


def _failed(call: ToolCallRequest, output: str, detail: str) -> ToolCallResult:
    return ToolCallResult(
        request_id=call.id,
        tool_name=call.tool_name,
        output=output,
        succeeded=False,
        error_detail=detail,
    )
