"""Dispatches tool calls registered in a ``ToolRegistry`` and wraps errors."""

import asyncio
import inspect
import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)

from dashpilot.agent.scratchpad import Scratchpad
from dashpilot.common import compact_json
from dashpilot.config import settings
from dashpilot.core.schema import (
    ToolCallRequest,
    ToolResult,
)
from dashpilot.tools import (
    TOOL_NOT_FOUND,
    ToolArgumentsError,
    ToolDefinition,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

NOT_IMPLEMENTED = "tool not implemented"
TIMED_OUT = "timed out"


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


def parse_arguments(request: ToolCallRequest) -> Dict[str, Any]:
    """Decode the raw ``arguments`` string of *request* into a dict."""
    try:
        args = json.loads(request.arguments or "{}")
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"invalid arguments JSON: {exc}") from exc
    if not isinstance(args, dict):
        raise ToolExecutionError("invalid arguments: expected a JSON object")
    return args


async def invoke_tool(tool: ToolDefinition, args: Dict[str, Any], timeout_ms: int) -> Any:
    """
    Call *tool* with *args*, racing it against *timeout_ms*.

    Coroutine handlers run on the event loop; plain functions run in a worker thread so a slow
    synchronous handler cannot stall sibling calls.

    Raises
    ------
    ToolExecutionError
        If the handler raises or does not finish in time.
    """

    async def _call() -> Any:
        handler = tool.handler
        if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
            getattr(handler, "__call__", None)
        ):
            return await handler(args)
        result = await asyncio.to_thread(handler, args)
        if inspect.isawaitable(result):
            result = await result
        return result

    try:
        return await asyncio.wait_for(_call(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        raise ToolExecutionError(TIMED_OUT) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", tool.name)
        raise ToolExecutionError(str(exc) or type(exc).__name__) from exc


async def execute_tool(
    registry: ToolRegistry, request: ToolCallRequest, timeout_ms: Optional[int] = None
) -> ToolResult:
    """
    Resolve and run one tool call.

    Never raises for tool-level problems: unparsable arguments, an unknown tool name, schema
    violations, handler errors and timeouts all come back as a :class:`ToolResult` whose
    payload is ``{"error": <message>}``.
    """
    if timeout_ms is None:
        timeout_ms = settings.TOOL_TIMEOUT_MS

    arguments: Any = request.arguments
    try:
        arguments = parse_arguments(request)

        tool = registry.resolve(request.name)
        if tool is TOOL_NOT_FOUND or not isinstance(tool, ToolDefinition):
            raise ToolExecutionError(NOT_IMPLEMENTED)

        try:
            valid_args = tool.validate_args(arguments)
        except ToolArgumentsError as exc:
            raise ToolExecutionError(f"invalid arguments: {exc}") from exc

        logger.debug("Executing tool '%s' with args=%s", request.name, valid_args)
        value = await invoke_tool(tool, valid_args, timeout_ms)

        try:
            compact_json(value)
        except (TypeError, ValueError) as exc:
            raise ToolExecutionError(f"result is not JSON serialisable: {exc}") from exc
    except ToolExecutionError as exc:
        logger.warning("Tool '%s' failed: %s", request.name, exc)
        return ToolResult.failure(request, str(exc), arguments)

    logger.info("Tool '%s' returned: %s", request.name, value)
    return ToolResult(
        tool_call_id=request.id, name=request.name, arguments=arguments, payload=value
    )


def format_tool_entry(result: ToolResult) -> str:
    """Scratchpad line recording one tool call and its outcome."""
    args = result.arguments
    if not isinstance(args, str):
        args = compact_json(args)
    return f"Tool {result.name} called with args {args}.\nResult: {result.content}"


class ToolDispatcher:
    """Runs the tool calls of one assistant turn concurrently."""

    def __init__(self, registry: ToolRegistry, timeout_ms: Optional[int] = None) -> None:
        self.registry = registry
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.TOOL_TIMEOUT_MS

    async def dispatch(
        self, tool_calls: Sequence[ToolCallRequest], scratchpad: Optional[Scratchpad] = None
    ) -> List[ToolResult]:
        """
        Execute every call in *tool_calls* and wait for all of them.

        Returns exactly one result per request, in request order.  When *scratchpad* is given,
        each call is recorded on it, failures included.
        """
        if not tool_calls:
            return []
        logger.info(
            "Dispatching %d tool call(s): %s", len(tool_calls), [c.name for c in tool_calls]
        )
        results = await asyncio.gather(
            *(execute_tool(self.registry, call, self.timeout_ms) for call in tool_calls)
        )
        if scratchpad is not None:
            for result in results:
                scratchpad.append(format_tool_entry(result))
        return list(results)
