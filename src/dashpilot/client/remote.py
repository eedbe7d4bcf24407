"""
Remote agent client.

The API owns the LLM; this side owns the tools.  :class:`RemoteAgent` sends the prompt to
``/agent/run``, executes requested tool calls locally with the same dispatcher the in-process
runner uses, and posts the results to ``/agent/tool-result`` until the model answers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)

import httpx
from pydantic import BaseModel

from dashpilot.agent.agent_loop import (
    AgentRunner,
    AgentState,
    RunContext,
)
from dashpilot.agent.llm_interface import (
    STOP_FINAL,
    STOP_TOOL_CALLS,
    Completion,
)
from dashpilot.agent.scratchpad import Scratchpad
from dashpilot.agent.tool_executor import ToolDispatcher
from dashpilot.api.models import (
    RunRequest,
    RunResponse,
    ToolResultRequest,
    ToolResultResponse,
)
from dashpilot.config import settings
from dashpilot.core.errors import (
    AgentRunError,
    IterationLimitExceeded,
)
from dashpilot.core.schema import (
    AgentResult,
    HistoryEntry,
    Message,
    RunOptions,
)
from dashpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)


def completion_from_message(message: Message, stop_reason: Optional[str]) -> Completion:
    """Rebuild a :class:`Completion` from an assistant message returned by the API."""
    if stop_reason is None:
        stop_reason = STOP_TOOL_CALLS if message.tool_calls else STOP_FINAL
    return Completion(
        stop_reason=stop_reason,
        text=message.content or "",
        tool_calls=message.tool_calls or [],
    )


class RemoteAgent:
    """
    Drive a run over HTTP while executing tools locally.

    Parameters
    ----------
    registry:
        Local tools; their specs are sent with every request.
    base_url:
        API root, e.g. ``http://localhost:8000/api`` (default: ``settings.API_URL``).
    client:
        Pre-built ``httpx.AsyncClient``, e.g. one bound to an ASGI transport in tests.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        system_prompt: str | None = None,
        tool_timeout_ms: int | None = None,
        max_iterations: int | None = None,
        timeout: float = 60.0,
        max_retries: int = 5,
    ) -> None:
        self.registry = registry
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.system_prompt = system_prompt
        self.dispatcher = ToolDispatcher(registry, tool_timeout_ms)
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.MAX_ITERATIONS
        )
        self.max_retries = max_retries

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _post(self, endpoint: str, body: BaseModel) -> Dict[str, Any]:
        """POST *body* and return the decoded JSON, retrying while the API is not up yet."""
        url = f"{self.base_url}{endpoint}"
        payload = body.model_dump(mode="json", by_alias=True, exclude_none=True)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(url, json=payload)
            except httpx.ConnectError as exc:
                if attempt < self.max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                    logger.info(
                        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        self.max_retries,
                    )
                    await asyncio.sleep(retry_delay)
                    continue
                raise AgentRunError(f"Error connecting to API: {exc}") from exc
            except httpx.HTTPError as exc:
                raise AgentRunError(f"Error connecting to API: {exc}") from exc

            if response.is_error:
                try:
                    detail = response.json().get("error") or response.text
                except ValueError:
                    detail = response.text
                logger.error("API request error %d: %s", response.status_code, detail)
                raise AgentRunError(f"API error: {detail}")
            return response.json()

        raise AgentRunError(f"Failed to connect to API after {self.max_retries} attempts")

    async def run(
        self,
        user_prompt: str,
        history: Sequence[HistoryEntry] = (),
        options: RunOptions | None = None,
    ) -> AgentResult:
        """Run to completion; raises :class:`AgentRunError` on any fatal failure."""
        tools: List[Dict[str, Any]] = [spec.to_openai() for spec in self.registry.specs()]
        start = RunRequest(
            user_prompt=user_prompt,
            history=list(history),
            options=options,
            system_prompt=self.system_prompt,
            tools=tools,
        )
        first = RunResponse.model_validate(await self._post("/agent/run", start))
        if first.type == "final":
            if first.response is None:
                raise AgentRunError("API returned a final reply without a response")
            return first.response

        ctx = RunContext(
            messages=list(first.messages or []),
            scratchpad=Scratchpad(first.scratchpad or ""),
            tools=[],
            thoughts=list(first.thoughts or []),
            iteration=1,
            state=AgentState.DISPATCHING_TOOLS,
            pending=list(first.tool_calls or []),
        )

        while ctx.state is AgentState.DISPATCHING_TOOLS:
            results = await self.dispatcher.dispatch(ctx.pending, ctx.scratchpad)
            tool_messages = [result.to_message() for result in results]

            if ctx.iteration >= self.max_iterations:
                raise IterationLimitExceeded(self.max_iterations)
            ctx.iteration += 1

            follow_up = ToolResultRequest(
                messages=ctx.messages,
                tool_results=tool_messages,
                scratchpad=ctx.scratchpad.text,
                tools=tools,
            )
            reply = ToolResultResponse.model_validate(
                await self._post("/agent/tool-result", follow_up)
            )
            ctx.messages.extend(tool_messages)
            ctx.pending = []
            ctx.scratchpad.text = reply.scratchpad
            ctx.refresh_scratchpad()

            completion = completion_from_message(reply.message, reply.stop_reason)
            ctx.state = AgentRunner.absorb(ctx, completion)

        if ctx.result is None:
            raise RuntimeError("run finished without a result")
        return ctx.result
