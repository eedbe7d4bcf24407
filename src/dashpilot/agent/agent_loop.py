"""
Main orchestration loop for dashpilot.

A run moves through an explicit state machine::

    BUILDING_CONTEXT -> AWAITING_LLM -> DISPATCHING_TOOLS -> AWAITING_LLM -> ... -> DONE

All per-run state lives in a :class:`RunContext`, so one :class:`AgentRunner` can serve
concurrent runs.  The HTTP surface drives the same transitions one at a time through
:meth:`AgentRunner.start` / :meth:`AgentRunner.advance` when tool execution happens on the
caller's side.
"""

from __future__ import annotations

import json
import logging
from dataclasses import (
    dataclass,
    field,
)
from enum import Enum
from typing import (
    Iterable,
    List,
    Optional,
    Sequence,
)

from dashpilot.agent.llm_interface import (
    STOP_FINAL,
    STOP_TOOL_CALLS,
    BaseLLMClient,
    Completion,
)
from dashpilot.agent.prompts import (
    NO_EXPLANATION,
    SYSTEM_PROMPT,
)
from dashpilot.agent.scratchpad import (
    CompactionPolicy,
    LLMSummarizer,
    Scratchpad,
    Summarizer,
)
from dashpilot.agent.tool_executor import ToolDispatcher
from dashpilot.config import settings
from dashpilot.core.errors import (
    AgentRunError,
    IterationLimitExceeded,
    UnexpectedAgentExit,
)
from dashpilot.core.schema import (
    AgentResult,
    HistoryEntry,
    Message,
    RunOptions,
    Thought,
    ThoughtType,
    ToolCallRequest,
    ToolResult,
)
from dashpilot.tools import (
    ToolRegistry,
    ToolSpec,
)

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    """States of one run."""

    BUILDING_CONTEXT = "building_context"
    AWAITING_LLM = "awaiting_llm"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"


def classify_thought(iteration: int, final: bool) -> ThoughtType:
    """Thought type for the assistant text of *iteration* (1-based)."""
    if final:
        return "final"
    return "planning" if iteration == 1 else "reasoning"


def history_to_messages(history: Iterable[HistoryEntry]) -> List[Message]:
    """Map dashboard chat history (user/agent) onto chat roles."""
    return [
        Message(role="user" if entry.role == "user" else "assistant", content=entry.content)
        for entry in history
    ]


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------
@dataclass
class RunContext:
    """Everything one run owns: conversation, scratchpad, trace and loop bookkeeping."""

    messages: List[Message]
    scratchpad: Scratchpad
    tools: List[ToolSpec]
    thoughts: List[Thought] = field(default_factory=list)
    iteration: int = 0
    state: AgentState = AgentState.BUILDING_CONTEXT
    pending: List[ToolCallRequest] = field(default_factory=list)
    result: Optional[AgentResult] = None

    def refresh_scratchpad(self) -> None:
        """Mirror the scratchpad text into its message, adding the message if it is missing."""
        for message in self.messages:
            if message.is_scratchpad:
                message.content = self.scratchpad.text
                return
        self.messages.append(self.scratchpad.to_message())


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class AgentRunner:
    """
    Drives LLM calls and tool dispatches until the model gives a final answer.

    Parameters
    ----------
    llm:
        Chat-completion client used for both the main calls and scratchpad summaries.
    registry:
        Tools the model may call.  Read-only during runs.
    system_prompt:
        First message of every conversation.
    tool_timeout_ms, max_iterations, policy:
        Loop tuning; default to the values in :mod:`dashpilot.config`.
    summarizer:
        Replaces the default :class:`LLMSummarizer` for scratchpad compaction.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        registry: ToolRegistry,
        system_prompt: str = SYSTEM_PROMPT,
        *,
        tool_timeout_ms: int | None = None,
        max_iterations: int | None = None,
        policy: CompactionPolicy | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.system_prompt = system_prompt
        self.dispatcher = ToolDispatcher(registry, tool_timeout_ms)
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.MAX_ITERATIONS
        )
        self.policy = policy or CompactionPolicy(
            threshold=settings.SCRATCHPAD_THRESHOLD, tail=settings.SCRATCHPAD_TAIL
        )
        self.summarizer: Summarizer = summarizer or LLMSummarizer(llm)

    # -- BUILDING_CONTEXT ---------------------------------------------------
    def start(
        self,
        user_prompt: str,
        history: Sequence[HistoryEntry] = (),
        options: RunOptions | None = None,
        *,
        tools: Sequence[ToolSpec] | None = None,
        system_prompt: str | None = None,
    ) -> RunContext:
        """Build the initial conversation and scratchpad; the run is then awaiting the LLM."""
        options = options or RunOptions()
        scratchpad = Scratchpad(f"User: {user_prompt}", self.policy)
        if options.initial_state is not None:
            snapshot = json.dumps(options.initial_state, indent=2)
            scratchpad.append(f"Initial dashboard state: {snapshot}")

        messages = [
            Message(role="system", content=system_prompt or self.system_prompt),
            *history_to_messages(history),
            Message(role="user", content=user_prompt),
            scratchpad.to_message(),
        ]
        ctx = RunContext(
            messages=messages,
            scratchpad=scratchpad,
            tools=list(tools) if tools is not None else self.registry.specs(),
        )
        ctx.state = AgentState.AWAITING_LLM
        return ctx

    def resume(
        self, messages: Sequence[Message], scratchpad: str, tools: Sequence[ToolSpec]
    ) -> RunContext:
        """Rebuild a context the caller carried across a remote tool round-trip."""
        ctx = RunContext(
            messages=list(messages),
            scratchpad=Scratchpad(scratchpad, self.policy),
            tools=list(tools),
            state=AgentState.AWAITING_LLM,
        )
        ctx.refresh_scratchpad()
        return ctx

    # -- AWAITING_LLM -------------------------------------------------------
    async def call_llm(self, ctx: RunContext) -> Completion:
        """Compact the scratchpad if needed and ask the model for its next move."""
        if ctx.iteration >= self.max_iterations:
            raise IterationLimitExceeded(self.max_iterations)
        ctx.iteration += 1
        logger.info("Iteration %d", ctx.iteration)

        await ctx.scratchpad.compact_if_needed(self.summarizer)
        ctx.refresh_scratchpad()
        return await self.llm.complete(ctx.messages, ctx.tools, temperature=0.0)

    @staticmethod
    def absorb(ctx: RunContext, completion: Completion) -> AgentState:
        """Fold one completion into *ctx* and return the next state.

        Also used by the remote client, which receives completions over HTTP.
        """
        text = completion.text

        if completion.stop_reason == STOP_TOOL_CALLS and completion.tool_calls:
            ctx.messages.append(completion.message)
            kind = classify_thought(ctx.iteration, final=False)
            ctx.thoughts.append(Thought(type=kind, content=text or NO_EXPLANATION))
            if text:
                ctx.scratchpad.append(f"Assistant: {text}")
            ctx.pending = list(completion.tool_calls)
            logger.info("%s phase: %d tool call(s) requested", kind, len(ctx.pending))
            return AgentState.DISPATCHING_TOOLS

        if completion.stop_reason == STOP_FINAL:
            ctx.thoughts.append(Thought(type="final", content=text))
            ctx.scratchpad.append(f"Assistant: {text}")
            ctx.messages.append(completion.message)
            ctx.refresh_scratchpad()
            ctx.result = AgentResult(response=text, thoughts=list(ctx.thoughts))
            logger.info("Final response ready after %d iteration(s)", ctx.iteration)
            return AgentState.DONE

        logger.error("Unexpected stop reason %r", completion.stop_reason)
        raise UnexpectedAgentExit(completion.stop_reason)

    # -- DISPATCHING_TOOLS --------------------------------------------------
    def add_tool_results(self, ctx: RunContext, results: Iterable[ToolResult]) -> None:
        ctx.messages.extend(result.to_message() for result in results)
        ctx.pending = []

    async def advance(self, ctx: RunContext) -> AgentState:
        """Perform the transition out of ``ctx.state``."""
        if ctx.state is AgentState.AWAITING_LLM:
            completion = await self.call_llm(ctx)
            ctx.state = self.absorb(ctx, completion)
        elif ctx.state is AgentState.DISPATCHING_TOOLS:
            results = await self.dispatcher.dispatch(ctx.pending, ctx.scratchpad)
            self.add_tool_results(ctx, results)
            ctx.state = AgentState.AWAITING_LLM
        else:
            raise RuntimeError(f"cannot advance a run in state {ctx.state.value}")
        return ctx.state

    async def run(
        self,
        user_prompt: str,
        history: Sequence[HistoryEntry] = (),
        options: RunOptions | None = None,
    ) -> AgentResult:
        """
        Run the loop to completion.

        Raises
        ------
        AgentRunError
            Any fatal failure (LLM call, scratchpad compaction, unexpected stop reason,
            iteration limit).  No partial result is returned.
        """
        logger.info("Agent run started (history=%d): %s", len(history), user_prompt)
        ctx = self.start(user_prompt, history, options)
        try:
            while ctx.state is not AgentState.DONE:
                await self.advance(ctx)
        except AgentRunError as exc:
            logger.error("Agent run failed after %d iteration(s): %s", ctx.iteration, exc)
            raise

        if ctx.result is None:
            raise RuntimeError("run finished without a result")
        return ctx.result

