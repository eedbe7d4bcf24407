"""
Fatal error types for an agent run.

Anything raised from this module ends the current run: callers see either a complete
:class:`~dashpilot.core.schema.AgentResult` or one of these errors, never a half-built trace.
Tool-level failures are *not* here; they are recovered by the tool executor and fed back to
the model as error payloads.
"""


class AgentRunError(RuntimeError):
    """Base class for errors that abort a run."""


class LLMCallError(AgentRunError):
    """The provider or network failed on a chat-completion call."""


class ScratchpadCompactionError(AgentRunError):
    """The scratchpad summarization sub-call failed."""


class UnexpectedAgentExit(AgentRunError):
    """The model stopped with neither tool calls nor a final answer."""

    def __init__(self, stop_reason: str | None) -> None:
        super().__init__(
            f"agent exited unexpectedly without a final message (stop_reason={stop_reason!r})"
        )
        self.stop_reason = stop_reason


class IterationLimitExceeded(AgentRunError):
    """The model kept requesting tools past the configured iteration cap."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"agent did not finish within {limit} iterations")
        self.limit = limit
