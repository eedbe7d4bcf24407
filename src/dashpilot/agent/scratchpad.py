"""
Bounded textual working memory for one agent run.

The scratchpad is a running narrative of the run (user ask, tool calls and their results,
assistant replies) that is shown to the model on every call.  Once it grows past
``CompactionPolicy.threshold`` characters everything except the last ``tail`` characters is
replaced by an LLM-written summary.  The tail is kept byte-for-byte, even if that cuts a word
or a line in half.
"""

from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    List,
)

from pydantic import (
    BaseModel,
    model_validator,
)

from dashpilot.agent.prompts import SUMMARY_PRIMING
from dashpilot.core.errors import ScratchpadCompactionError
from dashpilot.core.schema import (
    SCRATCHPAD_NAME,
    Message,
)

if TYPE_CHECKING:
    from dashpilot.agent.llm_interface import BaseLLMClient

logger = logging.getLogger(__name__)

Summarizer = Callable[[str], Awaitable[str]]
"""Async callable turning the older part of the scratchpad into a short summary."""

SUMMARY_PREFIX = "Summary of earlier history: "
RECENT_MARKER = "\n\nRecent history:\n"


class CompactionPolicy(BaseModel):
    """When to compact and how much recent text to keep verbatim."""

    threshold: int = 2000
    tail: int = 1000

    @model_validator(mode="after")
    def _tail_fits(self) -> "CompactionPolicy":
        if self.tail < 0 or self.tail >= self.threshold:
            raise ValueError("tail must be non-negative and smaller than threshold")
        return self


class LLMSummarizer:
    """Summarizes scratchpad history with one extra chat-completion call."""

    def __init__(self, client: "BaseLLMClient", max_tokens: int = 256) -> None:
        self.client = client
        self.max_tokens = max_tokens

    def build_messages(self, history: str) -> List[Message]:
        return [*SUMMARY_PRIMING, Message(role="user", content=history)]

    async def __call__(self, history: str) -> str:
        completion = await self.client.complete(
            self.build_messages(history), None, temperature=0.0, max_tokens=self.max_tokens
        )
        return completion.text or ""


class Scratchpad:
    """A single evolving string plus its compaction policy."""

    def __init__(self, text: str = "", policy: CompactionPolicy | None = None) -> None:
        self.text = text
        self.policy = policy or CompactionPolicy()

    def __len__(self) -> int:
        return len(self.text)

    def __str__(self) -> str:
        return self.text

    def append(self, entry: str) -> None:
        """Add *entry* on a new line; no size limit is enforced here."""
        self.text = f"{self.text}\n{entry}" if self.text else entry

    def needs_compaction(self) -> bool:
        return len(self.text) > self.policy.threshold

    async def compact_if_needed(self, summarize: Summarizer) -> bool:
        """
        Compact the scratchpad when it is over the threshold.

        Returns ``True`` if the text was replaced.

        Raises
        ------
        ScratchpadCompactionError
            If *summarize* fails.  The oversized text is left untouched.
        """
        if not self.needs_compaction():
            return False

        size = len(self.text)
        cut = size - self.policy.tail
        head, tail = self.text[:cut], self.text[cut:]
        logger.info("Summarizing scratchpad (%d chars, keeping last %d)", size, self.policy.tail)
        try:
            summary = await summarize(head)
        except Exception as exc:  # noqa: BLE001
            logger.error("Scratchpad summarization failed: %s", exc)
            raise ScratchpadCompactionError(f"scratchpad summarization failed: {exc}") from exc

        self.text = f"{SUMMARY_PREFIX}{summary}{RECENT_MARKER}{tail}"
        logger.debug("Scratchpad compacted to %d chars", len(self.text))
        return True

    def to_message(self) -> Message:
        return Message(role="system", name=SCRATCHPAD_NAME, content=self.text)
