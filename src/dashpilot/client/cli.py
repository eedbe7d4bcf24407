"""CLI shells for dashpilot: remote (tools local, LLM behind the API) and in-process chat."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    List,
    Protocol,
    Sequence,
    Tuple,
)

from dashpilot.common import (
    AnsiColors,
    colored_print,
)
from dashpilot.core.errors import AgentRunError
from dashpilot.core.schema import (
    AgentResult,
    AgentTurn,
    HistoryEntry,
    RunOptions,
)
from dashpilot.memory.memory_store import save_turn
from dashpilot.tools.dashboard import (
    InMemoryDashboardStore,
    build_dashboard_registry,
)

logger = logging.getLogger(__name__)


class Agent(Protocol):
    async def run(
        self,
        user_prompt: str,
        history: Sequence[HistoryEntry] = (),
        options: RunOptions | None = None,
    ) -> AgentResult: ...


# ---------------------------------------------------------------------------
# Shell helpers
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def print_result(result: AgentResult) -> None:
    for thought in result.thoughts:
        if thought.type != "final":
            colored_print(f"[{thought.type}] {thought.content}", AnsiColors.GREY)
    colored_print(f"🤖 {result.response}", AnsiColors.YELLOW)


def print_dashboard(store: InMemoryDashboardStore) -> None:
    modules = store.get_state()["modules"]
    if not modules:
        return
    summary = ", ".join(f"{m['moduleType']}#{m['id']}" for m in modules)
    colored_print(f"📊 Dashboard: {summary}", AnsiColors.GREEN)


async def chat_loop(agent: Agent, store: InMemoryDashboardStore) -> None:
    """Read prompts until exit, running each against *agent* with the local dashboard state."""
    history: List[HistoryEntry] = []

    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        options = RunOptions(initial_state=store.get_state())
        try:
            result = await agent.run(user_msg, history, options)
        except AgentRunError as exc:
            logger.debug("Run failed: %s", exc)
            colored_print("⚠️ Agent failed to respond.", AnsiColors.RED)
            continue

        print_result(result)
        print_dashboard(store)
        save_turn(AgentTurn(user_message=user_msg, result=result))
        history.append(HistoryEntry(role="user", content=user_msg))
        history.append(HistoryEntry(role="agent", content=result.response))


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def run_cli() -> None:
    """Run the shell against the API, executing dashboard tools locally."""
    # Lazy import keeps httpx out of the in-process path
    from dashpilot.client.remote import RemoteAgent  # pylint: disable=import-outside-toplevel

    store = InMemoryDashboardStore()

    async def _main() -> None:
        agent = RemoteAgent(build_dashboard_registry(store))
        try:
            await chat_loop(agent, store)
        finally:
            await agent.aclose()

    colored_print(
        "\n🔮 dashpilot shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN
    )
    asyncio.run(_main())


def run_chat() -> None:
    """Run the agent loop in-process against a local dashboard."""
    from dashpilot.agent.agent_loop import AgentRunner  # pylint: disable=import-outside-toplevel
    from dashpilot.agent.llm_interface import (  # pylint: disable=import-outside-toplevel
        load_client,
    )

    store = InMemoryDashboardStore()
    runner = AgentRunner(load_client(), build_dashboard_registry(store))
    colored_print(
        "\n🔮 dashpilot chat (in-process) - type 'exit' or 'quit' to exit", AnsiColors.GREEN
    )
    asyncio.run(chat_loop(runner, store))


if __name__ == "__main__":
    run_cli()
