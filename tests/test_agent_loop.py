"""End-to-end tests of the agent loop with a scripted LLM."""

import asyncio
import json

import pytest

from dashpilot.agent.agent_loop import (
    AgentRunner,
    AgentState,
    classify_thought,
)
from dashpilot.agent.llm_interface import Completion
from dashpilot.agent.prompts import (
    NO_EXPLANATION,
    SYSTEM_PROMPT,
)
from dashpilot.agent.scratchpad import (
    SUMMARY_PREFIX,
    CompactionPolicy,
)
from dashpilot.config import settings
from dashpilot.core.errors import (
    IterationLimitExceeded,
    LLMCallError,
    UnexpectedAgentExit,
)
from dashpilot.core.schema import (
    HistoryEntry,
    RunOptions,
)
from dashpilot.tools.dashboard import (
    InMemoryDashboardStore,
    build_dashboard_registry,
)

from conftest import (
    ScriptedLLMClient,
    call,
    final_turn,
    scratchpad_of,
    tool_turn,
)


@pytest.fixture
def store() -> InMemoryDashboardStore:
    return InMemoryDashboardStore()


def make_runner(llm, store, **kwargs) -> AgentRunner:
    return AgentRunner(llm, build_dashboard_registry(store), **kwargs)


def test_classify_thought() -> None:
    assert classify_thought(1, final=False) == "planning"
    assert classify_thought(2, final=False) == "reasoning"
    assert classify_thought(7, final=False) == "reasoning"
    assert classify_thought(1, final=True) == "final"
    assert classify_thought(3, final=True) == "final"


@pytest.mark.asyncio
async def test_add_net_worth_summary(store) -> None:
    llm = ScriptedLLMClient(
        [
            tool_turn(
                "Goal: add a net worth summary. Plan: call addModule.",
                call("call_1", "addModule", {"moduleType": "netWorthSummary", "config": {}}),
            ),
            final_turn("I added a net worth summary to your dashboard."),
        ]
    )
    runner = make_runner(llm, store)

    result = await runner.run("Add a net worth summary")

    assert result.response == "I added a net worth summary to your dashboard."
    assert [t.type for t in result.thoughts] == ["planning", "final"]
    assert result.thoughts[0].content.startswith("Goal:")
    assert [m.module_type for m in store.modules] == ["netWorthSummary"]

    second = llm.calls[1]["messages"]
    assert (
        'Tool addModule called with args {"moduleType":"netWorthSummary","config":{}}'
        in scratchpad_of(second)
    )
    tool_message = second[-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "call_1"
    assert json.loads(tool_message.content) == {
        "status": "success",
        "moduleId": store.modules[0].id,
    }


@pytest.mark.asyncio
async def test_three_iterations_classify_thoughts(store) -> None:
    llm = ScriptedLLMClient(
        [
            tool_turn("Plan: look first", call("c1", "getDashboardState")),
            tool_turn(
                "Now add the chart",
                call("c2", "addModule", {"moduleType": "portfolioChart", "config": {}}),
            ),
            final_turn("Done"),
        ]
    )

    result = await make_runner(llm, store).run("Show my portfolio")

    assert [t.type for t in result.thoughts] == ["planning", "reasoning", "final"]
    assert [t.content for t in result.thoughts] == ["Plan: look first", "Now add the chart", "Done"]


@pytest.mark.asyncio
async def test_single_terminal_iteration(store) -> None:
    llm = ScriptedLLMClient([final_turn("Hello! How can I help?")])

    result = await make_runner(llm, store).run("hi")

    assert len(result.thoughts) == 1
    assert result.thoughts[0].type == "final"
    assert result.is_display is True
    assert json.loads(result.to_json()) == {
        "response": "Hello! How can I help?",
        "thoughts": [{"type": "final", "content": "Hello! How can I help?"}],
        "isDisplay": True,
    }


@pytest.mark.asyncio
async def test_unknown_tool_does_not_end_the_run(store) -> None:
    llm = ScriptedLLMClient(
        [
            tool_turn("Try it", call("c1", "launchRocket")),
            final_turn("That tool does not exist."),
        ]
    )

    result = await make_runner(llm, store).run("launch")

    assert result.response == "That tool does not exist."
    tool_message = llm.calls[1]["messages"][-1]
    assert json.loads(tool_message.content) == {"error": "tool not implemented"}


@pytest.mark.asyncio
async def test_tool_error_is_reported_back(store) -> None:
    llm = ScriptedLLMClient(
        [
            tool_turn("Remove it", call("c1", "removeModule", {"moduleId": "nope"})),
            final_turn("Nothing to remove."),
        ]
    )

    await make_runner(llm, store).run("remove module nope")

    tool_message = llm.calls[1]["messages"][-1]
    assert "not found" in json.loads(tool_message.content)["error"]


@pytest.mark.asyncio
async def test_missing_explanation_gets_placeholder(store) -> None:
    llm = ScriptedLLMClient([tool_turn("", call("c1", "getDashboardState")), final_turn("ok")])

    result = await make_runner(llm, store).run("state?")

    assert result.thoughts[0].content == NO_EXPLANATION


@pytest.mark.asyncio
async def test_unexpected_stop_reason(store) -> None:
    llm = ScriptedLLMClient([Completion(stop_reason="length", text="truncated")])

    with pytest.raises(UnexpectedAgentExit) as exc_info:
        await make_runner(llm, store).run("hi")
    assert exc_info.value.stop_reason == "length"


@pytest.mark.asyncio
async def test_tool_calls_stop_without_calls_is_unexpected(store) -> None:
    llm = ScriptedLLMClient([Completion(stop_reason="tool_calls", text="hmm")])

    with pytest.raises(UnexpectedAgentExit):
        await make_runner(llm, store).run("hi")


@pytest.mark.asyncio
async def test_iteration_limit(store) -> None:
    llm = ScriptedLLMClient(
        [tool_turn("again", call(f"c{i}", "getDashboardState")) for i in range(5)]
    )

    with pytest.raises(IterationLimitExceeded) as exc_info:
        await make_runner(llm, store, max_iterations=3).run("loop forever")
    assert exc_info.value.limit == 3
    assert len(llm.calls) == 3


@pytest.mark.asyncio
async def test_zero_iteration_cap_is_honoured(store, monkeypatch) -> None:
    monkeypatch.setattr(settings, "MAX_ITERATIONS", 15)
    llm = ScriptedLLMClient([final_turn("never sent")])

    with pytest.raises(IterationLimitExceeded) as exc_info:
        await make_runner(llm, store, max_iterations=0).run("hi")
    assert exc_info.value.limit == 0
    assert llm.calls == []


@pytest.mark.asyncio
async def test_run_ending_without_result_raises(store, monkeypatch) -> None:
    runner = make_runner(ScriptedLLMClient([]), store)

    async def finish_empty(ctx):
        ctx.state = AgentState.DONE
        return ctx.state

    monkeypatch.setattr(runner, "advance", finish_empty)

    with pytest.raises(RuntimeError, match="without a result"):
        await runner.run("hi")


@pytest.mark.asyncio
async def test_llm_failure_is_fatal(store) -> None:
    llm = ScriptedLLMClient([])  # raises on first call

    with pytest.raises(LLMCallError):
        await make_runner(llm, store).run("hi")


@pytest.mark.asyncio
async def test_context_layout_with_history_and_initial_state(store) -> None:
    llm = ScriptedLLMClient([final_turn("ok")])
    history = [
        HistoryEntry(role="user", content="earlier question"),
        HistoryEntry(role="agent", content="earlier answer"),
    ]
    options = RunOptions(initial_state={"modules": []})

    await make_runner(llm, store).run("now this", history, options)

    messages = llm.calls[0]["messages"]
    assert [(m.role, m.content) for m in messages[:4]] == [
        ("system", SYSTEM_PROMPT),
        ("user", "earlier question"),
        ("assistant", "earlier answer"),
        ("user", "now this"),
    ]
    assert messages[4].is_scratchpad
    assert messages[4].content == 'User: now this\nInitial dashboard state: {\n  "modules": []\n}'
    assert [t.name for t in llm.calls[0]["tools"]] == [
        "addModule",
        "removeModule",
        "updateModuleConfig",
        "getDashboardState",
    ]
    assert llm.calls[0]["temperature"] == 0.0


@pytest.mark.asyncio
async def test_scratchpad_is_compacted_before_llm_call(store) -> None:
    summaries = []

    async def summarizer(history: str) -> str:
        summaries.append(history)
        return "earlier stuff"

    llm = ScriptedLLMClient([final_turn("ok")])
    runner = make_runner(
        llm, store, policy=CompactionPolicy(threshold=50, tail=10), summarizer=summarizer
    )

    await runner.run("p" * 100)

    pad = scratchpad_of(llm.calls[0]["messages"])
    assert pad.startswith(f"{SUMMARY_PREFIX}earlier stuff")
    assert pad.endswith("Recent history:\n" + "p" * 10)
    assert len(summaries) == 1


@pytest.mark.asyncio
async def test_start_and_advance_step_through_states(store) -> None:
    llm = ScriptedLLMClient(
        [tool_turn("look", call("c1", "getDashboardState")), final_turn("done")]
    )
    runner = make_runner(llm, store)

    ctx = runner.start("state please")
    assert ctx.state is AgentState.AWAITING_LLM
    assert await runner.advance(ctx) is AgentState.DISPATCHING_TOOLS
    assert [c.id for c in ctx.pending] == ["c1"]
    assert await runner.advance(ctx) is AgentState.AWAITING_LLM
    assert ctx.pending == []
    assert await runner.advance(ctx) is AgentState.DONE
    assert ctx.result is not None and ctx.result.response == "done"
    with pytest.raises(RuntimeError):
        await runner.advance(ctx)


@pytest.mark.asyncio
async def test_runner_can_serve_concurrent_runs(store) -> None:
    llm = ScriptedLLMClient([final_turn("a"), final_turn("b")])
    runner = make_runner(llm, store)

    results = await asyncio.gather(runner.run("first"), runner.run("second"))

    assert sorted(r.response for r in results) == ["a", "b"]
