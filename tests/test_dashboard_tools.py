"""Tests for the dashboard store and its tools."""

import pytest

from dashpilot.agent.tool_executor import execute_tool
from dashpilot.tools.dashboard import (
    InMemoryDashboardStore,
    UnknownModuleError,
    build_dashboard_registry,
)

from conftest import call


@pytest.fixture
def store() -> InMemoryDashboardStore:
    return InMemoryDashboardStore()


def test_add_module_assigns_short_id(store) -> None:
    module = store.add_module("expensesTable", {"categories": ["food"]})

    assert len(module.id) == 9
    assert module.status == "loading"
    assert store.get_state() == {
        "modules": [
            {
                "id": module.id,
                "moduleType": "expensesTable",
                "config": {"categories": ["food"]},
                "status": "loading",
                "data": None,
            }
        ]
    }


def test_unknown_module_type_is_rejected(store) -> None:
    with pytest.raises(ValueError, match="unknown module type"):
        store.add_module("pieChart", {})


def test_remove_and_update_unknown_ids(store) -> None:
    with pytest.raises(UnknownModuleError, match="'abc' not found"):
        store.remove_module("abc")
    with pytest.raises(UnknownModuleError):
        store.update_module_config("abc", {})


def test_update_replaces_config(store) -> None:
    module = store.add_module("stockPriceChart", {"symbol": "AAPL"})

    updated = store.update_module_config(module.id, {"symbol": "MSFT", "timeframe": "1Y"})

    assert updated.id == module.id
    assert store.modules[0].config == {"symbol": "MSFT", "timeframe": "1Y"}


def test_registry_exposes_camel_case_schemas(store) -> None:
    registry = build_dashboard_registry(store)

    assert registry.names() == [
        "addModule",
        "removeModule",
        "updateModuleConfig",
        "getDashboardState",
    ]
    params = registry.resolve("addModule").parameters
    assert set(params["required"]) == {"moduleType", "config"}
    assert params["properties"]["moduleType"]["enum"] == [
        "portfolioChart",
        "expensesTable",
        "netWorthSummary",
        "stockPriceChart",
    ]


@pytest.mark.asyncio
async def test_tools_drive_the_store(store) -> None:
    registry = build_dashboard_registry(store)

    added = await execute_tool(
        registry, call("c1", "addModule", {"moduleType": "portfolioChart", "config": {}})
    )
    module_id = added.payload["moduleId"]
    assert added.payload == {"status": "success", "moduleId": module_id}

    updated = await execute_tool(
        registry,
        call("c2", "updateModuleConfig", {"moduleId": module_id, "newConfig": {"timeframe": "1M"}}),
    )
    assert updated.payload == {"status": "success"}

    state = await execute_tool(registry, call("c3", "getDashboardState"))
    assert state.payload["modules"][0]["config"] == {"timeframe": "1M"}

    removed = await execute_tool(registry, call("c4", "removeModule", {"moduleId": module_id}))
    assert removed.payload == {"status": "success"}
    assert store.modules == []


@pytest.mark.asyncio
async def test_add_module_requires_config(store) -> None:
    registry = build_dashboard_registry(store)

    result = await execute_tool(registry, call("c1", "addModule", {"moduleType": "portfolioChart"}))

    assert result.is_error
    assert result.payload["error"].startswith("invalid arguments: ")
    assert store.modules == []


@pytest.mark.asyncio
async def test_add_module_rejects_unknown_type(store) -> None:
    registry = build_dashboard_registry(store)

    result = await execute_tool(
        registry, call("c1", "addModule", {"moduleType": "pieChart", "config": {}})
    )

    assert result.is_error
    assert store.modules == []
