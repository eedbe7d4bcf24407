"""
Dashboard tools.

The dashboard itself lives outside the agent core; tools reach it through the small
:class:`DashboardStore` interface that is injected at registration time, so a registry can be
bound to a real UI store, a per-session in-memory store, or a fake in tests.
"""

import logging
import threading
import uuid
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Protocol,
)

from pydantic import Field

from dashpilot.core.schema import CamelModel
from dashpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

ModuleType = Literal["portfolioChart", "expensesTable", "netWorthSummary", "stockPriceChart"]
ModuleStatus = Literal["loading", "ready", "error"]

MODULE_TYPES: Dict[str, str] = {
    "portfolioChart": 'Portfolio value chart. Config: {timeframe: "1M"|"3M"|"1Y"|"All", '
    "showReturns?: boolean}",
    "expensesTable": "Table of expenses. Config: {categories?: string[]}",
    "netWorthSummary": "Summary of net worth. Config: {currency?: string}",
    "stockPriceChart": "Price history for one ticker. Config: {symbol: string, "
    'timeframe?: "1D"|"1W"|"1M"|"1Y"}',
}


class UnknownModuleError(LookupError):
    """Raised when a module id is not on the dashboard."""

    def __str__(self) -> str:
        return f"module '{self.args[0]}' not found on the dashboard"


class ModuleInstance(CamelModel):
    """One module placed on the dashboard."""

    id: str
    module_type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    status: ModuleStatus = "loading"
    data: Any = None


class DashboardStore(Protocol):
    """What the dashboard tools need from the dashboard."""

    def get_state(self) -> Dict[str, Any]: ...

    def add_module(self, module_type: str, config: Dict[str, Any]) -> ModuleInstance: ...

    def remove_module(self, module_id: str) -> None: ...

    def update_module_config(
        self, module_id: str, new_config: Dict[str, Any]
    ) -> ModuleInstance: ...


class InMemoryDashboardStore:
    """Thread-safe dashboard state kept in process memory."""

    def __init__(self, modules: Optional[List[ModuleInstance]] = None) -> None:
        self._modules: List[ModuleInstance] = list(modules or [])
        self._lock = threading.Lock()

    @property
    def modules(self) -> List[ModuleInstance]:
        with self._lock:
            return list(self._modules)

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {"modules": [m.model_dump(by_alias=True) for m in self._modules]}

    def add_module(self, module_type: str, config: Dict[str, Any]) -> ModuleInstance:
        if module_type not in MODULE_TYPES:
            raise ValueError(
                f"unknown module type '{module_type}'; expected one of {', '.join(MODULE_TYPES)}"
            )
        module = ModuleInstance(id=uuid.uuid4().hex[:9], module_type=module_type, config=config)
        with self._lock:
            self._modules.append(module)
        logger.info("Added %s module %s", module_type, module.id)
        return module

    def remove_module(self, module_id: str) -> None:
        with self._lock:
            remaining = [m for m in self._modules if m.id != module_id]
            if len(remaining) == len(self._modules):
                raise UnknownModuleError(module_id)
            self._modules = remaining
        logger.info("Removed module %s", module_id)

    def update_module_config(self, module_id: str, new_config: Dict[str, Any]) -> ModuleInstance:
        with self._lock:
            for index, module in enumerate(self._modules):
                if module.id == module_id:
                    updated = module.model_copy(update={"config": new_config, "status": "loading"})
                    self._modules[index] = updated
                    break
            else:
                raise UnknownModuleError(module_id)
        logger.info("Updated config of module %s", module_id)
        return updated


# ---------------------------------------------------------------------------
# Tool argument schemas
# ---------------------------------------------------------------------------
class AddModuleArgs(CamelModel):
    """Arguments of ``addModule``."""

    module_type: ModuleType = Field(..., description="Type of module to add")
    config: Dict[str, Any] = Field(..., description="Module configuration, may be {}")


class RemoveModuleArgs(CamelModel):
    """Arguments of ``removeModule``."""

    module_id: str = Field(..., description="Id of the module to remove")


class UpdateModuleConfigArgs(CamelModel):
    """Arguments of ``updateModuleConfig``."""

    module_id: str = Field(..., description="Id of the module to update")
    new_config: Dict[str, Any] = Field(..., description="Replacement configuration")


class NoArgs(CamelModel):
    """Tool without arguments."""


def register_dashboard_tools(registry: ToolRegistry, store: DashboardStore) -> ToolRegistry:
    """Register the dashboard editing tools on *registry*, bound to *store*."""

    @registry.tool("addModule", "Add a new dashboard module", AddModuleArgs)
    async def add_module(args: Dict[str, Any]) -> Dict[str, Any]:
        module = store.add_module(args["module_type"], args["config"])
        return {"status": "success", "moduleId": module.id}

    @registry.tool("removeModule", "Remove a module by ID", RemoveModuleArgs)
    async def remove_module(args: Dict[str, Any]) -> Dict[str, Any]:
        store.remove_module(args["module_id"])
        return {"status": "success"}

    @registry.tool(
        "updateModuleConfig",
        "Update the configuration of an existing module",
        UpdateModuleConfigArgs,
    )
    async def update_module_config(args: Dict[str, Any]) -> Dict[str, Any]:
        store.update_module_config(args["module_id"], args["new_config"])
        return {"status": "success"}

    @registry.tool(
        "getDashboardState", "Return the modules currently on the dashboard", NoArgs
    )
    async def get_dashboard_state(args: Dict[str, Any]) -> Dict[str, Any]:
        return store.get_state()

    return registry


def build_dashboard_registry(store: DashboardStore) -> ToolRegistry:
    """A fresh registry holding only the dashboard tools."""
    return register_dashboard_tools(ToolRegistry(), store)
