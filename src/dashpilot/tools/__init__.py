"""
Tool registry for dashpilot.

This module provides a registry of named, schema-described tools and a way to look them up by
name.  A tool is a handler (coroutine function or plain function) that takes the validated
argument dict and returns a JSON-serialisable value, or raises.

Registries are plain objects rather than module globals so that each dashboard (or test) can
bind its own handlers:

    registry = ToolRegistry()
    registry.register("echo", "Echo the input text", {"type": "object", ...}, echo_handler)

or with the decorator form:

    @registry.tool("echo", "Echo the input text", EchoArgs)
    async def echo(args):
        return args["text"]
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Type,
    Union,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]
SchemaLike = Union[Mapping[str, Any], Type[BaseModel]]

# JSON-schema primitive type -> accepted Python types
_JSON_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "object": (dict,),
    "array": (list,),
    "boolean": (bool,),
    "integer": (int,),
    "number": (int, float),
    "null": (type(None),),
}


class DuplicateToolError(ValueError):
    """Raised when a tool name is registered twice."""


class ToolArgumentsError(ValueError):
    """Raised when tool arguments do not match the declared schema."""


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------
class ToolSpec(BaseModel):
    """Provider-neutral description of a tool, as presented to the LLM."""

    name: str
    description: str = ""
    parameters: Dict[str, Any]

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    @classmethod
    def from_openai(cls, data: Mapping[str, Any]) -> "ToolSpec":
        """Accept both ``{"type": "function", "function": {...}}`` and the bare function form."""
        fn = data.get("function", data)
        return cls(
            name=fn["name"],
            description=fn.get("description") or "",
            parameters=fn.get("parameters") or {"type": "object", "properties": {}},
        )


def _is_model(schema: SchemaLike) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def _check_type(value: Any, expected: str) -> bool:
    accepted = _JSON_TYPES.get(expected)
    if accepted is None:
        return True  # unknown type keyword: do not second-guess it
    if isinstance(value, bool) and expected in ("integer", "number"):
        return False
    return isinstance(value, accepted)


@dataclass(frozen=True)
class ToolDefinition:
    """A registered tool: name, description, parameter schema and handler."""

    name: str
    description: str
    schema: SchemaLike
    handler: ToolHandler

    @property
    def parameters(self) -> Dict[str, Any]:
        """JSON schema of the arguments object."""
        if _is_model(self.schema):
            return self.schema.model_json_schema()  # type: ignore[union-attr]
        return dict(self.schema)  # type: ignore[arg-type]

    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, parameters=self.parameters)

    def validate_args(self, args: Any) -> Dict[str, Any]:
        """
        Validate *args* against the tool schema and return the argument dict.

        Pydantic-schema tools get the model's dump (defaults filled in, values coerced);
        JSON-schema tools get their input back after the object type, required fields and
        primitive property types have been checked.

        Raises
        ------
        ToolArgumentsError
            If the arguments do not satisfy the schema.
        """
        if not isinstance(args, dict):
            raise ToolArgumentsError(
                f"arguments must be a JSON object, got {type(args).__name__}"
            )

        if _is_model(self.schema):
            try:
                return self.schema.model_validate(args).model_dump()  # type: ignore[union-attr]
            except ValidationError as exc:
                raise ToolArgumentsError(str(exc)) from exc

        schema = self.parameters
        missing = [key for key in schema.get("required", []) if key not in args]
        if missing:
            raise ToolArgumentsError(f"missing required field(s): {', '.join(missing)}")
        for key, prop in schema.get("properties", {}).items():
            expected = prop.get("type") if isinstance(prop, Mapping) else None
            if key in args and isinstance(expected, str) and not _check_type(args[key], expected):
                raise ToolArgumentsError(f"field '{key}' must be of type {expected}")
        return args


class _NotFound:
    """Sentinel type for a missing tool."""

    _instance = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "TOOL_NOT_FOUND"


TOOL_NOT_FOUND = _NotFound()
"""Returned by :meth:`ToolRegistry.resolve` when no tool has the requested name."""

ResolvedTool = Union[ToolDefinition, _NotFound]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """
    Ordered mapping of tool name -> :class:`ToolDefinition`.

    The registry is only written while tools are being set up; during a run it is read-only and
    may be shared between concurrent runs.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(
        self, name: str, description: str, schema: SchemaLike, handler: ToolHandler
    ) -> ToolDefinition:
        """
        Register a tool under *name*.

        Parameters
        ----------
        name:
            Unique tool name; this is what the model calls.
        description:
            Human-readable description presented to the model.
        schema:
            JSON schema of the arguments object, or a pydantic model class describing it.
        handler:
            Callable receiving the validated argument dict.

        Raises
        ------
        DuplicateToolError
            If a tool with the same name is already registered.
        """
        if name in self._tools:
            raise DuplicateToolError(f"Tool '{name}' is already registered.")
        logger.debug("Registering tool '%s'", name)
        definition = ToolDefinition(
            name=name, description=description, schema=schema, handler=handler
        )
        self._tools[name] = definition
        return definition

    def tool(self, name: str, description: str, schema: SchemaLike) -> Callable:
        """Decorator form of :meth:`register`."""

        def wrapper(fn: ToolHandler) -> ToolHandler:
            self.register(name, description, schema, fn)
            return fn

        return wrapper

    def resolve(self, name: str) -> ResolvedTool:
        """Return the tool called *name*, or :data:`TOOL_NOT_FOUND`."""
        return self._tools.get(name, TOOL_NOT_FOUND)

    def list(self) -> List[ToolDefinition]:
        """All tools in registration order."""
        return list(self._tools.values())

    def specs(self) -> List[ToolSpec]:
        return [tool.spec() for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._tools)
