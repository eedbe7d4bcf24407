"""Common utility functions for the project."""

import json
from enum import Enum
from typing import Any

from pydantic_core import to_jsonable_python


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def compact_json(value: Any) -> str:
    """
    Serialise *value* as JSON without insignificant whitespace.

    Pydantic models, dataclasses and other common types are converted first, so tool handlers
    can return them directly.
    """
    return json.dumps(to_jsonable_python(value), separators=(",", ":"), ensure_ascii=False)
