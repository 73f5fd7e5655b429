"""Internal data types for the function locator.

Frozen dataclasses for located async functions and per-file analysis
results. The controller copies these into the result dataset; they are
never mutated after a pass completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class DeclarationKind(StrEnum):
    FUNCTION = "function"
    CLASS = "class"
    STRUCT = "struct"  # @dataclass
    ENUM = "enum"
    PROTOCOL = "protocol"


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """1-based position of a declaration's `def` keyword."""

    line: int
    column: int


@dataclass(frozen=True, slots=True)
class AsyncFunctionInfo:
    """A located `async def`."""

    name: str  # "fetch_user"
    qualified_name: str  # "UserService.fetch_user"
    await_count: int
    location: SourceLocation
    kind: DeclarationKind = DeclarationKind.FUNCTION  # enclosing declaration
    has_body: bool = True  # False for `...` stubs


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Complete locator result for a single file."""

    async_functions: list[AsyncFunctionInfo] = field(default_factory=list)
    has_entry_point: bool = False
    parse_error: str | None = None
