"""AsyncFunctionLocator — find `async def` declarations in a libcst module."""

from __future__ import annotations

from dataclasses import dataclass

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from async_latency.locator.types import (
    AnalysisResult,
    AsyncFunctionInfo,
    DeclarationKind,
    SourceLocation,
)

ENUM_BASES: frozenset[str] = frozenset({"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"})
PROTOCOL_BASES: frozenset[str] = frozenset({"Protocol"})
STRUCT_DECORATORS: frozenset[str] = frozenset({"dataclass"})


@dataclass(frozen=True, slots=True)
class Declaration:
    """A top-level declaration the locator understands.

    Every kind exposes the same shape: an optional context name used to
    qualify members, and the member statements to inspect.
    """

    kind: DeclarationKind
    context: str | None
    members: tuple[cst.CSTNode, ...]


class AwaitCounter(cst.CSTVisitor):
    """Count `await` expressions below a node."""

    def __init__(self) -> None:
        self.count = 0

    def visit_Await(self, node: cst.Await) -> bool:
        self.count += 1
        return True


def terminal_name(expr: cst.BaseExpression) -> str | None:
    """Last dotted component of a name-like expression: `enum.Enum` -> `Enum`."""
    if isinstance(expr, cst.Call):
        return terminal_name(expr.func)
    if isinstance(expr, cst.Attribute):
        return expr.attr.value
    if isinstance(expr, cst.Name):
        return expr.value
    if isinstance(expr, cst.Subscript):  # Protocol[T]
        return terminal_name(expr.value)
    return None


def is_stub_body(body: cst.BaseSuite) -> bool:
    """True when a suite holds only `...`, optionally after a docstring."""
    statements = list(body.body)
    if isinstance(body, cst.SimpleStatementSuite):
        statements = [cst.SimpleStatementLine(body=body.body)]
    if statements and is_docstring(statements[0]):
        statements = statements[1:]
    if len(statements) != 1:
        return False
    only = statements[0]
    return (
        isinstance(only, cst.SimpleStatementLine)
        and len(only.body) == 1
        and isinstance(only.body[0], cst.Expr)
        and isinstance(only.body[0].value, cst.Ellipsis)
    )


def is_docstring(statement: cst.CSTNode) -> bool:
    return (
        isinstance(statement, cst.SimpleStatementLine)
        and len(statement.body) == 1
        and isinstance(statement.body[0], cst.Expr)
        and isinstance(statement.body[0].value, (cst.SimpleString, cst.ConcatenatedString))
    )


def is_main_guard(statement: cst.CSTNode) -> bool:
    """True for `if __name__ == "__main__":` in either operand order."""
    if not isinstance(statement, cst.If):
        return False
    test = statement.test
    if not isinstance(test, cst.Comparison) or len(test.comparisons) != 1:
        return False
    target = test.comparisons[0]
    if not isinstance(target.operator, cst.Equal):
        return False
    operands = (test.left, target.comparator)
    names = [op for op in operands if isinstance(op, cst.Name) and op.value == "__name__"]
    strings = [
        op
        for op in operands
        if isinstance(op, cst.SimpleString) and op.evaluated_value == "__main__"
    ]
    return len(names) == 1 and len(strings) == 1


class AsyncFunctionLocator:
    """Locate async functions at top level and one level inside classes.

    Usage:
        result = AsyncFunctionLocator(module).analyze()
    """

    def __init__(self, module: cst.Module) -> None:
        self.module = module
        self._wrapper = MetadataWrapper(module, unsafe_skip_copy=True)
        self._positions = self._wrapper.resolve(PositionProvider)
        self._seen: set[str] = set()

    def analyze(self) -> AnalysisResult:
        functions: list[AsyncFunctionInfo] = []
        has_entry_point = False
        self._seen = set()

        for statement in self.module.body:
            if is_main_guard(statement):
                has_entry_point = True
                continue
            declaration = self._declaration_for(statement)
            if declaration is None:
                continue
            for member in declaration.members:
                info = self._analyze_function(member, declaration)
                if info is not None:
                    functions.append(info)

        return AnalysisResult(async_functions=functions, has_entry_point=has_entry_point)

    def _declaration_for(self, statement: cst.CSTNode) -> Declaration | None:
        """Map a top-level statement onto the closed set of declaration kinds."""
        if isinstance(statement, cst.FunctionDef):
            return Declaration(DeclarationKind.FUNCTION, None, (statement,))
        if isinstance(statement, cst.ClassDef):
            body = statement.body
            members = tuple(body.body) if isinstance(body, cst.IndentedBlock) else ()
            return Declaration(self._class_kind(statement), statement.name.value, members)
        return None

    def _class_kind(self, node: cst.ClassDef) -> DeclarationKind:
        decorators = {terminal_name(d.decorator) for d in node.decorators}
        if decorators & STRUCT_DECORATORS:
            return DeclarationKind.STRUCT
        bases = {terminal_name(arg.value) for arg in node.bases}
        if bases & ENUM_BASES:
            return DeclarationKind.ENUM
        if bases & PROTOCOL_BASES:
            return DeclarationKind.PROTOCOL
        return DeclarationKind.CLASS

    def _analyze_function(
        self, node: cst.CSTNode, declaration: Declaration
    ) -> AsyncFunctionInfo | None:
        if not isinstance(node, cst.FunctionDef) or node.asynchronous is None:
            return None

        name = node.name.value
        position = self._positions[node].start
        qualified_name = f"{declaration.context}.{name}" if declaration.context else name
        if qualified_name in self._seen:
            # Redefinition: keep both, disambiguated by line
            qualified_name = f"{qualified_name}@{position.line}"
        self._seen.add(qualified_name)

        has_body = not is_stub_body(node.body)
        return AsyncFunctionInfo(
            name=name,
            qualified_name=qualified_name,
            await_count=self._count_awaits(node.body) if has_body else 0,
            location=SourceLocation(line=position.line, column=position.column + 1),
            kind=declaration.kind,
            has_body=has_body,
        )

    def _count_awaits(self, body: cst.BaseSuite) -> int:
        counter = AwaitCounter()
        body.visit(counter)
        return counter.count
