"""AsyncLatencyRewriter — inject the collector and wrap async function bodies."""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass
from pathlib import Path

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from async_latency.locator.analyzer import is_docstring, is_stub_body
from async_latency.runtime import collector as runtime_collector

# Unique identifier present in every instrumented file
MARKER_IDENTIFIER = "_async_profiler_metrics"
COLLECTOR_CLASS = "_AsyncProfilerMetrics"
START_PREFIX = "_async_profiler_start_"
RUNTIME_MODULE = "_async_profiler_runtime"
COLLECTOR_COMMENT = "# Auto-injected async latency collector"
INSTALL_STATEMENT = f"{MARKER_IDENTIFIER} = {COLLECTOR_CLASS}.for_process().install()\n"


@dataclass
class RewriteSession:
    """Per-file rewrite settings.

    inject_collector: prepend the full collector definition.
    runtime_module: when not injecting, import the collector handle from
        this module instead. None leaves the file without a collector
        binding, for callers that provide one themselves.
    """

    file_path: str = ""
    inject_collector: bool = True
    runtime_module: str | None = None

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name if self.file_path else "<unknown>"


def contains_marker(source: str) -> bool:
    """Idempotency guard: True if source was already instrumented."""
    return MARKER_IDENTIFIER in source


@functools.cache
def collector_source() -> str:
    """Collector class definition plus the statement that installs it."""
    module = cst.parse_module(inspect.getsource(runtime_collector))
    body = list(module.body)
    if body and is_docstring(body[0]):
        body = body[1:]
    definition = module.with_changes(header=[], body=body).code.strip()
    return f"{definition}\n\n\n{INSTALL_STATEMENT}"


def runtime_module_source() -> str:
    """Standalone module holding the collector, for multi-file builds."""
    return f"{COLLECTOR_COMMENT}\n{collector_source()}"


def _collector_statements(session: RewriteSession) -> list[cst.BaseStatement]:
    if session.inject_collector:
        statements = list(cst.parse_module(collector_source()).body)
        comment = cst.EmptyLine(comment=cst.Comment(COLLECTOR_COMMENT))
        statements[0] = statements[0].with_changes(leading_lines=[comment])
        return statements
    if session.runtime_module:
        return [cst.parse_statement(f"from {session.runtime_module} import {MARKER_IDENTIFIER}\n")]
    return []


def _is_future_import(statement: cst.CSTNode) -> bool:
    if not isinstance(statement, cst.SimpleStatementLine):
        return False
    return any(
        isinstance(small, cst.ImportFrom)
        and isinstance(small.module, cst.Name)
        and small.module.value == "__future__"
        for small in statement.body
    )


def _insertion_index(body: list[cst.BaseStatement]) -> int:
    """First index after the module docstring and `from __future__` imports."""
    index = 0
    if body and is_docstring(body[0]):
        index = 1
    while index < len(body) and _is_future_import(body[index]):
        index += 1
    return index


class AsyncLatencyRewriter(cst.CSTTransformer):
    """Rewrite a module so every async function records its wall-clock latency.

    Must be run through a MetadataWrapper (see instrument_module) so that
    recorded line numbers refer to the original source.
    """

    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, session: RewriteSession) -> None:
        super().__init__()
        self.session = session
        self.wrapped: list[str] = []

    def leave_Module(self, original_node: cst.Module, updated_node: cst.Module) -> cst.Module:
        injected = _collector_statements(self.session)
        if not injected:
            return updated_node

        body = list(updated_node.body)
        index = _insertion_index(body)
        separator = [cst.EmptyLine(), cst.EmptyLine()] if index else []
        injected[0] = injected[0].with_changes(
            leading_lines=[*separator, *injected[0].leading_lines]
        )
        if index < len(body):
            following = body[index]
            body[index] = following.with_changes(
                leading_lines=[cst.EmptyLine(), cst.EmptyLine(), *following.leading_lines]
            )
        return updated_node.with_changes(body=[*body[:index], *injected, *body[index:]])

    def leave_FunctionDef(
        self, original_node: cst.FunctionDef, updated_node: cst.FunctionDef
    ) -> cst.FunctionDef:
        if updated_node.asynchronous is None or is_stub_body(updated_node.body):
            return updated_node

        name = updated_node.name.value
        line = self.get_metadata(PositionProvider, original_node).start.line
        self.wrapped.append(name)
        return updated_node.with_changes(body=self._instrumented_body(updated_node.body, name, line))

    def _instrumented_body(self, body: cst.BaseSuite, name: str, line: int) -> cst.IndentedBlock:
        if isinstance(body, cst.SimpleStatementSuite):
            statements: list[cst.BaseStatement] = [cst.SimpleStatementLine(body=body.body)]
            header = body.trailing_whitespace
            footer: list[cst.EmptyLine] = []
            indent = None
        else:
            statements = list(body.body)
            header = body.header
            footer = list(body.footer)
            indent = body.indent

        docstring = [statements.pop(0)] if statements and is_docstring(statements[0]) else []
        if not statements:
            statements = [cst.SimpleStatementLine(body=[cst.Pass()])]

        start = f"{START_PREFIX}{name}"
        prologue = cst.parse_statement(f"{start} = {MARKER_IDENTIFIER}.clock()\n")
        record = cst.parse_statement(
            f"{MARKER_IDENTIFIER}.record("
            f"{name!r}, {MARKER_IDENTIFIER}.clock() - {start}, {line}, {self.session.file_name!r})\n"
        )
        guarded = cst.Try(
            body=cst.IndentedBlock(body=statements, footer=footer),
            finalbody=cst.Finally(body=cst.IndentedBlock(body=[record])),
        )
        return cst.IndentedBlock(body=[*docstring, prologue, guarded], header=header, indent=indent)


def instrument_module(module: cst.Module, session: RewriteSession) -> cst.Module:
    """Return the instrumented tree. The input tree is not modified."""
    return MetadataWrapper(module).visit(AsyncLatencyRewriter(session))


def instrument_source(source: str, session: RewriteSession) -> str:
    """Parse, instrument and render source text."""
    return instrument_module(cst.parse_module(source), session).code
