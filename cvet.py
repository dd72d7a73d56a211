#!/usr/bin/env python3
"""
cvet - Convention checks for Go services

High-level goals:
- Parse Go (via tree-sitter) into a small, closed syntax-tree model
- Walk every tree once, dispatching each node to the rules registered
  for its category
- Enforce the command/query function shape, context parameter and
  logging conventions
- Emit position-accurate diagnostics as text or JSON for CI

This file is intentionally single-module: the rules are small and share
the same handful of shape predicates.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Optional, Sequence, Set, Union
import argparse
import fnmatch
import json
import os
import sys
import threading

import yaml
import tree_sitter
import tree_sitter_go

__version__ = "0.1.0"

CONFIG_ENV_VAR = "CVET_CONFIG"


# ============================================================
# ========================= ERRORS ===========================
# ============================================================

class CvetError(Exception):
    """Base class for failures that abort a run (never convention violations)."""


class ConfigError(CvetError):
    """Raised for unreadable or malformed configuration and unknown rule ids."""


class SourceParseError(CvetError):
    """Raised when a source file cannot be read or does not parse."""

    def __init__(self, path: str, reason: str, position: Optional["Position"] = None) -> None:
        self.path = path
        self.reason = reason
        self.position = position
        where = str(position) if position is not None else path
        super().__init__(f"{where}: {reason}")


# ============================================================
# ==================== SOURCE POSITIONS ======================
# ============================================================

@dataclass(frozen=True)
class Position:
    file: str
    line: int    # 1-based
    column: int  # 1-based, counted in bytes

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


NO_POSITION = Position(file="<unknown>", line=0, column=0)


# ============================================================
# ===================== SYNTAX TREE MODEL ====================
# ============================================================

# Categories rules can register for. Every node class carries one as `kind`.
FILE = "file"
DECLARATION = "declaration"
FUNCTION = "function"
PARAMETER = "parameter"
RESULT = "result"
EXPRESSION_STATEMENT = "expression_statement"
ASSIGNMENT = "assignment"
IF = "if"
BLOCK = "block"
FOR = "for"
RETURN = "return"
STATEMENT = "statement"
CALL = "call"
SELECTOR = "selector"
IDENTIFIER = "identifier"
STRING = "string"
LITERAL = "literal"
FUNCTION_LITERAL = "function_literal"
EXPRESSION = "expression"


class SyntaxNode:
    """
    Common base of every tree node. `kind` tags the variant; `children()`
    returns the direct sub-nodes in source order.
    """
    kind: ClassVar[str] = ""

    def children(self) -> List["SyntaxNode"]:
        return []


# --------------------------- expressions ---------------------------

@dataclass
class Identifier(SyntaxNode):
    kind: ClassVar[str] = IDENTIFIER

    name: str
    position: Position = NO_POSITION


@dataclass
class SelectorExpression(SyntaxNode):
    """`operand.member`; qualified types such as `context.Context` use it too."""
    kind: ClassVar[str] = SELECTOR

    operand: SyntaxNode
    member: str
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return [self.operand]


@dataclass
class StringLiteral(SyntaxNode):
    kind: ClassVar[str] = STRING

    value: str  # without quotes, escapes left verbatim
    position: Position = NO_POSITION


@dataclass
class BasicLiteral(SyntaxNode):
    kind: ClassVar[str] = LITERAL

    literal_kind: str  # "int_literal", "float_literal", "rune_literal", ...
    value: str
    position: Position = NO_POSITION


@dataclass
class CallExpression(SyntaxNode):
    kind: ClassVar[str] = CALL

    function: SyntaxNode
    arguments: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return [self.function] + list(self.arguments)


@dataclass
class FunctionLiteral(SyntaxNode):
    kind: ClassVar[str] = FUNCTION_LITERAL

    parameters: List["Parameter"] = field(default_factory=list)
    results: List["ResultType"] = field(default_factory=list)
    body: Optional["BlockStatement"] = None
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        nodes: List[SyntaxNode] = list(self.parameters) + list(self.results)
        if self.body is not None:
            nodes.append(self.body)
        return nodes


@dataclass
class OtherExpression(SyntaxNode):
    """
    Any expression or type shape no rule inspects directly (binary, unary,
    composite literals, index expressions, pointer and slice types, ...).
    `syntax` keeps the parser's name for it.
    """
    kind: ClassVar[str] = EXPRESSION

    syntax: str
    items: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.items)


# --------------------------- statements ----------------------------

@dataclass
class ExpressionStatement(SyntaxNode):
    kind: ClassVar[str] = EXPRESSION_STATEMENT

    expression: SyntaxNode
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return [self.expression]


@dataclass
class AssignmentStatement(SyntaxNode):
    """Covers `=`, `:=` and the compound assignment operators."""
    kind: ClassVar[str] = ASSIGNMENT

    targets: List[SyntaxNode] = field(default_factory=list)
    values: List[SyntaxNode] = field(default_factory=list)
    operator: str = "="
    position: Position = NO_POSITION

    @property
    def define(self) -> bool:
        return self.operator == ":="

    def children(self) -> List[SyntaxNode]:
        return list(self.targets) + list(self.values)


@dataclass
class BlockStatement(SyntaxNode):
    kind: ClassVar[str] = BLOCK

    statements: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.statements)


@dataclass
class IfStatement(SyntaxNode):
    kind: ClassVar[str] = IF

    condition: Optional[SyntaxNode]
    body: BlockStatement
    init: Optional[SyntaxNode] = None
    orelse: Optional[SyntaxNode] = None  # BlockStatement or IfStatement
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        nodes: List[SyntaxNode] = []
        if self.init is not None:
            nodes.append(self.init)
        if self.condition is not None:
            nodes.append(self.condition)
        nodes.append(self.body)
        if self.orelse is not None:
            nodes.append(self.orelse)
        return nodes


@dataclass
class ForStatement(SyntaxNode):
    kind: ClassVar[str] = FOR

    clauses: List[SyntaxNode] = field(default_factory=list)
    body: Optional[BlockStatement] = None
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        nodes = list(self.clauses)
        if self.body is not None:
            nodes.append(self.body)
        return nodes


@dataclass
class ReturnStatement(SyntaxNode):
    kind: ClassVar[str] = RETURN

    values: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.values)


@dataclass
class OtherStatement(SyntaxNode):
    """
    switch/select/defer/go/labeled/declaration/inc-dec/send statements and
    case clauses. Case bodies are flat statement sequences, never blocks.
    """
    kind: ClassVar[str] = STATEMENT

    syntax: str
    items: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.items)


# -------------------------- declarations ---------------------------

@dataclass
class Parameter(SyntaxNode):
    kind: ClassVar[str] = PARAMETER

    name: Optional[str]  # None for unnamed parameters
    type: SyntaxNode
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return [self.type]


@dataclass
class ResultType(SyntaxNode):
    kind: ClassVar[str] = RESULT

    name: Optional[str]
    type: SyntaxNode
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return [self.type]


@dataclass
class FunctionDeclaration(SyntaxNode):
    """
    Top-level function or method. `parameters` and `results` hold one entry
    per declared name, in declaration order; `body` is None for bodiless
    declarations.
    """
    kind: ClassVar[str] = FUNCTION

    name: str
    parameters: List[Parameter] = field(default_factory=list)
    results: List[ResultType] = field(default_factory=list)
    body: Optional[BlockStatement] = None
    receiver: Optional[Parameter] = None
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        nodes: List[SyntaxNode] = []
        if self.receiver is not None:
            nodes.append(self.receiver)
        nodes.extend(self.parameters)
        nodes.extend(self.results)
        if self.body is not None:
            nodes.append(self.body)
        return nodes


@dataclass
class OtherDeclaration(SyntaxNode):
    """import/var/const/type declarations at file scope."""
    kind: ClassVar[str] = DECLARATION

    syntax: str
    items: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.items)


@dataclass
class SourceFile(SyntaxNode):
    kind: ClassVar[str] = FILE

    path: str
    package: Optional[str] = None
    declarations: List[SyntaxNode] = field(default_factory=list)
    position: Position = NO_POSITION

    def children(self) -> List[SyntaxNode]:
        return list(self.declarations)


# ---------------------------- predicates ---------------------------

def is_identifier(node: Optional[SyntaxNode], name: str) -> bool:
    return isinstance(node, Identifier) and node.name == name


def is_selector(node: Optional[SyntaxNode], operand: str, member: str) -> bool:
    return (
        isinstance(node, SelectorExpression)
        and is_identifier(node.operand, operand)
        and node.member == member
    )


def is_type(node: Optional[SyntaxNode], type_name: str) -> bool:
    """
    Match a type reference against "name" or "package.Name". Pointer, slice
    and other composite types never match.
    """
    if "." in type_name:
        operand, member = type_name.split(".", 1)
        return is_selector(node, operand, member)
    return is_identifier(node, type_name)


def call_of(statement: Optional[SyntaxNode]) -> Optional[CallExpression]:
    """The call an expression statement consists of, if any."""
    if isinstance(statement, ExpressionStatement) and isinstance(statement.expression, CallExpression):
        return statement.expression
    return None


def call_receiver(call: Optional[CallExpression]) -> Optional[str]:
    """`pkg` for a `pkg.Member(...)` call, None for every other shape."""
    if call is None or not isinstance(call.function, SelectorExpression):
        return None
    operand = call.function.operand
    if isinstance(operand, Identifier):
        return operand.name
    return None


def iter_nodes(root: SyntaxNode) -> Iterator[SyntaxNode]:
    """
    Depth-first, parent-before-children, source-order traversal. Every
    reachable node is yielded exactly once.
    """
    stack: List[SyntaxNode] = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children()))


# ============================================================
# ===================== CONFIGURATION ========================
# ============================================================

@dataclass
class Conventions:
    """
    Every name the rules match on. Defaults describe the Go services the
    checks were written for; a YAML file can override any of them.
    """
    command_suffix: str = "Command"
    query_suffix: str = "Query"
    status_type: str = "int"
    error_type: str = "error"
    user_type: str = "auth.User"
    context_type: str = "context.Context"
    context_name: str = "ctx"
    logger_name: str = "logger"
    log_package: str = "slog"
    builder_name: str = "With"
    command_key: str = "command"
    legacy_log_package: str = "log"
    panic_name: str = "panic"
    disabled_rules: List[str] = field(default_factory=list)


DEFAULT_CONVENTIONS = Conventions()

_WARNED: Set[str] = set()


def _warn_once(key: str, message: str) -> None:
    if key in _WARNED:
        return
    sys.stderr.write(f"[cvet] {message}\n")
    _WARNED.add(key)


def load_conventions(path: Optional[str]) -> Conventions:
    """
    Build Conventions from a YAML mapping. A missing path means defaults.
    Unknown keys are reported once and ignored; everything else that is
    wrong raises ConfigError.
    """
    if not path:
        return Conventions()

    try:
        with open(path, "r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except OSError as exc:
        raise ConfigError(f"could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if document is None:
        return Conventions()
    if not isinstance(document, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    known = {f.name for f in fields(Conventions)}
    values: Dict[str, Any] = {}
    for key, value in document.items():
        if key not in known:
            _warn_once(f"config-key:{key}", f"Ignoring unknown config key '{key}' in {path}.")
            continue
        if key == "disabled_rules":
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise ConfigError(f"{path}: 'disabled_rules' must be a list of rule ids")
            values[key] = list(value)
        elif not isinstance(value, str) or not value:
            raise ConfigError(f"{path}: '{key}' must be a non-empty string")
        else:
            values[key] = value

    return Conventions(**values)


# ============================================================
# ==================== DIAGNOSTIC SINK =======================
# ============================================================

@dataclass(frozen=True)
class Diagnostic:
    position: Position
    message: str
    rule: str = ""

    def __str__(self) -> str:
        return f"{self.position}: {self.message}"


class DiagnosticSink:
    """
    Append-only, ordered collection of diagnostics for one run. Appends are
    serialized so a single sink may be shared between threads.
    """

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []
        self._lock = threading.Lock()

    def report(self, position: Position, message: str, rule: str = "") -> None:
        diagnostic = Diagnostic(position=position, message=message, rule=rule)
        with self._lock:
            self._diagnostics.append(diagnostic)

    def extend(self, other: "DiagnosticSink") -> None:
        items = other.diagnostics
        with self._lock:
            self._diagnostics.extend(items)

    def bind(self, rule_id: str) -> "RuleReporter":
        return RuleReporter(self, rule_id)

    def count(self) -> int:
        return len(self._diagnostics)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        with self._lock:
            return list(self._diagnostics)

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)


class RuleReporter:
    """The sink as seen by one rule: reports are tagged with the rule id."""

    def __init__(self, sink: DiagnosticSink, rule_id: str) -> None:
        self.sink = sink
        self.rule_id = rule_id

    def report(self, position: Position, message: str) -> None:
        self.sink.report(position, message, rule=self.rule_id)


# Anything with report(position, message): a DiagnosticSink or a RuleReporter.
Reporter = Union[DiagnosticSink, RuleReporter]


# ============================================================
# ====================== RULE REGISTRY =======================
# ============================================================

RuleCheck = Callable[[Any, Reporter, Conventions], None]


@dataclass(frozen=True)
class Rule:
    id: str
    category: str  # node kind the check is called for
    check: RuleCheck
    doc: str = ""


RULES: List[Rule] = []


def register_rule(rule_id: str, category: str, doc: str = "") -> Callable[[RuleCheck], RuleCheck]:
    """
    Decorator adding a check to RULES. Adding a rule needs nothing beyond a
    category and a callback; the walker and the sink stay untouched.
    """
    def decorator(check: RuleCheck) -> RuleCheck:
        if any(rule.id == rule_id for rule in RULES):
            raise ValueError(f"duplicate rule id: {rule_id}")
        RULES.append(Rule(id=rule_id, category=category, check=check, doc=doc))
        return check

    return decorator


def select_rules(conventions: Optional[Conventions] = None, disabled: Sequence[str] = ()) -> List[Rule]:
    """Registered rules minus the disabled ones, in registration order."""
    conventions = conventions or DEFAULT_CONVENTIONS
    excluded = set(conventions.disabled_rules) | set(disabled)
    unknown = sorted(excluded - {rule.id for rule in RULES})
    if unknown:
        raise ConfigError(f"unknown rule id(s): {', '.join(unknown)}")
    return [rule for rule in RULES if rule.id not in excluded]


# ============================================================
# ======================= TREE WALKER ========================
# ============================================================

def walk(
    root: SyntaxNode,
    rules: Sequence[Rule],
    sink: DiagnosticSink,
    conventions: Optional[Conventions] = None,
) -> None:
    """
    Visit every node under `root` once and call each rule registered for
    the node's kind. Pure dispatch: nothing here reports or mutates.
    """
    conventions = conventions or DEFAULT_CONVENTIONS
    dispatch: Dict[str, List[Any]] = {}
    for rule in rules:
        dispatch.setdefault(rule.category, []).append((rule.check, sink.bind(rule.id)))

    for node in iter_nodes(root):
        for check, reporter in dispatch.get(node.kind, ()):
            check(node, reporter, conventions)


# ============================================================
# ======================= FUNCTION SHAPE =====================
# ============================================================

def is_command_function(node: FunctionDeclaration, conventions: Conventions = DEFAULT_CONVENTIONS) -> bool:
    return node.name.endswith(conventions.command_suffix)


def is_query_function(node: FunctionDeclaration, conventions: Conventions = DEFAULT_CONVENTIONS) -> bool:
    return node.name.endswith(conventions.query_suffix)


@register_rule(
    "function-shape-command",
    FUNCTION,
    "Command functions return (int, error) and take no authenticated user.",
)
def check_command_shape(node: FunctionDeclaration, sink: Reporter, conventions: Conventions) -> None:
    if not is_command_function(node, conventions):
        return

    results = node.results
    if len(results) != 2:
        sink.report(node.position, "command function must have 2 return values")
    else:
        if not is_type(results[0].type, conventions.status_type):
            sink.report(
                node.position,
                f"command function must return an {conventions.status_type} code as the first return value",
            )
        if not is_type(results[1].type, conventions.error_type):
            sink.report(
                node.position,
                f"command function must return an {conventions.error_type} as the second return value",
            )

    if any(is_type(param.type, conventions.user_type) for param in node.parameters):
        sink.report(node.position, f"command function must not have an {conventions.user_type} parameter")


@register_rule(
    "function-shape-query",
    FUNCTION,
    "Query functions return (value, int, error).",
)
def check_query_shape(node: FunctionDeclaration, sink: Reporter, conventions: Conventions) -> None:
    if not is_query_function(node, conventions):
        return

    results = node.results
    if len(results) != 3:
        sink.report(node.position, "query function must have 3 return values")
        return
    if not is_type(results[1].type, conventions.status_type):
        sink.report(
            node.position,
            f"query function must return an {conventions.status_type} code as the second return value",
        )
    if not is_type(results[2].type, conventions.error_type):
        sink.report(
            node.position,
            f"query function must return an {conventions.error_type} as the third return value",
        )


# ============================================================
# ==================== LOGGING CONVENTION ====================
# ============================================================

def _is_string(node: Optional[SyntaxNode], value: str) -> bool:
    return isinstance(node, StringLiteral) and node.value == value


def _check_command_value(
    position: Position,
    value: Optional[SyntaxNode],
    command_name: str,
    sink: Reporter,
) -> None:
    if isinstance(value, StringLiteral):
        if value.value != command_name:
            sink.report(
                position,
                f"logger command name must be function name {command_name}, but found {value.value}",
            )
    elif isinstance(value, BasicLiteral):
        sink.report(position, "logger command name must be a string literal")
    else:
        sink.report(position, "logger command name must be a literal")


def _find_command_arg(
    arguments: Sequence[SyntaxNode],
    command_name: str,
    sink: Reporter,
    conventions: Conventions,
) -> bool:
    """
    Look for the command key either inside a field constructor
    (`slog.String("command", name)`) or as a bare key/value pair. Checks the
    first one found and reports whether there was one.
    """
    key = conventions.command_key
    for index, argument in enumerate(arguments):
        if isinstance(argument, CallExpression):
            field_args = argument.arguments
            if field_args and _is_string(field_args[0], key):
                value = field_args[1] if len(field_args) > 1 else None
                _check_command_value(argument.position, value, command_name, sink)
                return True
        elif _is_string(argument, key):
            value = arguments[index + 1] if index + 1 < len(arguments) else None
            _check_command_value(argument.position, value, command_name, sink)
            return True
    return False


def _check_no_raw_log(statements: Sequence[SyntaxNode], sink: Reporter, conventions: Conventions) -> None:
    # Recurses into if/else branches only: loops, switches and function
    # literals are out of reach.
    for statement in statements:
        if isinstance(statement, ExpressionStatement):
            if call_receiver(call_of(statement)) == conventions.log_package:
                sink.report(statement.position, f"{conventions.logger_name} must be used to log")
        elif isinstance(statement, IfStatement):
            _check_no_raw_log(statement.body.statements, sink, conventions)
            if isinstance(statement.orelse, BlockStatement):
                _check_no_raw_log(statement.orelse.statements, sink, conventions)
            elif statement.orelse is not None:
                _check_no_raw_log([statement.orelse], sink, conventions)


@register_rule(
    "logging-convention",
    FUNCTION,
    "Command functions start by building a named logger and log only through it.",
)
def check_command_logger(node: FunctionDeclaration, sink: Reporter, conventions: Conventions) -> None:
    if not is_command_function(node, conventions) or node.body is None:
        return

    statements = node.body.statements
    first = statements[0] if statements else None
    if (
        not isinstance(first, AssignmentStatement)
        or not first.targets
        or not is_identifier(first.targets[0], conventions.logger_name)
    ):
        sink.report(node.position, f"command first statement must be a {conventions.logger_name} creation")
        return

    builder = first.values[0] if first.values else None
    if not isinstance(builder, CallExpression) or not is_selector(
        builder.function, conventions.log_package, conventions.builder_name
    ):
        sink.report(
            node.position,
            f"{conventions.logger_name} creation must use {conventions.log_package}.{conventions.builder_name}",
        )
        return

    if not _find_command_arg(builder.arguments, node.name, sink, conventions):
        sink.report(
            node.position,
            f"{conventions.logger_name} creation must contain {conventions.command_key} arg",
        )

    _check_no_raw_log(statements[1:], sink, conventions)


# ============================================================
# ==================== CONTEXT PARAMETER =====================
# ============================================================

@register_rule(
    "context-parameter",
    FUNCTION,
    "A context.Context parameter comes first and is named ctx.",
)
def check_context_parameter(node: FunctionDeclaration, sink: Reporter, conventions: Conventions) -> None:
    index = next(
        (i for i, param in enumerate(node.parameters) if is_type(param.type, conventions.context_type)),
        None,
    )
    if index is None:
        return
    if index != 0:
        sink.report(node.position, f"{conventions.context_type} must be the first parameter")
    if node.parameters[index].name != conventions.context_name:
        sink.report(
            node.position,
            f"{conventions.context_type} parameter must be named {conventions.context_name}",
        )


# ============================================================
# ======================== LOG USAGE =========================
# ============================================================

def _is_structured_field(argument: SyntaxNode, conventions: Conventions) -> bool:
    if isinstance(argument, Identifier):
        return False
    if not isinstance(argument, CallExpression):
        return True
    if not isinstance(argument.function, SelectorExpression):
        return False
    operand = argument.function.operand
    if isinstance(operand, Identifier):
        return operand.name == conventions.log_package
    # Chained receivers (a.b.C()) are left alone.
    return True


@register_rule(
    "log-usage",
    CALL,
    "No legacy log package; logger builders take only slog field constructors.",
)
def check_log_usage(node: CallExpression, sink: Reporter, conventions: Conventions) -> None:
    if call_receiver(node) == conventions.legacy_log_package:
        sink.report(node.position, f"found old {conventions.legacy_log_package} usage")

    builder = conventions.builder_name
    if not (
        is_selector(node.function, conventions.log_package, builder)
        or is_selector(node.function, conventions.logger_name, builder)
    ):
        return
    for argument in node.arguments:
        if not _is_structured_field(argument, conventions):
            sink.report(
                node.position,
                f"{conventions.log_package}.{builder} and {conventions.logger_name}.{builder} "
                f"must be called with a {conventions.log_package} arg",
            )


# ============================================================
# ===================== LOG BEFORE PANIC =====================
# ============================================================

@register_rule(
    "log-before-panic",
    BLOCK,
    "A panic is not directly preceded by a call on the local logger.",
)
def check_log_before_panic(node: BlockStatement, sink: Reporter, conventions: Conventions) -> None:
    statements = node.statements
    for index in range(1, len(statements)):
        call = call_of(statements[index])
        if call is None or not is_identifier(call.function, conventions.panic_name):
            continue
        previous = statements[index - 1]
        if call_receiver(call_of(previous)) == conventions.logger_name:
            sink.report(previous.position, "no log before panic")


# ============================================================
# ================ GO PARSER (tree-sitter) ===================
# ============================================================

GO_LANGUAGE = tree_sitter.Language(tree_sitter_go.language())

_STATEMENT_TYPES = {
    "expression_statement",
    "assignment_statement",
    "short_var_declaration",
    "if_statement",
    "block",
    "for_statement",
    "return_statement",
    "expression_switch_statement",
    "type_switch_statement",
    "select_statement",
    "defer_statement",
    "go_statement",
    "labeled_statement",
    "inc_statement",
    "dec_statement",
    "send_statement",
    "var_declaration",
    "const_declaration",
    "type_declaration",
    "empty_statement",
    "break_statement",
    "continue_statement",
    "goto_statement",
    "fallthrough_statement",
    "expression_case",
    "default_case",
    "type_case",
    "communication_case",
}

_DECLARATION_TYPES = {"import_declaration", "var_declaration", "const_declaration", "type_declaration"}
_IDENTIFIER_TYPES = {"identifier", "type_identifier", "field_identifier", "package_identifier"}
_STRING_TYPES = {"interpreted_string_literal", "raw_string_literal"}
_BASIC_LITERAL_TYPES = {"int_literal", "float_literal", "imaginary_literal", "rune_literal"}


class _GoTreeTranslator:
    """
    Turns a tree-sitter Go parse tree into the syntax model. Shapes no rule
    looks into become OtherStatement/OtherExpression containers so that
    every call and block stays reachable.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def position(self, node: tree_sitter.Node) -> Position:
        row, column = node.start_point[0], node.start_point[1]
        return Position(file=self.path, line=row + 1, column=column + 1)

    def text(self, node: Optional[tree_sitter.Node]) -> str:
        if node is None or node.text is None:
            return ""
        return node.text.decode("utf-8", errors="replace")

    def named(self, node: tree_sitter.Node) -> List[tree_sitter.Node]:
        return [child for child in node.named_children if child.type != "comment"]

    def items(self, node: Optional[tree_sitter.Node]) -> List[SyntaxNode]:
        if node is None:
            return []
        result: List[SyntaxNode] = []
        for child in self.named(node):
            if child.type == "statement_list":
                result.extend(self.items(child))
            else:
                result.append(self.any(child))
        return result

    def any(self, node: tree_sitter.Node) -> SyntaxNode:
        if node.type in _STATEMENT_TYPES:
            return self.statement(node)
        return self.expression(node)

    # ---- declarations ----

    def source_file(self, root: tree_sitter.Node) -> SourceFile:
        package: Optional[str] = None
        declarations: List[SyntaxNode] = []
        for child in self.named(root):
            if child.type == "package_clause":
                names = self.named(child)
                package = self.text(names[0]) if names else None
            elif child.type in ("function_declaration", "method_declaration"):
                declarations.append(self.function(child))
            elif child.type in _DECLARATION_TYPES:
                declarations.append(
                    OtherDeclaration(syntax=child.type, items=self.items(child), position=self.position(child))
                )
            else:
                declarations.append(self.any(child))
        return SourceFile(path=self.path, package=package, declarations=declarations, position=self.position(root))

    def function(self, node: tree_sitter.Node) -> FunctionDeclaration:
        receiver: Optional[Parameter] = None
        receiver_node = node.child_by_field_name("receiver")
        if receiver_node is not None:
            receivers = self.fields(receiver_node, Parameter)
            receiver = receivers[0] if receivers else None
        body_node = node.child_by_field_name("body")
        return FunctionDeclaration(
            name=self.text(node.child_by_field_name("name")),
            parameters=self.fields(node.child_by_field_name("parameters"), Parameter),
            results=self.results(node.child_by_field_name("result")),
            body=self.block(body_node) if body_node is not None else None,
            receiver=receiver,
            position=self.position(node),
        )

    def fields(self, node: Optional[tree_sitter.Node], factory: Any) -> List[Any]:
        """One Parameter/ResultType per declared name, in order."""
        if node is None:
            return []
        entries: List[Any] = []
        for child in self.named(node):
            if child.type not in ("parameter_declaration", "variadic_parameter_declaration"):
                continue
            type_node = child.child_by_field_name("type")
            names = child.children_by_field_name("name")
            # Grouped names each get their own copy of the type node.
            for name_node in names or [None]:
                type_expr = self.type_expression(child, type_node)
                if name_node is None:
                    entries.append(factory(name=None, type=type_expr, position=self.position(child)))
                else:
                    entries.append(
                        factory(name=self.text(name_node), type=type_expr, position=self.position(name_node))
                    )
        return entries

    def type_expression(self, declaration: tree_sitter.Node, type_node: Optional[tree_sitter.Node]) -> SyntaxNode:
        if type_node is None:
            return OtherExpression(syntax="missing_type", position=self.position(declaration))
        type_expr = self.expression(type_node)
        if declaration.type == "variadic_parameter_declaration":
            return OtherExpression(syntax="variadic_type", items=[type_expr], position=self.position(declaration))
        return type_expr

    def results(self, node: Optional[tree_sitter.Node]) -> List[ResultType]:
        if node is None:
            return []
        if node.type == "parameter_list":
            return self.fields(node, ResultType)
        return [ResultType(name=None, type=self.expression(node), position=self.position(node))]

    # ---- statements ----

    def block(self, node: tree_sitter.Node) -> BlockStatement:
        return BlockStatement(statements=self.items(node), position=self.position(node))

    def expression_list(self, node: Optional[tree_sitter.Node]) -> List[SyntaxNode]:
        if node is None:
            return []
        if node.type == "expression_list":
            return [self.expression(child) for child in self.named(node)]
        return [self.expression(node)]

    def statement(self, node: tree_sitter.Node) -> SyntaxNode:
        kind = node.type
        position = self.position(node)

        if kind == "expression_statement":
            inner = self.named(node)
            if inner:
                return ExpressionStatement(expression=self.expression(inner[0]), position=position)
        elif kind in ("assignment_statement", "short_var_declaration"):
            operator_node = node.child_by_field_name("operator")
            if kind == "short_var_declaration":
                operator = ":="
            else:
                operator = self.text(operator_node) or "="
            return AssignmentStatement(
                targets=self.expression_list(node.child_by_field_name("left")),
                values=self.expression_list(node.child_by_field_name("right")),
                operator=operator,
                position=position,
            )
        elif kind == "if_statement":
            init_node = node.child_by_field_name("initializer")
            condition_node = node.child_by_field_name("condition")
            consequence = node.child_by_field_name("consequence")
            alternative = node.child_by_field_name("alternative")
            return IfStatement(
                init=self.any(init_node) if init_node is not None else None,
                condition=self.expression(condition_node) if condition_node is not None else None,
                body=self.block(consequence) if consequence is not None else BlockStatement(position=position),
                orelse=self.statement(alternative) if alternative is not None else None,
                position=position,
            )
        elif kind == "block":
            return self.block(node)
        elif kind == "for_statement":
            body_node = node.child_by_field_name("body")
            clauses = [self.any(child) for child in self.named(node) if child != body_node]
            return ForStatement(
                clauses=clauses,
                body=self.block(body_node) if body_node is not None else None,
                position=position,
            )
        elif kind == "return_statement":
            values: List[SyntaxNode] = []
            for child in self.named(node):
                values.extend(self.expression_list(child))
            return ReturnStatement(values=values, position=position)

        return OtherStatement(syntax=kind, items=self.items(node), position=position)

    # ---- expressions ----

    def expression(self, node: tree_sitter.Node) -> SyntaxNode:
        kind = node.type
        position = self.position(node)

        if kind == "call_expression":
            return CallExpression(
                function=self.expression(node.child_by_field_name("function")),
                arguments=self.items(node.child_by_field_name("arguments")),
                position=position,
            )
        if kind == "selector_expression":
            return SelectorExpression(
                operand=self.expression(node.child_by_field_name("operand")),
                member=self.text(node.child_by_field_name("field")),
                position=position,
            )
        if kind == "qualified_type":
            package_node = node.child_by_field_name("package")
            return SelectorExpression(
                operand=Identifier(name=self.text(package_node), position=self.position(package_node)),
                member=self.text(node.child_by_field_name("name")),
                position=position,
            )
        if kind in _IDENTIFIER_TYPES:
            return Identifier(name=self.text(node), position=position)
        if kind in _STRING_TYPES:
            raw = self.text(node)
            return StringLiteral(value=raw[1:-1] if len(raw) >= 2 else "", position=position)
        if kind in _BASIC_LITERAL_TYPES:
            return BasicLiteral(literal_kind=kind, value=self.text(node), position=position)
        if kind == "func_literal":
            body_node = node.child_by_field_name("body")
            return FunctionLiteral(
                parameters=self.fields(node.child_by_field_name("parameters"), Parameter),
                results=self.results(node.child_by_field_name("result")),
                body=self.block(body_node) if body_node is not None else None,
                position=position,
            )
        if kind in _STATEMENT_TYPES:
            return self.statement(node)
        return OtherExpression(syntax=kind, items=self.items(node), position=position)


def _first_error(node: tree_sitter.Node) -> Optional[tree_sitter.Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


def parse_go_source(source: Union[bytes, str], path: str = "<source>") -> SourceFile:
    """
    Parse Go source text into a SourceFile. Syntax errors raise
    SourceParseError at the first broken node.
    """
    if isinstance(source, str):
        source = source.encode("utf-8")
    parser = tree_sitter.Parser(GO_LANGUAGE)
    tree = parser.parse(source)
    root = tree.root_node
    translator = _GoTreeTranslator(path)
    if root.has_error:
        broken = _first_error(root)
        position = translator.position(broken) if broken is not None else None
        raise SourceParseError(path, "syntax error", position)
    return translator.source_file(root)


def parse_go_file(path: str) -> SourceFile:
    try:
        with open(path, "rb") as handle:
            source = handle.read()
    except OSError as exc:
        raise SourceParseError(path, f"could not read file: {exc.strerror or exc}") from exc
    return parse_go_source(source, path)


# ============================================================
# ========================= DRIVER ===========================
# ============================================================

SKIP_DIRS = {"vendor", "testdata", "node_modules"}


def check_source_file(
    source_file: SourceFile,
    sink: DiagnosticSink,
    conventions: Optional[Conventions] = None,
    rules: Optional[Sequence[Rule]] = None,
) -> DiagnosticSink:
    walk(source_file, RULES if rules is None else rules, sink, conventions)
    return sink


def run(
    source_files: Sequence[SourceFile],
    conventions: Optional[Conventions] = None,
    rules: Optional[Sequence[Rule]] = None,
    sink: Optional[DiagnosticSink] = None,
) -> DiagnosticSink:
    """
    Check every tree into one sink and hand it back. The sink is the whole
    result: a non-empty one means the run failed.
    """
    sink = sink if sink is not None else DiagnosticSink()
    conventions = conventions or DEFAULT_CONVENTIONS
    if rules is None:
        rules = select_rules(conventions)
    for source_file in source_files:
        check_source_file(source_file, sink, conventions, rules)
    return sink


def collect_go_files(paths: Sequence[str], excludes: Sequence[str] = ()) -> List[str]:
    """
    Expand directories to the .go files below them, sorted, skipping hidden,
    vendor and testdata directories. Explicit file paths are kept as given.
    """
    def excluded(path: str) -> bool:
        name = os.path.basename(path)
        return any(fnmatch.fnmatch(name, pat) or fnmatch.fnmatch(path, pat) for pat in excludes)

    files: List[str] = []
    for path in paths:
        if os.path.isdir(path):
            for dirpath, dirnames, filenames in os.walk(path):
                dirnames[:] = sorted(
                    d for d in dirnames if d not in SKIP_DIRS and not d.startswith((".", "_"))
                )
                for fname in sorted(filenames):
                    full = os.path.join(dirpath, fname)
                    if fname.endswith(".go") and not excluded(full):
                        files.append(full)
        elif os.path.exists(path):
            if not excluded(path):
                files.append(path)
        else:
            raise SourceParseError(path, "no such file or directory")
    return files


def check_paths(
    paths: Sequence[str],
    conventions: Optional[Conventions] = None,
    rules: Optional[Sequence[Rule]] = None,
    excludes: Sequence[str] = (),
) -> DiagnosticSink:
    """
    Load, parse and check every Go file under `paths`. Parse failures abort
    the run with SourceParseError.
    """
    files = collect_go_files(paths, excludes)
    if not files:
        _warn_once("no-files", f"No Go files found under {', '.join(paths)}.")
    return run([parse_go_file(path) for path in files], conventions, rules)


# ============================================================
# ==================== DIAGNOSTIC OUTPUT =====================
# ============================================================

def diagnostic_to_json_obj(diagnostic: Diagnostic) -> Dict[str, Any]:
    return {
        "rule_id": diagnostic.rule,
        "message": diagnostic.message,
        "location": {
            "file": diagnostic.position.file,
            "line": diagnostic.position.line,
            "column": diagnostic.position.column,
        },
        "tool": "cvet",
        "version": __version__,
    }


def _write_output(text: str, out: Optional[str]) -> None:
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        sys.stdout.write(text)


def emit_diagnostics_json(diagnostics: Sequence[Diagnostic], out: Optional[str] = None) -> None:
    as_json = [diagnostic_to_json_obj(d) for d in diagnostics]
    _write_output(json.dumps(as_json, indent=2) + "\n", out)


def emit_diagnostics_text(diagnostics: Sequence[Diagnostic], out: Optional[str] = None) -> None:
    """One `file:line:column: message` line per diagnostic, in emission order."""
    _write_output("".join(f"{d}\n" for d in diagnostics), out)


# ============================================================
# ============================ CLI ===========================
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.
      cvet check [--config cvet.yaml] [--format json] ./internal ./cmd
      cvet rules

    Exit status: 0 clean, 1 diagnostics found, 2 configuration or parse failure.
    """
    parser = argparse.ArgumentParser(
        prog="cvet",
        description="cvet: command/query and logging convention checks for Go"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    check_p = subparsers.add_parser(
        "check",
        help="Check Go files or directories and report convention violations."
    )
    check_p.add_argument(
        "--config",
        metavar="YAML",
        help=f"Conventions file (default: ${CONFIG_ENV_VAR}, else built-in defaults).",
    )
    check_p.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )
    check_p.add_argument(
        "--out",
        metavar="FILE",
        help="Write diagnostics to this file instead of stdout.",
    )
    check_p.add_argument(
        "--disable",
        action="append",
        default=[],
        metavar="RULE",
        help="Rule id to skip (repeatable).",
    )
    check_p.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help="File name or path pattern to skip (repeatable).",
    )
    check_p.add_argument(
        "paths",
        nargs="+",
        help="Go files or directories to check."
    )

    subparsers.add_parser("rules", help="List the available rules.")

    args = parser.parse_args(argv)

    if args.command == "rules":
        for rule in RULES:
            print(f"{rule.id:<24}  {rule.category:<10}  {rule.doc}")
        return 0

    if args.command == "check":
        try:
            conventions = load_conventions(args.config or os.environ.get(CONFIG_ENV_VAR))
            rules = select_rules(conventions, args.disable)
            sink = check_paths(args.paths, conventions, rules, excludes=args.exclude)
        except CvetError as exc:
            sys.stderr.write(f"[cvet] {exc}\n")
            return 2

        diagnostics = sink.diagnostics
        if args.format == "json":
            emit_diagnostics_json(diagnostics, out=args.out)
        else:
            emit_diagnostics_text(diagnostics, out=args.out)
        return 1 if diagnostics else 0

    # unreachable if parser is correct
    return 1


if __name__ == "__main__":
    sys.exit(main())
