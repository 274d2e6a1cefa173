"""Condition expressions evaluated by condition steps.

Expressions are small boolean formulas over the execution context, for example::

    amount > 10000 AND NOT (document.status == "draft")
    signer.email endsWith "@example.com" OR "legal" in tags
    length(recipients) >= 2

Supported syntax:

- literals: numbers, single or double quoted strings, ``true``, ``false``,
  ``null`` and list literals (``["a", "b"]``)
- variables: dotted paths into the context (``document.title``); a leading
  ``$`` is accepted and ignored, and missing keys resolve to ``None``
- comparisons: ``==``, ``!=``, ``>``, ``<``, ``>=``, ``<=``, ``contains``, ``in``
  plus the infix forms ``startsWith`` and ``endsWith``
- logic: ``AND``, ``OR``, ``NOT`` (any case) and parentheses
- helper functions, see :data:`FUNCTIONS`

Expressions are parsed once when a workflow is saved, so syntax errors surface
at save time, and evaluated every time a condition step runs.
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from docflow.exceptions import ExpressionError

__all__ = ["FUNCTIONS", "Expression", "lookup_path", "parse_expression"]


def _length(value: Any) -> int:
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return 0


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _substring(value: Any, start: Any, end: Any = None) -> str:
    text = str(value)
    return text[int(start) :] if end is None else text[int(start) : int(end)]


def _split(value: Any, separator: Any = ",") -> list[str]:
    return str(value).split(str(separator))


def _join(values: Any, separator: Any = ",") -> str:
    return str(separator).join(str(v) for v in values or [])


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "length": _length,
    "upper": lambda v: str(v).upper(),
    "toUpperCase": lambda v: str(v).upper(),
    "lower": lambda v: str(v).lower(),
    "toLowerCase": lambda v: str(v).lower(),
    "trim": lambda v: str(v).strip(),
    "isEmpty": _is_empty,
    "startsWith": lambda v, prefix: str(v).startswith(str(prefix)),
    "endsWith": lambda v, suffix: str(v).endswith(str(suffix)),
    "substring": _substring,
    "replace": lambda v, old, new: str(v).replace(str(old), str(new)),
    "split": _split,
    "join": _join,
    "concat": lambda *values: "".join("" if v is None else str(v) for v in values),
    "round": lambda v: round(float(v)),
    "floor": lambda v: math.floor(float(v)),
    "ceil": lambda v: math.ceil(float(v)),
    "abs": lambda v: abs(v),
    "min": lambda *values: min(values),
    "max": lambda *values: max(values),
}
"""Helper functions callable from expressions."""

_KEYWORD_OPERATORS = {"and": "AND", "or": "OR", "not": "NOT", "contains": "contains", "in": "in"}
_INFIX_FUNCTIONS = ("startsWith", "endsWith")
_COMPARISONS = frozenset({"==", "!=", ">", "<", ">=", "<=", "contains", "in", *_INFIX_FUNCTIONS})
_LITERALS = {"true": True, "false": False, "null": None, "none": None}

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<number>-?\d+(?:\.\d+)?(?![\w.]))
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<op>==|!=|>=|<=|>|<)
    | (?P<punct>[(),\[\]])
    | (?P<name>\$?[A-Za-z_][\w]*(?:\.\w+)*)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    position: int


def lookup_path(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path against nested mappings and sequences.

    Args:
        data: The root mapping.
        path: A dotted path such as ``document.title`` or ``signers.0.email``.
            A leading ``$`` is ignored.

    Returns:
        The value found, or ``None`` if any segment is missing.
    """
    current: Any = data
    for segment in path.lstrip("$").split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, str) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


# Nodes


class _Node(ABC):
    @abstractmethod
    def evaluate(self, data: Mapping[str, Any]) -> Any:
        """Evaluate the node against ``data``."""

    def variables(self) -> set[str]:
        return set()


@dataclass(frozen=True)
class _Literal(_Node):
    value: Any

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class _ListLiteral(_Node):
    items: tuple[_Node, ...]

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        return [item.evaluate(data) for item in self.items]

    def variables(self) -> set[str]:
        return set().union(*(item.variables() for item in self.items))


@dataclass(frozen=True)
class _Variable(_Node):
    path: str

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        return lookup_path(data, self.path)

    def variables(self) -> set[str]:
        return {self.path.lstrip("$")}


@dataclass(frozen=True)
class _Call(_Node):
    name: str
    args: tuple[_Node, ...]

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        return FUNCTIONS[self.name](*(arg.evaluate(data) for arg in self.args))

    def variables(self) -> set[str]:
        return set().union(*(arg.variables() for arg in self.args))


@dataclass(frozen=True)
class _Not(_Node):
    operand: _Node

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        return not self.operand.evaluate(data)

    def variables(self) -> set[str]:
        return self.operand.variables()


@dataclass(frozen=True)
class _Logical(_Node):
    operator: str
    left: _Node
    right: _Node

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        if self.operator == "AND":
            return bool(self.left.evaluate(data)) and bool(self.right.evaluate(data))
        return bool(self.left.evaluate(data)) or bool(self.right.evaluate(data))

    def variables(self) -> set[str]:
        return self.left.variables() | self.right.variables()


@dataclass(frozen=True)
class _Comparison(_Node):
    operator: str
    left: _Node
    right: _Node

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        left = self.left.evaluate(data)
        right = self.right.evaluate(data)
        op = self.operator
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "contains":
            return _contains(left, right)
        if op == "in":
            return _contains(right, left)
        if op in _INFIX_FUNCTIONS:
            return FUNCTIONS[op](left, right)
        if op == ">":
            return left > right
        if op == "<":
            return left < right
        if op == ">=":
            return left >= right
        return left <= right

    def variables(self) -> set[str]:
        return self.left.variables() | self.right.variables()


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return isinstance(item, str) and item in container
    if isinstance(container, (list, tuple, set, dict)):
        return item in container
    return False


class _Parser:
    """Recursive-descent parser over the token stream."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = self._tokenize(source)
        self.index = 0

    def _tokenize(self, source: str) -> list[_Token]:
        tokens: list[_Token] = []
        position = 0
        while position < len(source):
            match = _TOKEN_RE.match(source, position)
            if match is None:
                raise ExpressionError(source, f"unexpected character {source[position]!r}", position)
            kind = match.lastgroup or ""
            if kind != "ws":
                tokens.append(_Token(kind, match.group(), position))
            position = match.end()
        return tokens

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _advance(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ExpressionError(self.source, "unexpected end of expression", len(self.source))
        self.index += 1
        return token

    def _expect(self, value: str) -> None:
        token = self._advance()
        if token.value != value:
            raise ExpressionError(self.source, f"expected {value!r}, found {token.value!r}", token.position)

    def _keyword(self, token: _Token | None) -> str | None:
        if token is None or token.kind != "name":
            return None
        if token.value in _INFIX_FUNCTIONS:
            return token.value
        return _KEYWORD_OPERATORS.get(token.value.lower())

    def parse(self) -> _Node:
        if not self.tokens:
            raise ExpressionError(self.source, "expression is empty")
        node = self._or()
        token = self._peek()
        if token is not None:
            raise ExpressionError(self.source, f"unexpected token {token.value!r}", token.position)
        return node

    def _or(self) -> _Node:
        node = self._and()
        while self._keyword(self._peek()) == "OR":
            self._advance()
            node = _Logical("OR", node, self._and())
        return node

    def _and(self) -> _Node:
        node = self._not()
        while self._keyword(self._peek()) == "AND":
            self._advance()
            node = _Logical("AND", node, self._not())
        return node

    def _not(self) -> _Node:
        if self._keyword(self._peek()) == "NOT":
            self._advance()
            return _Not(self._not())
        return self._comparison()

    def _comparison(self) -> _Node:
        left = self._operand()
        token = self._peek()
        operator = token.value if token is not None and token.kind == "op" else self._keyword(token)
        if operator in _COMPARISONS:
            self._advance()
            return _Comparison(operator, left, self._operand())
        return left

    def _operand(self) -> _Node:
        token = self._advance()
        if token.kind == "number":
            number = float(token.value)
            return _Literal(int(number) if number.is_integer() and "." not in token.value else number)
        if token.kind == "string":
            return _Literal(_unquote(token.value))
        if token.value == "(":
            node = self._or()
            self._expect(")")
            return node
        if token.value == "[":
            return _ListLiteral(self._arguments("]"))
        if token.kind == "name":
            name = token.value
            if name.lower() in _LITERALS:
                return _Literal(_LITERALS[name.lower()])
            next_token = self._peek()
            if next_token is not None and next_token.value == "(":
                if name not in FUNCTIONS:
                    raise ExpressionError(self.source, f"unknown function {name!r}", token.position)
                self._advance()
                return _Call(name, self._arguments(")"))
            if self._keyword(token) is not None:
                raise ExpressionError(self.source, f"operator {name!r} is missing an operand", token.position)
            return _Variable(name)
        raise ExpressionError(self.source, f"unexpected token {token.value!r}", token.position)

    def _arguments(self, closing: str) -> tuple[_Node, ...]:
        args: list[_Node] = []
        token = self._peek()
        if token is not None and token.value == closing:
            self._advance()
            return ()
        while True:
            args.append(self._or())
            token = self._advance()
            if token.value == closing:
                return tuple(args)
            if token.value != ",":
                raise ExpressionError(self.source, f"expected ',' or {closing!r}", token.position)


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class Expression:
    """A parsed condition expression.

    Attributes:
        source: The original expression text.
    """

    __slots__ = ("_root", "source")

    def __init__(self, source: str, root: _Node) -> None:
        self.source = source
        self._root = root

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"

    @property
    def variables(self) -> set[str]:
        """Dotted paths the expression reads from the context."""
        return self._root.variables()

    def evaluate(self, data: Mapping[str, Any]) -> Any:
        """Evaluate the expression against a context mapping.

        Args:
            data: The context visible to the step.

        Returns:
            The expression value. Condition steps use its truthiness.

        Raises:
            ExpressionError: If the operands cannot be combined (for example
                ordering a string against a number).
        """
        try:
            return self._root.evaluate(data)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise ExpressionError(self.source, str(e)) from e


def parse_expression(source: str) -> Expression:
    """Parse ``source`` into an :class:`Expression`.

    Raises:
        ExpressionError: If the expression is malformed or calls an unknown function.
    """
    return Expression(source, _Parser(source).parse())
