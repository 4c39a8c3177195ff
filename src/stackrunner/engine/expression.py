"""Restricted boolean expressions used by command catalogue conditions.

Grammar, lowest precedence first::

    or      := and ("||" and)*
    and     := eq ("&&" eq)*
    eq      := cmp (("==" | "===" | "!=" | "!==") cmp)*
    cmp     := unary (("<" | "<=" | ">" | ">=") unary)*
    unary   := "!" unary | "-" NUMBER | primary
    primary := NUMBER | STRING | true | false | null | undefined
             | PATH | "(" or ")"

``PATH`` is an identifier optionally followed by ``.name`` segments. There are
no calls, assignments or arithmetic. Evaluation semantics follow the
JavaScript conditions the catalogue was written for: ``&&``/``||`` short
circuit and yield operand values, and the final result is truthiness-cast.
"""

from __future__ import annotations

import logging as py_logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

logger = py_logging.getLogger(__name__)


class ExpressionError(Exception):
    """Raised for malformed expressions and unresolvable references."""


class _Undefined:
    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

_STRIPPED_ROOTS = {"config", "currentConfig"}
_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": UNDEFINED,
}

TOKEN_RE = re.compile(
    r"""
    (?P<NUMBER>\d+(?:\.\d+)?)
  | (?P<STRING>"(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')
  | (?P<OP>===|!==|==|!=|<=|>=|&&|\|\||[<>!()-])
  | (?P<PATH>[A-Za-z_$][A-Za-z0-9_$]*(?:\s*\.\s*[A-Za-z_$][A-Za-z0-9_$]*)*)
  | (?P<SKIP>\s+)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Path:
    parts: tuple[str, ...]


@dataclass(frozen=True)
class Not:
    operand: Expr


@dataclass(frozen=True)
class Binary:
    left: Expr
    op: str
    right: Expr


Expr = Literal | Path | Not | Binary


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(source):
        match = TOKEN_RE.match(source, pos)
        if match is None:  # pragma: no cover - MISMATCH catches everything
            raise ExpressionError(f"Tokenizer stalled at {pos}")
        kind = match.lastgroup or "MISMATCH"
        value = match.group(0)
        if kind == "MISMATCH":
            raise ExpressionError(f"Unexpected character {value!r} at {pos}")
        if kind == "PATH":
            tokens.append(Token(kind, re.sub(r"\s+", "", value), pos))
        elif kind != "SKIP":
            tokens.append(Token(kind, value, pos))
        pos = match.end()
    tokens.append(Token("EOF", "", pos))
    return tokens


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    out: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            index += 1
            out.append(_ESCAPES.get(body[index], body[index]))
        else:
            out.append(char)
        index += 1
    return "".join(out)


class Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.i = 0

    def cur(self) -> Token:
        return self.tokens[self.i]

    def match(self, kind: str, *values: str) -> Token | None:
        token = self.cur()
        if token.kind != kind:
            return None
        if values and token.value not in values:
            return None
        self.i += 1
        return token

    def expect(self, kind: str, value: str) -> Token:
        token = self.match(kind, value)
        if token is None:
            current = self.cur()
            raise ExpressionError(f"Expected {value!r} at {current.pos}, got {current.kind}:{current.value!r}")
        return token

    def parse(self) -> Expr:
        expr = self.parse_or()
        token = self.cur()
        if token.kind != "EOF":
            raise ExpressionError(f"Unexpected trailing token at {token.pos}: {token.value!r}")
        return expr

    def parse_or(self) -> Expr:
        expr = self.parse_and()
        while self.match("OP", "||"):
            expr = Binary(expr, "||", self.parse_and())
        return expr

    def parse_and(self) -> Expr:
        expr = self.parse_eq()
        while self.match("OP", "&&"):
            expr = Binary(expr, "&&", self.parse_eq())
        return expr

    def parse_eq(self) -> Expr:
        expr = self.parse_cmp()
        while True:
            token = self.match("OP", "==", "===", "!=", "!==")
            if token is None:
                return expr
            expr = Binary(expr, token.value, self.parse_cmp())

    def parse_cmp(self) -> Expr:
        expr = self.parse_unary()
        while True:
            token = self.match("OP", "<", "<=", ">", ">=")
            if token is None:
                return expr
            expr = Binary(expr, token.value, self.parse_unary())

    def parse_unary(self) -> Expr:
        if self.match("OP", "!"):
            return Not(self.parse_unary())
        if self.match("OP", "-"):
            token = self.cur()
            if not self.match("NUMBER"):
                raise ExpressionError(f"Expected a number after '-' at {token.pos}")
            return Literal(-_number(token.value))
        return self.parse_primary()

    def parse_primary(self) -> Expr:
        token = self.cur()
        if self.match("NUMBER"):
            return Literal(_number(token.value))
        if self.match("STRING"):
            return Literal(_unquote(token.value))
        if self.match("PATH"):
            if token.value in _LITERALS:
                return Literal(_LITERALS[token.value])
            parts = tuple(token.value.split("."))
            if len(parts) > 1 and parts[0] in _STRIPPED_ROOTS:
                parts = parts[1:]
            return Path(parts)
        if self.match("OP", "("):
            expr = self.parse_or()
            self.expect("OP", ")")
            return expr
        raise ExpressionError(f"Unexpected token at {token.pos}: {token.kind}:{token.value!r}")


def _number(raw: str) -> int | float:
    return float(raw) if "." in raw else int(raw)


@lru_cache(maxsize=512)
def parse_expression(source: str) -> Expr:
    return Parser(tokenize(source)).parse()


def is_truthy(value: Any) -> bool:
    if value is None or value is UNDEFINED or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def strict_equal(left: Any, right: Any) -> bool:
    if left is UNDEFINED or right is UNDEFINED:
        return left is right
    if left is None or right is None:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (Mapping, list)) or isinstance(right, (Mapping, list)):
        return left is right
    return type(left) is type(right) and left == right


def _to_number(value: Any) -> float | None:
    if value is None:
        return 0.0
    if value is UNDEFINED:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return None
    return None


def loose_equal(left: Any, right: Any) -> bool:
    nullish = (None, UNDEFINED)
    if left in nullish or right in nullish:
        return left in nullish and right in nullish
    if strict_equal(left, right):
        return True
    scalar = (bool, int, float, str)
    if isinstance(left, scalar) and isinstance(right, scalar):
        if isinstance(left, str) and isinstance(right, str):
            return False
        left_number = _to_number(left)
        right_number = _to_number(right)
        return left_number is not None and right_number is not None and left_number == right_number
    return False


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        pair: tuple[Any, Any] = (left, right)
    else:
        left_number = _to_number(left)
        right_number = _to_number(right)
        if left_number is None or right_number is None:
            return False
        pair = (left_number, right_number)
    if op == "<":
        return pair[0] < pair[1]
    if op == "<=":
        return pair[0] <= pair[1]
    if op == ">":
        return pair[0] > pair[1]
    return pair[0] >= pair[1]


def _resolve(path: Path, context: Mapping[str, Any]) -> Any:
    root = path.parts[0]
    if root not in context:
        raise ExpressionError(f"{root} is not defined")
    value = context[root]
    for part in path.parts[1:]:
        if isinstance(value, Mapping):
            value = value.get(part, UNDEFINED)
        elif value is None or value is UNDEFINED:
            raise ExpressionError(f"Cannot read property {part!r} of {value!r}")
        else:
            value = UNDEFINED
    return value


def evaluate_node(node: Expr, context: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Path):
        return _resolve(node, context)
    if isinstance(node, Not):
        return not is_truthy(evaluate_node(node.operand, context))
    left = evaluate_node(node.left, context)
    if node.op == "&&":
        return evaluate_node(node.right, context) if is_truthy(left) else left
    if node.op == "||":
        return left if is_truthy(left) else evaluate_node(node.right, context)
    right = evaluate_node(node.right, context)
    if node.op == "===":
        return strict_equal(left, right)
    if node.op == "!==":
        return not strict_equal(left, right)
    if node.op == "==":
        return loose_equal(left, right)
    if node.op == "!=":
        return not loose_equal(left, right)
    return _compare(node.op, left, right)


def evaluate_expression(source: str, context: Mapping[str, Any]) -> bool:
    """Evaluate ``source`` against ``context``; any failure evaluates to ``False``."""
    try:
        return is_truthy(evaluate_node(parse_expression(source), context))
    except (ExpressionError, RecursionError, TypeError) as exc:
        logger.debug("Condition evaluated to false expression=%r reason=%s", source, exc)
        return False
