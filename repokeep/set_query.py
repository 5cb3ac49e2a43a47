"""
Set expression parser for repokeep.

Combines named repository sets with binary operators, evaluated strictly
left to right. Parentheses group.

Grammar:
    expr    := operand (operator operand)*
    operand := name | '@' computed | '(' expr ')'
    operator:= '+' | '-' | '^' | '&'

Operators:
    +   union
    -   difference
    ^   symmetric difference
    &   intersection

A ``-`` between two name characters is part of the name, so
``bad-2026-10-18`` addresses a dated snapshot while ``bad - good`` is a
difference.

Examples:
    @all
    good + bad
    @all - @dirty
    (bad ^ good) & @unreleased
"""

from dataclasses import dataclass
import re
from typing import Callable, FrozenSet, List, Tuple, Union

from .errors import ParseError

OPERATORS = {
    '+': lambda a, b: a | b,
    '-': lambda a, b: a - b,
    '^': lambda a, b: a ^ b,
    '&': lambda a, b: a & b,
}

_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)                                     |
    (?P<computed>@[A-Za-z_][A-Za-z0-9_]*)           |  # @dirty
    (?P<name>[A-Za-z0-9_][A-Za-z0-9_.]*(?:-[A-Za-z0-9_.]+)*) |  # bad-2026-10-18
    (?P<op>[-+^&])                                  |
    (?P<lparen>\()                                  |
    (?P<rparen>\))
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    position: int


@dataclass(frozen=True)
class SetName:
    """A persisted set."""
    name: str


@dataclass(frozen=True)
class ComputedSet:
    """A set derived from live repository state, e.g. ``@dirty``."""
    name: str


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: 'Node'
    right: 'Node'


Node = Union[SetName, ComputedSet, BinaryOp]


def tokenize(expression: str) -> List[Token]:
    """
    Split an expression into tokens.

    Raises:
        ParseError: a character that starts no token
    """
    tokens = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN.match(expression, pos)
        if not match:
            raise ParseError(f"Unexpected character {expression[pos]!r}", expression, pos)
        kind = match.lastgroup
        if kind != 'ws':
            tokens.append(Token(kind, match.group(0), pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.pos = 0

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _error(self, message: str, token=None) -> ParseError:
        position = token.position if token else len(self.expression)
        return ParseError(message, self.expression, position)

    def parse(self) -> Node:
        if not self.tokens:
            raise ParseError("Empty set expression", self.expression)
        node = self._expr()
        token = self._peek()
        if token is not None:
            raise self._error(f"Unexpected {token.value!r}", token)
        return node

    def _expr(self) -> Node:
        node = self._operand()
        while True:
            token = self._peek()
            if token is None or token.kind != 'op':
                return node
            self.pos += 1
            node = BinaryOp(token.value, node, self._operand())

    def _operand(self) -> Node:
        token = self._peek()
        if token is None:
            raise self._error("Expected a set name")
        self.pos += 1

        if token.kind == 'name':
            return SetName(token.value)
        if token.kind == 'computed':
            return ComputedSet(token.value[1:])
        if token.kind == 'lparen':
            node = self._expr()
            closing = self._peek()
            if closing is None or closing.kind != 'rparen':
                raise self._error("Unbalanced '('", token)
            self.pos += 1
            return node

        raise self._error(f"Expected a set name, got {token.value!r}", token)


def parse(expression: str) -> Node:
    """
    Parse a set expression.

    Raises:
        ParseError: malformed expression
    """
    return _Parser(expression).parse()


def references(node: Node) -> Tuple[List[str], List[str]]:
    """Persisted and computed set names used by ``node``, in order."""
    if isinstance(node, SetName):
        return [node.name], []
    if isinstance(node, ComputedSet):
        return [], [node.name]
    left_named, left_computed = references(node.left)
    right_named, right_computed = references(node.right)
    return left_named + right_named, left_computed + right_computed


def evaluate(
    node: Node,
    lookup: Callable[[Node], FrozenSet[str]],
) -> FrozenSet[str]:
    """
    Evaluate a parsed expression.

    Args:
        node: Parsed expression
        lookup: Returns the members of a SetName or ComputedSet leaf
    """
    if isinstance(node, BinaryOp):
        left = evaluate(node.left, lookup)
        right = evaluate(node.right, lookup)
        return frozenset(OPERATORS[node.op](left, right))
    return frozenset(lookup(node))
