"""Boolean tag-filter expressions over message flags.

Filter strings select messages by their flags (IMAP keywords such as
``classified`` or ``interested``). The grammar, lowest to highest precedence:

    or_expr  := and_expr (OR and_expr)*
    and_expr := not_expr (AND not_expr)*
    not_expr := NOT not_expr | atom
    atom     := '(' or_expr ')' | TAGNAME

Keywords are matched case-insensitively; tag names are case-sensitive.
``AND`` and ``OR`` are left-associative.

Usage:
    from mailpool_mcp.engine.tag_filter import filter_messages, parse_filter

    expr = parse_filter("(interested OR bounced) AND NOT archived")
    expr.evaluate({"interested"})  # True
    hits = filter_messages(messages, "classified AND NOT none")
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import regex

from mailpool_mcp.core.errors import FilterSyntaxError

if TYPE_CHECKING:
    from mailpool_mcp.mail.models import Message

KEYWORDS = frozenset({"AND", "OR", "NOT"})

# Parens are always their own token; anything else up to whitespace or a paren is a word
TOKEN_PATTERN = regex.compile(r"[()]|[^\s()]+")

M = TypeVar("M", bound="Message")


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Token:
    """A lexical token.

    Attributes:
        kind: 'lparen', 'rparen', 'and', 'or', 'not' or 'tag'
        text: Token text as written
        position: Index of the token in the token sequence
    """

    kind: str
    text: str
    position: int


def tokenize(expression: str) -> list[Token]:
    """Split a filter string into tokens."""
    tokens = []
    for position, text in enumerate(TOKEN_PATTERN.findall(expression)):
        if text == "(":
            kind = "lparen"
        elif text == ")":
            kind = "rparen"
        elif text.upper() in KEYWORDS:
            kind = text.lower()
        else:
            kind = "tag"
        tokens.append(Token(kind=kind, text=text, position=position))
    return tokens


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Tag:
    """Leaf node: true iff the flag set contains ``name``."""

    name: str

    def evaluate(self, flags: Iterable[str]) -> bool:
        return self.name in _as_set(flags)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class And:
    left: FilterExpression
    right: FilterExpression

    def evaluate(self, flags: Iterable[str]) -> bool:
        flag_set = _as_set(flags)
        return self.left.evaluate(flag_set) and self.right.evaluate(flag_set)

    def __str__(self) -> str:
        return f"({self.left} AND {self.right})"


@dataclass(frozen=True, slots=True)
class Or:
    left: FilterExpression
    right: FilterExpression

    def evaluate(self, flags: Iterable[str]) -> bool:
        flag_set = _as_set(flags)
        return self.left.evaluate(flag_set) or self.right.evaluate(flag_set)

    def __str__(self) -> str:
        return f"({self.left} OR {self.right})"


@dataclass(frozen=True, slots=True)
class Not:
    operand: FilterExpression

    def evaluate(self, flags: Iterable[str]) -> bool:
        return not self.operand.evaluate(flags)

    def __str__(self) -> str:
        return f"NOT {self.operand}"


FilterExpression = Tag | And | Or | Not


def _as_set(flags: Iterable[str]) -> frozenset[str] | set[str]:
    if isinstance(flags, (set, frozenset)):
        return flags
    return frozenset(flags)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class FilterParser:
    """Recursive-descent parser over a token list.

    One instance parses one expression; the cursor is the only state.
    """

    def __init__(self, expression: str):
        self._expression = expression
        self._tokens = tokenize(expression)
        self._index = 0

    def parse(self) -> FilterExpression:
        """Parse the whole expression.

        Raises:
            FilterSyntaxError: On a missing atom, an unclosed parenthesis
                or trailing tokens
        """
        expr = self._parse_or()
        token = self._peek()
        if token is not None:
            raise self._error(f"unexpected {token.text!r} after complete expression", token)
        return expr

    def _peek(self) -> Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, kind: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == kind:
            self._index += 1
            return True
        return False

    def _parse_or(self) -> FilterExpression:
        expr = self._parse_and()
        while self._accept("or"):
            expr = Or(expr, self._parse_and())
        return expr

    def _parse_and(self) -> FilterExpression:
        expr = self._parse_not()
        while self._accept("and"):
            expr = And(expr, self._parse_not())
        return expr

    def _parse_not(self) -> FilterExpression:
        if self._accept("not"):
            return Not(self._parse_not())
        return self._parse_atom()

    def _parse_atom(self) -> FilterExpression:
        token = self._peek()
        if token is None:
            raise self._error("expected a tag name or '(' but the expression ended", None)

        if token.kind == "lparen":
            self._advance()
            expr = self._parse_or()
            if not self._accept("rparen"):
                closing = self._peek()
                if closing is None:
                    raise self._error(
                        f"'(' at token {token.position} is never closed", None
                    )
                raise self._error(f"expected ')' but found {closing.text!r}", closing)
            return expr

        if token.kind == "tag":
            self._advance()
            return Tag(token.text)

        raise self._error(f"expected a tag name or '(' but found {token.text!r}", token)

    def _error(self, detail: str, token: Token | None) -> FilterSyntaxError:
        where = f"token {token.position}" if token is not None else "end of input"
        return FilterSyntaxError(
            f"Invalid tag filter {self._expression!r}: {detail} (at {where})",
            expression=self._expression,
            position=token.position if token is not None else None,
            token=token.text if token is not None else None,
        )


def parse_filter(expression: str) -> FilterExpression:
    """Parse a filter string into an expression tree.

    Raises:
        FilterSyntaxError: If the expression is malformed
    """
    return FilterParser(expression).parse()


def evaluate(expression: FilterExpression, flags: Iterable[str]) -> bool:
    """Evaluate a parsed expression against a flag set."""
    return expression.evaluate(flags)


def filter_messages(messages: Sequence[M], expression: str | FilterExpression) -> list[M]:
    """Keep the messages whose flags satisfy the expression.

    Args:
        messages: Messages to filter (order is preserved)
        expression: Filter string or an already parsed expression

    Raises:
        FilterSyntaxError: If a string expression is malformed
    """
    expr = parse_filter(expression) if isinstance(expression, str) else expression
    return [m for m in messages if expr.evaluate(m.flags)]
