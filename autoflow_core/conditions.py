"""
Condition Evaluator

Evaluates the restricted boolean expressions end users type into condition
nodes, e.g. ``{rating} >= 4 and {text} contains "refund"``.

Expressions are tokenized and parsed by hand into a small tree; nothing is
ever handed to ``eval`` or the Python compiler, and the only data reachable
from an expression is the variables and event fields passed in. Every
failure (syntax, unknown placeholder, non-numeric ordering, size limits)
makes the whole expression false and records a diagnostic.
"""

import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import structlog

from .errors import EvaluationError
from .variables import VariableStore

logger = structlog.get_logger(__name__)


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<placeholder>\{[^\W\d][\w.]*\})
    | (?P<number>-?\d+(?:\.\d+)?(?![\w.:\-]))
    | (?P<op>==|!=|>=|<=|&&|\|\||=|>|<|!|\(|\))
    | (?P<word>\w[\w.\-:]*)
    """,
    re.VERBOSE,
)

_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")

_KEYWORDS = {"and", "or", "not", "contains", "startswith", "endswith"}

_ORDERING: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}

_COMPARISONS = {"==", "=", "!=", ">", "<", ">=", "<=", "contains", "startswith", "endswith"}

_FALSY = {"", "false", "0", "no", "off"}


@dataclass
class ConditionDiagnostic:
    """Why an expression evaluated to false without being false."""

    expression: str
    message: str
    position: Optional[int] = None

    def __str__(self) -> str:
        where = f" at {self.position}" if self.position is not None else ""
        return f"{self.message}{where} in {self.expression!r}"


# =============================================================================
# Tokens and tree
# =============================================================================


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


@dataclass(frozen=True)
class _Literal:
    value: str


@dataclass(frozen=True)
class _Ref:
    name: str
    # Bare words fall back to their own text when nothing is bound to them
    bare: bool


@dataclass(frozen=True)
class _Compare:
    op: str
    left: Union[_Literal, _Ref]
    right: Union[_Literal, _Ref]
    negate: bool = False


@dataclass(frozen=True)
class _Truthy:
    operand: Union[_Literal, _Ref]


@dataclass(frozen=True)
class _Not:
    operand: Any


@dataclass(frozen=True)
class _And:
    parts: Tuple[Any, ...]


@dataclass(frozen=True)
class _Or:
    parts: Tuple[Any, ...]


def _tokenize(text: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise EvaluationError(f"unexpected character {text[pos]!r}", pos)
        kind = match.lastgroup
        value = match.group()
        if kind == "word" and value.lower() in _KEYWORDS:
            kind, value = "keyword", value.lower()
        if kind != "ws":
            tokens.append(_Token(kind, value, pos))
        pos = match.end()
    tokens.append(_Token("eof", "", len(text)))
    return tokens


class _Parser:
    def __init__(self, tokens: List[_Token], max_depth: int):
        self.tokens = tokens
        self.index = 0
        self.max_depth = max_depth

    def parse(self) -> Any:
        tree = self._expr(0)
        token = self._peek()
        if token.kind != "eof":
            raise EvaluationError(f"unexpected {token.value!r}", token.pos)
        return tree

    def _peek(self, offset: int = 0) -> _Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def _advance(self) -> _Token:
        token = self._peek()
        self.index += 1
        return token

    def _accept(self, *values: str) -> bool:
        token = self._peek()
        if token.kind in ("keyword", "op") and token.value in values:
            self.index += 1
            return True
        return False

    def _expr(self, depth: int) -> Any:
        if depth > self.max_depth:
            raise EvaluationError("expression is nested too deeply", self._peek().pos)
        parts = [self._and(depth)]
        while self._accept("or", "||"):
            parts.append(self._and(depth))
        return parts[0] if len(parts) == 1 else _Or(tuple(parts))

    def _and(self, depth: int) -> Any:
        parts = [self._unary(depth)]
        while self._accept("and", "&&"):
            parts.append(self._unary(depth))
        return parts[0] if len(parts) == 1 else _And(tuple(parts))

    def _unary(self, depth: int) -> Any:
        if depth > self.max_depth:
            raise EvaluationError("expression is nested too deeply", self._peek().pos)
        if self._accept("not", "!"):
            return _Not(self._unary(depth + 1))
        return self._primary(depth)

    def _primary(self, depth: int) -> Any:
        if self._accept("("):
            tree = self._expr(depth + 1)
            if not self._accept(")"):
                token = self._peek()
                raise EvaluationError("missing closing parenthesis", token.pos)
            return tree

        left = self._operand()
        token = self._peek()

        negate = False
        if token.kind == "keyword" and token.value == "not" and self._peek(1).value == "contains":
            self.index += 2
            op, negate = "contains", True
        elif token.kind in ("op", "keyword") and token.value in _COMPARISONS:
            self.index += 1
            op = "==" if token.value == "=" else token.value
        else:
            return _Truthy(left)

        return _Compare(op, left, self._operand(), negate)

    def _operand(self) -> Union[_Literal, _Ref]:
        token = self._advance()
        if token.kind == "string":
            return _Literal(re.sub(r"\\(.)", r"\1", token.value[1:-1]))
        if token.kind == "number":
            return _Literal(token.value)
        if token.kind == "placeholder":
            return _Ref(token.value[1:-1], bare=False)
        if token.kind == "word":
            return _Ref(token.value, bare=True)
        found = repr(token.value) if token.value else "end of expression"
        raise EvaluationError(f"expected a value, found {found}", token.pos)


@lru_cache(maxsize=512)
def _parse(expression: str, max_length: int, max_depth: int) -> Any:
    if not expression or not expression.strip():
        raise EvaluationError("expression is empty")
    if len(expression) > max_length:
        raise EvaluationError(f"expression is longer than {max_length} characters")
    return _Parser(_tokenize(expression), max_depth).parse()


# =============================================================================
# Evaluation
# =============================================================================


def _as_number(value: str) -> Optional[float]:
    text = value.strip()
    if _NUMBER_RE.match(text):
        return float(text)
    return None


class _Scope:
    def __init__(self, variables: Mapping[str, str], context: Mapping[str, str]):
        self.variables = variables
        self.context = context

    def value(self, operand: Union[_Literal, _Ref]) -> str:
        if isinstance(operand, _Literal):
            return operand.value
        if operand.name in self.variables:
            return str(self.variables[operand.name])
        if operand.name in self.context:
            return str(self.context[operand.name])
        if operand.bare:
            return operand.name
        raise EvaluationError(f"unknown placeholder {{{operand.name}}}")


def _compare(node: _Compare, scope: _Scope) -> bool:
    left = scope.value(node.left)
    right = scope.value(node.right)
    op = node.op

    if op in ("==", "!="):
        left_num, right_num = _as_number(left), _as_number(right)
        if left_num is not None and right_num is not None:
            equal = left_num == right_num
        else:
            equal = left == right
        result = equal if op == "==" else not equal
    elif op in _ORDERING:
        left_num, right_num = _as_number(left), _as_number(right)
        if left_num is None or right_num is None:
            raise EvaluationError(f"cannot compare non-numeric values {left!r} {op} {right!r}")
        result = _ORDERING[op](left_num, right_num)
    elif op == "contains":
        result = right.casefold() in left.casefold()
    elif op == "startswith":
        result = left.casefold().startswith(right.casefold())
    elif op == "endswith":
        result = left.casefold().endswith(right.casefold())
    else:
        raise EvaluationError(f"unsupported operator {op}")

    return not result if node.negate else result


def _evaluate(node: Any, scope: _Scope) -> bool:
    if isinstance(node, _Compare):
        return _compare(node, scope)
    if isinstance(node, _Truthy):
        return scope.value(node.operand).strip().casefold() not in _FALSY
    if isinstance(node, _Not):
        return not _evaluate(node.operand, scope)
    if isinstance(node, _And):
        return all(_evaluate(part, scope) for part in node.parts)
    if isinstance(node, _Or):
        return any(_evaluate(part, scope) for part in node.parts)
    raise EvaluationError(f"unknown expression node {type(node).__name__}")


class ConditionEvaluator:
    """
    Fail-closed evaluator for condition node expressions.

    Supported:
    - Comparison: ``==`` (or ``=``), ``!=``, ``>``, ``<``, ``>=``, ``<=``
    - Text: ``contains``, ``not contains``, ``startswith``, ``endswith``
      (case-insensitive)
    - Logic: ``and``/``&&``, ``or``/``||``, ``not``/``!``, parentheses
    - Operands: quoted strings, numbers, ``{placeholders}``, bare words
    """

    def __init__(self, max_length: int = 1000, max_depth: int = 32):
        self.max_length = max_length
        self.max_depth = max_depth

    @classmethod
    def from_settings(cls, config: Any) -> "ConditionEvaluator":
        return cls(
            max_length=config.condition_max_length,
            max_depth=config.condition_max_depth,
        )

    def check(self, expression: str) -> Optional[str]:
        """Return a syntax problem, or None when the expression parses."""
        try:
            _parse(expression or "", self.max_length, self.max_depth)
        except EvaluationError as exc:
            return exc.message
        return None

    def evaluate(
        self,
        expression: str,
        variables: Union[Mapping[str, str], VariableStore, None],
        event_context: Optional[Mapping[str, str]] = None,
        diagnostics: Optional[List[ConditionDiagnostic]] = None,
    ) -> bool:
        """
        Evaluate ``expression``.

        Args:
            expression: Expression text from the condition node
            variables: Run variables (looked up first)
            event_context: Trigger event fields
            diagnostics: Receives a diagnostic when evaluation fails

        Returns:
            The expression's value, or False when it cannot be evaluated
        """
        if isinstance(variables, VariableStore):
            variables = variables.snapshot()

        try:
            tree = _parse(expression or "", self.max_length, self.max_depth)
            return _evaluate(tree, _Scope(variables or {}, event_context or {}))
        except EvaluationError as exc:
            self._record(expression, exc.message, exc.position, diagnostics)
        except (RecursionError, ValueError, TypeError) as exc:
            self._record(expression, f"evaluation failed: {exc}", None, diagnostics)
        return False

    def _record(
        self,
        expression: str,
        message: str,
        position: Optional[int],
        diagnostics: Optional[List[ConditionDiagnostic]],
    ) -> None:
        logger.warning(
            "condition_evaluation_failed",
            expression=expression,
            reason=message,
            position=position,
        )
        if diagnostics is not None:
            diagnostics.append(ConditionDiagnostic(expression or "", message, position))
