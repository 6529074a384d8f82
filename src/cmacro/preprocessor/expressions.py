"""
Constant-Expression Evaluator
=============================

This module evaluates the integer constant expressions that follow
#if and #elif, after macro expansion.

Supported Operations
--------------------
**Arithmetic:** + - * / % and unary + -

**Bitwise:** & | ^ << >> and unary ~

**Comparison:** < <= > >= == !=

**Logical:** && || ! and the conditional operator ?:

**Special:** defined NAME, defined(NAME)

Expression Grammar
------------------
Recursive descent, from lowest to highest precedence:

1. Conditional: ?:
2. Logical OR: ||
3. Logical AND: &&
4. Bitwise OR: |
5. Bitwise XOR: ^
6. Bitwise AND: &
7. Equality: == !=
8. Relational: < <= > >=
9. Shift: << >>
10. Additive: + -
11. Multiplicative: * / %
12. Unary: + - ! ~
13. Primary: integer, character constant, identifier, (expression)

Value Model
-----------
Every value is a 64-bit integer that is either signed or unsigned.
Signed values wrap in two's complement. A literal is unsigned when it
has a U suffix or does not fit in a signed 64-bit integer. When either
operand of an arithmetic, bitwise or comparison operator is unsigned,
both are converted to unsigned first, so

    #if -1 > 0u      is true

Identifiers left after macro expansion evaluate to 0.

The right side of && and || and the unselected side of ?: are parsed
but not evaluated, so '0 && 1/0' is 0 while '0 && )' is still an error.

Example Usage
-------------
>>> from cmacro.preprocessor.expressions import evaluate_expression
>>> from cmacro.preprocessor.lexer import lex
>>> evaluate_expression(lex("((1ULL << 4) - 1) & ~((1ULL << 2) - 1)")).value
12
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from cmacro.errors import SourceLocation
from cmacro.preprocessor.errors import (
    DivisionByZeroError,
    ExpressionError,
    ExpressionSyntaxError,
)
from cmacro.preprocessor.lexer import PPToken, PPTokenType

logger = logging.getLogger(__name__)

INT_BITS = 64
UINT_MASK = (1 << INT_BITS) - 1
INT_MAX = (1 << (INT_BITS - 1)) - 1

# Parenthesized groups nest no deeper than this
MAX_PAREN_DEPTH = 32

_COMPARISON_OPERATORS = frozenset(("==", "!=", "<", "<=", ">", ">="))

_INTEGER_RE = re.compile(
    r"^(?P<digits>0[xX][0-9a-fA-F]+|0[bB][01]+|[0-9]+)(?P<suffix>[uUlL]*)$"
)

# u, l, ll in either order, any case for u, matching case for ll
_VALID_SUFFIXES = frozenset(
    combo
    for u in ("", "u", "U")
    for size in ("", "l", "L", "ll", "LL")
    for combo in (u + size, size + u)
)

_CHAR_ESCAPES = {
    "n": 10,
    "t": 9,
    "r": 13,
    "a": 7,
    "b": 8,
    "f": 12,
    "v": 11,
    "\\": 92,
    "'": 39,
    '"': 34,
    "?": 63,
}


# =============================================================================
# Values
# =============================================================================

@dataclass(frozen=True)
class PPValue:
    """
    A preprocessor integer value.

    Attributes:
        value: The numeric value, already wrapped into range
        unsigned: True for unsigned values
    """
    value: int
    unsigned: bool = False

    @classmethod
    def of(cls, value: int, unsigned: bool = False) -> "PPValue":
        """Wrap `value` into the 64-bit range of the given signedness."""
        value &= UINT_MASK
        if not unsigned and value > INT_MAX:
            value -= 1 << INT_BITS
        return cls(value, unsigned)

    @property
    def truthy(self) -> bool:
        return self.value != 0

    def as_unsigned(self) -> int:
        return self.value & UINT_MASK

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"{self.value}u" if self.unsigned else str(self.value)


TRUE = PPValue(1)
FALSE = PPValue(0)


# =============================================================================
# 'defined' Pre-pass
# =============================================================================

def resolve_defined(
    tokens: list[PPToken],
    is_defined: Callable[[str], bool],
) -> list[PPToken]:
    """
    Replace 'defined NAME' and 'defined ( NAME )' with 1 or 0.

    This runs before macro expansion so that the operand of 'defined'
    is never expanded.

    Raises:
        ExpressionSyntaxError: If 'defined' is not followed by a name
    """
    result: list[PPToken] = []
    pos = 0

    def next_significant(start: int) -> int:
        while start < len(tokens) and tokens[start].is_layout:
            start += 1
        return start

    while pos < len(tokens):
        token = tokens[pos]
        if not token.is_identifier("defined"):
            result.append(token)
            pos += 1
            continue

        pos = next_significant(pos + 1)
        parenthesized = pos < len(tokens) and tokens[pos].is_punct("(")
        if parenthesized:
            pos = next_significant(pos + 1)

        if pos >= len(tokens) or not tokens[pos].is_identifier():
            raise ExpressionSyntaxError(
                "operator 'defined' requires an identifier",
                token.location,
            )
        name = tokens[pos].text
        pos += 1

        if parenthesized:
            pos = next_significant(pos)
            if pos >= len(tokens) or not tokens[pos].is_punct(")"):
                raise ExpressionSyntaxError(
                    "missing ')' after 'defined'",
                    token.location,
                )
            pos += 1

        result.append(
            PPToken(
                PPTokenType.NUMBER,
                "1" if is_defined(name) else "0",
                token.line,
                token.column,
                token.filename,
            )
        )

    return result


# =============================================================================
# Expression Evaluator
# =============================================================================

class ExpressionEvaluator:
    """
    Evaluates #if expressions using recursive descent.

    The parser evaluates while parsing; each parse method returns a
    PPValue. A `_live` flag is cleared while parsing the side of a
    short-circuit operator that is not evaluated, so that side is
    checked for syntax but cannot raise division by zero.

    Usage:
        evaluator = ExpressionEvaluator(is_defined=table.is_defined)
        if evaluator.evaluate(tokens).truthy:
            ...

    Attributes:
        is_defined: Answers 'defined NAME' left over after the pre-pass
        on_undefined: Called with each identifier that evaluates to 0
    """

    def __init__(
        self,
        is_defined: Optional[Callable[[str], bool]] = None,
        on_undefined: Optional[Callable[[PPToken], None]] = None,
    ):
        self.is_defined = is_defined or (lambda name: False)
        self.on_undefined = on_undefined
        self._tokens: list[PPToken] = []
        self._pos = 0
        self._live = True
        self._depth = 0
        self._location: Optional[SourceLocation] = None
        self._source_line: Optional[str] = None

    # =========================================================================
    # Main Evaluation Interface
    # =========================================================================

    def evaluate(
        self,
        tokens: list[PPToken],
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ) -> PPValue:
        """
        Evaluate an expression from a list of tokens.

        Args:
            tokens: The expanded expression; layout tokens are ignored
            location: Location of the directive, for empty expressions
            source_line: Source text quoted in error messages

        Returns:
            The value of the expression

        Raises:
            ExpressionSyntaxError: If the expression is malformed
            DivisionByZeroError: On division or modulo by zero
            ExpressionError: On an out-of-range shift count
        """
        self._tokens = [
            t for t in tokens
            if not t.is_layout and t.type != PPTokenType.EOF
        ]
        self._pos = 0
        self._live = True
        self._depth = 0
        self._location = location
        self._source_line = source_line

        if not self._tokens:
            raise ExpressionSyntaxError(
                "#if with no expression", location, source_line=source_line
            )

        try:
            result = self._parse_conditional()
        except RecursionError:
            # Long chains of unary or ?: operators
            raise ExpressionSyntaxError(
                "#if expression nested too deeply", location, source_line=source_line
            ) from None

        if self._pos < len(self._tokens):
            tok = self._current()
            raise self._syntax_error(f"unexpected token '{tok.text}' in expression", tok)

        return result

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _current(self) -> PPToken:
        """Get current token, or a synthetic EOF past the end."""
        if self._pos >= len(self._tokens):
            last = self._tokens[-1]
            return PPToken(
                PPTokenType.EOF,
                "",
                last.line,
                last.column + len(last.text),
                last.filename,
            )
        return self._tokens[self._pos]

    def _advance(self) -> PPToken:
        """Consume and return current token."""
        token = self._current()
        self._pos += 1
        return token

    def _match(self, *operators: str) -> Optional[PPToken]:
        """Match and consume the current token if it is one of `operators`."""
        token = self._current()
        if token.type == PPTokenType.PUNCTUATOR and token.text in operators:
            return self._advance()
        return None

    def _expect(self, operator: str, message: str) -> PPToken:
        """Expect a punctuator, raising a syntax error if not found."""
        if not self._current().is_punct(operator):
            raise self._syntax_error(message, self._current())
        return self._advance()

    def _syntax_error(self, message: str, token: PPToken) -> ExpressionSyntaxError:
        return ExpressionSyntaxError(
            message, token.location, source_line=self._source_line
        )

    # =========================================================================
    # Recursive Descent Parser with Evaluation
    # =========================================================================

    def _parse_conditional(self) -> PPValue:
        """Parse the conditional operator (lowest precedence)."""
        condition = self._parse_logical_or()

        if not self._match("?"):
            return condition

        live = self._live
        self._live = live and condition.truthy
        when_true = self._parse_conditional()
        self._expect(":", "expected ':' in conditional expression")
        self._live = live and not condition.truthy
        when_false = self._parse_conditional()
        self._live = live

        chosen = when_true if condition.truthy else when_false
        return PPValue.of(chosen.value, when_true.unsigned or when_false.unsigned)

    def _parse_logical_or(self) -> PPValue:
        """Parse logical OR with short-circuit."""
        left = self._parse_logical_and()

        while self._match("||"):
            live = self._live
            self._live = live and not left.truthy
            right = self._parse_logical_and()
            self._live = live
            left = TRUE if left.truthy or right.truthy else FALSE

        return left

    def _parse_logical_and(self) -> PPValue:
        """Parse logical AND with short-circuit."""
        left = self._parse_bitwise_or()

        while self._match("&&"):
            live = self._live
            self._live = live and left.truthy
            right = self._parse_bitwise_or()
            self._live = live
            left = TRUE if left.truthy and right.truthy else FALSE

        return left

    def _parse_bitwise_or(self) -> PPValue:
        left = self._parse_xor()

        while op := self._match("|"):
            left = self._binary(op, left, self._parse_xor())

        return left

    def _parse_xor(self) -> PPValue:
        left = self._parse_bitwise_and()

        while op := self._match("^"):
            left = self._binary(op, left, self._parse_bitwise_and())

        return left

    def _parse_bitwise_and(self) -> PPValue:
        left = self._parse_equality()

        while op := self._match("&"):
            left = self._binary(op, left, self._parse_equality())

        return left

    def _parse_equality(self) -> PPValue:
        left = self._parse_relational()

        while op := self._match("==", "!="):
            left = self._binary(op, left, self._parse_relational())

        return left

    def _parse_relational(self) -> PPValue:
        left = self._parse_shift()

        while op := self._match("<", "<=", ">", ">="):
            left = self._binary(op, left, self._parse_shift())

        return left

    def _parse_shift(self) -> PPValue:
        left = self._parse_additive()

        while op := self._match("<<", ">>"):
            left = self._binary(op, left, self._parse_additive())

        return left

    def _parse_additive(self) -> PPValue:
        left = self._parse_multiplicative()

        while op := self._match("+", "-"):
            left = self._binary(op, left, self._parse_multiplicative())

        return left

    def _parse_multiplicative(self) -> PPValue:
        left = self._parse_unary()

        while op := self._match("*", "/", "%"):
            left = self._binary(op, left, self._parse_unary())

        return left

    def _parse_unary(self) -> PPValue:
        """Parse unary operators (+, -, !, ~)."""
        if self._match("+"):
            return self._parse_unary()
        if self._match("-"):
            operand = self._parse_unary()
            return PPValue.of(-operand.value, operand.unsigned)
        if self._match("!"):
            return FALSE if self._parse_unary().truthy else TRUE
        if self._match("~"):
            operand = self._parse_unary()
            return PPValue.of(~operand.value, operand.unsigned)

        return self._parse_primary()

    def _parse_primary(self) -> PPValue:
        """Parse primary expressions (literals, identifiers, groups)."""
        tok = self._current()

        if tok.type == PPTokenType.NUMBER:
            self._advance()
            return self._parse_integer(tok)

        if tok.type == PPTokenType.CHAR_LITERAL:
            self._advance()
            return self._parse_char(tok)

        if tok.is_punct("("):
            if self._depth >= MAX_PAREN_DEPTH:
                raise self._syntax_error(
                    f"#if expression nested too deeply "
                    f"(more than {MAX_PAREN_DEPTH} levels of parentheses)",
                    tok,
                )
            self._advance()
            self._depth += 1
            value = self._parse_conditional()
            self._depth -= 1
            self._expect(")", "missing ')' in expression")
            return value

        if tok.type == PPTokenType.IDENTIFIER:
            self._advance()
            if tok.text == "defined":
                return self._parse_defined(tok)
            if self._live and self.on_undefined is not None:
                self.on_undefined(tok)
            return FALSE

        if tok.type == PPTokenType.STRING:
            raise self._syntax_error(
                "string literal in preprocessor expression", tok
            )

        if tok.type == PPTokenType.EOF:
            if self._pos > 0:
                previous = self._tokens[self._pos - 1]
                raise self._syntax_error(
                    f"missing operand after '{previous.text}'", tok
                )
            raise self._syntax_error("expected value in expression", tok)

        raise self._syntax_error(f"unexpected token '{tok.text}' in expression", tok)

    def _parse_defined(self, keyword: PPToken) -> PPValue:
        """Handle a 'defined' that reached the evaluator, e.g. from expansion."""
        parenthesized = self._match("(") is not None
        name = self._current()
        if name.type != PPTokenType.IDENTIFIER:
            raise self._syntax_error("operator 'defined' requires an identifier", keyword)
        self._advance()
        if parenthesized:
            self._expect(")", "missing ')' after 'defined'")
        return TRUE if self.is_defined(name.text) else FALSE

    # =========================================================================
    # Operators
    # =========================================================================

    def _binary(self, op: PPToken, left: PPValue, right: PPValue) -> PPValue:
        """Apply a binary operator with the usual arithmetic conversions."""
        operator = op.text

        if operator in ("<<", ">>"):
            return self._shift(op, left, right)

        unsigned = left.unsigned or right.unsigned
        if not self._live:
            # Comparisons yield a signed int whatever the operand types
            if operator in _COMPARISON_OPERATORS:
                return FALSE
            return PPValue(0, unsigned)

        a = left.as_unsigned() if unsigned else left.value
        b = right.as_unsigned() if unsigned else right.value

        if operator == "==":
            return TRUE if a == b else FALSE
        if operator == "!=":
            return TRUE if a != b else FALSE
        if operator == "<":
            return TRUE if a < b else FALSE
        if operator == "<=":
            return TRUE if a <= b else FALSE
        if operator == ">":
            return TRUE if a > b else FALSE
        if operator == ">=":
            return TRUE if a >= b else FALSE

        if operator == "+":
            return PPValue.of(a + b, unsigned)
        if operator == "-":
            return PPValue.of(a - b, unsigned)
        if operator == "*":
            return PPValue.of(a * b, unsigned)
        if operator == "&":
            return PPValue.of(a & b, unsigned)
        if operator == "|":
            return PPValue.of(a | b, unsigned)
        if operator == "^":
            return PPValue.of(a ^ b, unsigned)

        if b == 0:
            raise DivisionByZeroError(
                operator, op.location, source_line=self._source_line
            )

        # C division truncates toward zero
        quotient = abs(a) // abs(b)
        if (a < 0) != (b < 0):
            quotient = -quotient
        if operator == "/":
            return PPValue.of(quotient, unsigned)
        return PPValue.of(a - b * quotient, unsigned)

    def _shift(self, op: PPToken, left: PPValue, right: PPValue) -> PPValue:
        """Shift; the result has the type of the left operand."""
        if not self._live:
            return PPValue(0, left.unsigned)

        count = right.value
        if count < 0 or count >= INT_BITS:
            raise ExpressionError(
                f"shift count {count} is out of range for a {INT_BITS}-bit value",
                op.location,
                source_line=self._source_line,
            )

        if op.text == "<<":
            return PPValue.of(left.value << count, left.unsigned)
        if left.unsigned:
            return PPValue.of(left.as_unsigned() >> count, True)
        return PPValue.of(left.value >> count, False)

    # =========================================================================
    # Literals
    # =========================================================================

    def _parse_integer(self, tok: PPToken) -> PPValue:
        """Convert a pp-number to a value, honouring U/L/LL suffixes."""
        match = _INTEGER_RE.match(tok.text)
        if match is None:
            if "." in tok.text or re.match(r"^[0-9]+[eE]", tok.text):
                raise self._syntax_error(
                    "floating constant in preprocessor expression", tok
                )
            raise self._syntax_error(f"invalid integer constant '{tok.text}'", tok)

        digits, suffix = match.group("digits"), match.group("suffix")
        if suffix not in _VALID_SUFFIXES:
            raise self._syntax_error(
                f"invalid suffix '{suffix}' on integer constant", tok
            )

        lowered = digits.lower()
        if lowered.startswith("0x"):
            value = int(digits[2:], 16)
        elif lowered.startswith("0b"):
            value = int(digits[2:], 2)
        elif len(digits) > 1 and digits.startswith("0"):
            if any(c in "89" for c in digits):
                raise self._syntax_error(
                    f"invalid digit in octal constant '{tok.text}'", tok
                )
            value = int(digits, 8)
        else:
            value = int(digits, 10)

        if value > UINT_MASK:
            raise self._syntax_error(
                f"integer constant '{tok.text}' is too large for its type", tok
            )

        unsigned = "u" in suffix.lower() or value > INT_MAX
        return PPValue.of(value, unsigned)

    def _parse_char(self, tok: PPToken) -> PPValue:
        """
        Convert a character constant to a value.

        A plain one-character constant is a signed char, so '\\xFF' is -1.
        Multi-character constants pack each character into 8 bits of an
        int, the way gcc does.
        """
        text = tok.text
        prefix = text[:text.index("'")]
        codes = self._decode_char_body(text[len(prefix) + 1:-1], tok)

        if prefix:
            return PPValue.of(codes[0], False)

        if len(codes) == 1:
            value = codes[0] & 0xFF
            if value > 0x7F:
                value -= 0x100
            return PPValue(value)

        value = 0
        for code in codes:
            value = ((value << 8) | (code & 0xFF)) & 0xFFFFFFFF
        if value > 0x7FFFFFFF:
            value -= 1 << 32
        return PPValue(value)

    def _decode_char_body(self, body: str, tok: PPToken) -> list[int]:
        codes: list[int] = []
        i = 0
        while i < len(body):
            char = body[i]
            if char != "\\":
                codes.append(ord(char))
                i += 1
                continue

            escape = body[i + 1]
            if escape in _CHAR_ESCAPES:
                codes.append(_CHAR_ESCAPES[escape])
                i += 2
            elif escape in "01234567":
                end = i + 1
                while end < len(body) and end < i + 4 and body[end] in "01234567":
                    end += 1
                codes.append(int(body[i + 1:end], 8))
                i = end
            elif escape == "x":
                end = i + 2
                while end < len(body) and body[end] in "0123456789abcdefABCDEF":
                    end += 1
                codes.append(int(body[i + 2:end], 16))
                i = end
            elif escape in "uU":
                width = 4 if escape == "u" else 8
                codes.append(int(body[i + 2:i + 2 + width], 16))
                i += 2 + width
            else:
                raise self._syntax_error(
                    f"invalid escape sequence in character constant {tok.text}", tok
                )
        return codes


# =============================================================================
# Convenience Functions
# =============================================================================

def evaluate_expression(
    tokens: list[PPToken],
    is_defined: Optional[Callable[[str], bool]] = None,
    location: Optional[SourceLocation] = None,
) -> PPValue:
    """
    Convenience function to evaluate an already-expanded expression.

    'defined' operators are resolved first when `is_defined` is given.

    Returns:
        The value of the expression
    """
    if is_defined is not None:
        tokens = resolve_defined(tokens, is_defined)
    return ExpressionEvaluator(is_defined=is_defined).evaluate(tokens, location)
