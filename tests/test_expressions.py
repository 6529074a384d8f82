# =============================================================================
# test_expressions.py - #if Expression Evaluator Unit Tests
# =============================================================================
# Tests for constant-expression evaluation.
#
# Test coverage includes:
#   - Integer literals: decimal, hex, octal, binary, suffixes
#   - Character constants
#   - Arithmetic, bitwise, shift, comparison and logical operators
#   - Signed/unsigned conversions and 64-bit wrapping
#   - Short-circuit evaluation and the conditional operator
#   - The 'defined' operator
#   - Error conditions
# =============================================================================

import pytest

from cmacro.preprocessor.errors import (
    DivisionByZeroError,
    ExpressionError,
    ExpressionSyntaxError,
)
from cmacro.preprocessor.expressions import (
    MAX_PAREN_DEPTH,
    ExpressionEvaluator,
    PPValue,
    evaluate_expression,
    resolve_defined,
)
from cmacro.preprocessor.lexer import lex


# =============================================================================
# Helper Functions
# =============================================================================

def evaluate(expr_str: str, defined: set = None) -> PPValue:
    """
    Helper to evaluate an expression string.

    Args:
        expr_str: The expression to evaluate (already macro-expanded)
        defined: Names that 'defined' should report as defined
    """
    names = defined or set()
    return evaluate_expression(lex(expr_str, "<test>"), names.__contains__)


def value(expr_str: str) -> int:
    return evaluate(expr_str).value


# =============================================================================
# Literal Tests
# =============================================================================

class TestIntegerLiterals:
    """Integer constants and their suffixes."""

    def test_decimal(self):
        assert value("42") == 42

    def test_zero(self):
        assert value("0") == 0

    def test_hex(self):
        assert value("0x7FF") == 0x7FF
        assert value("0XfF") == 255

    def test_octal(self):
        assert value("017") == 15

    def test_binary(self):
        assert value("0b111") == 7

    def test_unsigned_suffix(self):
        result = evaluate("1U")
        assert result.value == 1
        assert result.unsigned

    @pytest.mark.parametrize("text", ["1L", "1l", "1LL", "1ll", "1UL", "1ULL", "1LLU", "1uLL"])
    def test_valid_suffixes(self, text):
        assert value(text) == 1

    def test_suffix_signedness(self):
        assert not evaluate("1L").unsigned
        assert evaluate("1ULL").unsigned

    def test_large_decimal_is_unsigned(self):
        result = evaluate("18446744073709551615")
        assert result.unsigned
        assert result.value == 2**64 - 1

    def test_max_signed_stays_signed(self):
        result = evaluate("9223372036854775807")
        assert not result.unsigned

    @pytest.mark.parametrize("text", ["1lL", "1LLL", "1UU", "1Lu L"])
    def test_invalid_suffix(self, text):
        with pytest.raises(ExpressionSyntaxError):
            evaluate(text)

    def test_invalid_octal_digit(self):
        with pytest.raises(ExpressionSyntaxError, match="invalid digit in octal constant"):
            evaluate("019")

    def test_too_large(self):
        with pytest.raises(ExpressionSyntaxError, match="too large"):
            evaluate("18446744073709551616")

    def test_floating_constant(self):
        with pytest.raises(ExpressionSyntaxError, match="floating constant"):
            evaluate("1.5")

    def test_exponent_is_floating(self):
        with pytest.raises(ExpressionSyntaxError, match="floating constant"):
            evaluate("1e5")


class TestCharacterConstants:
    """Character constants have the value of their character code."""

    def test_simple(self):
        assert value("'A'") == 65

    def test_escape(self):
        assert value(r"'\n'") == 10

    def test_octal_escape(self):
        assert value(r"'\0'") == 0
        assert value(r"'\101'") == 65

    def test_hex_escape_is_signed_char(self):
        assert value(r"'\xFF'") == -1

    def test_multi_character(self):
        assert value("'ab'") == (ord("a") << 8) | ord("b")

    def test_wide_character(self):
        assert value(r"L'\xFF'") == 255


# =============================================================================
# Arithmetic Tests
# =============================================================================

class TestArithmetic:
    """Test arithmetic operations."""

    def test_addition(self):
        assert value("1 + 2") == 3

    def test_subtraction(self):
        assert value("10 - 3") == 7
        assert value("3 - 10") == -7

    def test_multiplication(self):
        assert value("6 * 7") == 42

    def test_division_truncates_toward_zero(self):
        assert value("7 / 2") == 3
        assert value("-7 / 2") == -3
        assert value("7 / -2") == -3

    def test_modulo_sign_follows_dividend(self):
        assert value("7 % 3") == 1
        assert value("-7 % 3") == -1
        assert value("7 % -3") == 1

    def test_unary(self):
        assert value("-5") == -5
        assert value("+5") == 5
        assert value("- -5") == 5

    def test_signed_overflow_wraps(self):
        assert value("9223372036854775807 + 1") == -(2**63)

    def test_unsigned_wraps(self):
        assert value("0u - 1") == 2**64 - 1


# =============================================================================
# Precedence Tests
# =============================================================================

class TestPrecedence:
    """Operator precedence follows C."""

    def test_multiply_before_add(self):
        assert value("2 + 3 * 4") == 14

    def test_parentheses_override(self):
        assert value("(2 + 3) * 4") == 20

    def test_shift_below_additive(self):
        assert value("1 << 2 + 1") == 8

    def test_comparison_below_shift(self):
        assert value("1 << 2 == 4") == 1

    def test_bitwise_and_below_equality(self):
        assert value("3 & 2 == 2") == 1  # 3 & (2 == 2)

    def test_xor_between_and_and_or(self):
        assert value("1 | 2 ^ 3 & 1") == 3

    def test_logical_and_before_or(self):
        assert value("1 || 0 && 0") == 1

    def test_left_associative(self):
        assert value("10 - 3 - 2") == 5
        assert value("16 / 4 / 2") == 2


# =============================================================================
# Bitwise Tests
# =============================================================================

class TestBitwise:
    """Bitwise and shift operators."""

    def test_and_or_xor(self):
        assert value("0xF0 & 0x3C") == 0x30
        assert value("0xF0 | 0x0F") == 0xFF
        assert value("0xFF ^ 0x0F") == 0xF0

    def test_complement_signed(self):
        assert value("~0") == -1

    def test_complement_unsigned(self):
        assert value("~0u") == 2**64 - 1

    def test_shift_left(self):
        assert value("1 << 10") == 1024

    def test_shift_right(self):
        assert value("1024 >> 3") == 128

    def test_arithmetic_shift_of_negative(self):
        assert value("-16 >> 2") == -4

    def test_logical_shift_of_unsigned(self):
        assert value("0xFFFFFFFFFFFFFFFF >> 60") == 15

    def test_shift_result_has_left_type(self):
        assert not evaluate("1 << 2u").unsigned
        assert evaluate("1u << 2").unsigned

    def test_shift_into_sign_bit(self):
        assert value("1 << 63") == -(2**63)

    def test_shift_count_too_large(self):
        with pytest.raises(ExpressionError, match="shift count 64 is out of range"):
            evaluate("1 << 64")

    def test_negative_shift_count(self):
        with pytest.raises(ExpressionError, match="out of range"):
            evaluate("1 >> -1")

    def test_bit_mask_identity(self):
        """(1 << n) - 1 masks combine the way the flag headers expect."""
        assert value("(((1ULL) << (4)) - 1) & (~(((1ULL) << (2)) - 1))") == 12
        assert value("(((1UL) << (0+11)) - 1) & (~(((1UL) << (0)) - 1))") == 0x7FF


# =============================================================================
# Comparison and Conversion Tests
# =============================================================================

class TestComparison:
    """Comparisons and the usual arithmetic conversions."""

    def test_relational(self):
        assert value("1 < 2") == 1
        assert value("2 <= 2") == 1
        assert value("3 > 4") == 0
        assert value("4 >= 5") == 0

    def test_equality(self):
        assert value("7 == 7") == 1
        assert value("7 != 12") == 1

    def test_result_is_signed_int(self):
        assert not evaluate("1u == 1u").unsigned

    def test_negative_signed_comparison(self):
        assert value("-1 < 0") == 1

    def test_unsigned_conversion(self):
        """-1 converts to the largest unsigned value."""
        assert value("-1 > 0u") == 1
        assert value("-1 < 0u") == 0

    def test_unsigned_propagates(self):
        assert evaluate("1 + 1u").unsigned

    def test_mixed_flag_mask(self):
        result = evaluate("(1 | 2 | 4) != ((((1ULL) << (4)) - 1) & (~(((1ULL) << (2)) - 1)))")
        assert result.value == 1


# =============================================================================
# Logical and Conditional Tests
# =============================================================================

class TestLogical:
    """&&, ||, ! and ?:"""

    def test_not(self):
        assert value("!0") == 1
        assert value("!5") == 0

    def test_and_or(self):
        assert value("1 && 2") == 1
        assert value("1 && 0") == 0
        assert value("0 || 3") == 1
        assert value("0 || 0") == 0

    def test_and_short_circuits_division(self):
        assert value("0 && 1 / 0") == 0

    def test_or_short_circuits_division(self):
        assert value("1 || 1 % 0") == 1

    def test_skipped_side_still_parsed(self):
        with pytest.raises(ExpressionSyntaxError):
            evaluate("0 && )")

    def test_conditional(self):
        assert value("1 ? 2 : 3") == 2
        assert value("0 ? 2 : 3") == 3

    def test_conditional_skips_unselected_side(self):
        assert value("1 ? 5 : 1 / 0") == 5
        assert value("0 ? 1 / 0 : 6") == 6

    def test_conditional_right_associative(self):
        assert value("0 ? 1 : 0 ? 2 : 3") == 3

    def test_conditional_unsigned_result(self):
        result = evaluate("1 ? -1 : 0u")
        assert result.unsigned
        assert result.value == 2**64 - 1

    def test_skipped_comparison_is_signed(self):
        # 0u == 0u has type int even when it is not evaluated
        assert value("(1 ? -1 : (0u == 0u)) < 0") == 1
        assert value("(1 ? -1 : (0u < 1u)) < 0") == 1

    def test_skipped_arithmetic_keeps_unsigned(self):
        assert value("(1 ? -1 : (0u + 0u)) < 0") == 0


# =============================================================================
# Identifier and 'defined' Tests
# =============================================================================

class TestIdentifiers:
    """Identifiers left after expansion evaluate to 0."""

    def test_identifier_is_zero(self):
        assert value("UNKNOWN") == 0

    def test_identifier_in_expression(self):
        assert value("UNKNOWN + 3") == 3

    def test_on_undefined_callback(self):
        seen = []
        evaluator = ExpressionEvaluator(on_undefined=seen.append)
        evaluator.evaluate(lex("A + B"))
        assert [t.text for t in seen] == ["A", "B"]

    def test_on_undefined_not_called_for_skipped_side(self):
        seen = []
        evaluator = ExpressionEvaluator(on_undefined=seen.append)
        evaluator.evaluate(lex("0 && A"))
        assert seen == []


class TestDefined:
    """The 'defined' operator."""

    def test_defined_without_parens(self):
        assert evaluate("defined FOO", {"FOO"}).value == 1

    def test_defined_with_parens(self):
        assert evaluate("defined(FOO)", {"FOO"}).value == 1
        assert evaluate("defined ( FOO )", {"FOO"}).value == 1

    def test_not_defined(self):
        assert evaluate("defined(BAR)", {"FOO"}).value == 0

    def test_combined(self):
        assert evaluate("defined(A) && !defined(B)", {"A"}).value == 1

    def test_resolve_defined_replaces_tokens(self):
        tokens = resolve_defined(lex("defined(X) + 1"), {"X"}.__contains__)
        assert [t.text for t in tokens if not t.is_layout] == ["1", "+", "1"]

    def test_defined_requires_identifier(self):
        with pytest.raises(ExpressionSyntaxError, match="requires an identifier"):
            evaluate("defined(1)")

    def test_defined_missing_close_paren(self):
        with pytest.raises(ExpressionSyntaxError, match="missing '\\)' after 'defined'"):
            evaluate("defined(A")

    def test_defined_at_end(self):
        with pytest.raises(ExpressionSyntaxError, match="requires an identifier"):
            evaluate("defined")


# =============================================================================
# Error Tests
# =============================================================================

class TestErrors:
    """Malformed expressions and runtime errors."""

    def test_empty_expression(self):
        with pytest.raises(ExpressionSyntaxError, match="#if with no expression"):
            evaluate("")

    def test_division_by_zero(self):
        with pytest.raises(DivisionByZeroError, match="division by zero in #if"):
            evaluate("1 / 0")

    def test_modulo_by_zero(self):
        with pytest.raises(DivisionByZeroError, match="modulo by zero in #if"):
            evaluate("1 % (2 - 2)")

    def test_missing_close_paren(self):
        with pytest.raises(ExpressionSyntaxError, match="missing '\\)' in expression"):
            evaluate("(1 + 2")

    def test_missing_operand(self):
        with pytest.raises(ExpressionSyntaxError, match="missing operand after '\\+'"):
            evaluate("1 +")

    def test_trailing_tokens(self):
        with pytest.raises(ExpressionSyntaxError, match="unexpected token '2'"):
            evaluate("1 2")

    def test_string_literal(self):
        with pytest.raises(ExpressionSyntaxError, match="string literal"):
            evaluate('"abc"')

    def test_missing_colon(self):
        with pytest.raises(ExpressionSyntaxError, match="expected ':'"):
            evaluate("1 ? 2")

    def test_other_character(self):
        with pytest.raises(ExpressionSyntaxError, match="unexpected token '@'"):
            evaluate("1 + @")

    def test_assignment_not_allowed(self):
        with pytest.raises(ExpressionSyntaxError):
            evaluate("a = 1")

    def test_error_points_at_token(self):
        with pytest.raises(ExpressionSyntaxError) as exc_info:
            evaluate("1 + )")
        assert exc_info.value.location.column == 5

    def test_parentheses_within_bound(self):
        assert value("(" * MAX_PAREN_DEPTH + "7" + ")" * MAX_PAREN_DEPTH) == 7

    def test_parentheses_nested_too_deeply(self):
        with pytest.raises(ExpressionSyntaxError, match="nested too deeply"):
            evaluate("(" * 100 + "1" + ")" * 100)

    def test_long_unary_chain(self):
        with pytest.raises(ExpressionSyntaxError, match="nested too deeply"):
            evaluate("!" * 5000 + "1")
