"""
Preprocessor Error Hierarchy
============================

This module defines the exceptions raised by the tokenizer, macro table,
macro expander, expression evaluator and directive processor, plus the
Diagnostic record and DiagnosticCollector used to report several problems
from one run.

Exception Hierarchy
-------------------
PreprocessorError (base for all preprocessing errors)
├── LexError - malformed token (unterminated literal, bad escape)
├── MacroDefinitionError - invalid #define
├── MacroExpansionError - error while expanding a macro
│   ├── ArgumentCountError - wrong number of macro arguments
│   ├── UnterminatedInvocationError - missing ')' in a macro call
│   ├── PasteError - '##' did not produce a single token
│   └── RecursionLimitError - expansion nested too deeply
├── ExpressionError - error evaluating an #if expression
│   ├── ExpressionSyntaxError - malformed expression
│   └── DivisionByZeroError - '/' or '%' by zero
├── DirectiveError - misplaced or malformed directive
│   ├── UnmatchedEndifError - #endif without #if
│   └── UnterminatedConditionalError - #if without #endif
├── UserError - #error in a live region
└── PreprocessingFailed - aggregate report of collected errors

Warnings (macro redefinitions, #warning, undefined identifiers in #if)
are never raised. They are recorded as Diagnostic objects with
Severity.WARNING.

Example:
    config.h:12:8: error: error expanding macro 'MAX': expects 2 arguments, got 1
        int m = MAX(a);
                ^
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List

from cmacro.errors import CMacroError, SourceLocation


# =============================================================================
# Base Preprocessor Exception
# =============================================================================

class PreprocessorError(CMacroError):
    """
    Base exception for all preprocessing errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred
        hint: A suggestion for fixing the error
        source_line: The actual source text at the error location
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.source_line = source_line
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """
        Format the error message with location, source context, and hint.

            fixture.c:3:2: error: #error RXf_PMf_COMPILETIME is invalid
                #error RXf_PMf_COMPILETIME is invalid
                 ^
        """
        parts = []

        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        if self.source_line is not None and self.location is not None:
            parts.append(f"    {self.source_line}")
            if self.location.column > 0:
                padding = " " * (4 + self.location.column - 1)
                parts.append(f"{padding}^")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


class PreprocessingFailed(PreprocessorError):
    """
    Aggregate error containing every error collected during a run.

    The message is already a formatted report from DiagnosticCollector
    and is passed through untouched.
    """

    def _format_message(self) -> str:
        """Return message as-is - it's already a formatted aggregate report."""
        return self.message


# =============================================================================
# Lexical Errors
# =============================================================================

class LexError(PreprocessorError):
    """
    Malformed preprocessing token.

    Examples:
        - Unterminated string or character literal
        - Invalid escape sequence such as '\\q'
        - Unterminated block comment
        - Empty character constant ''
    """
    pass


# =============================================================================
# Macro Errors
# =============================================================================

class MacroDefinitionError(PreprocessorError):
    """
    Invalid #define directive.

    Raised for a missing macro name, duplicate parameter names, a '#'
    that is not followed by a parameter, or '##' at either end of the
    replacement list.
    """

    def __init__(
        self,
        message: str,
        macro_name: Optional[str] = None,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.macro_name = macro_name
        super().__init__(
            message,
            location=location,
            hint=hint,
            source_line=source_line,
        )


class MacroExpansionError(PreprocessorError):
    """
    Error expanding a macro.

    Base class for the errors the expander raises. The offending macro
    name is kept on the exception for callers that want to report it.
    """

    def __init__(
        self,
        macro_name: str,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.macro_name = macro_name
        self.reason = message
        super().__init__(
            f"error expanding macro '{macro_name}': {message}",
            location=location,
            hint=hint,
            source_line=source_line,
        )


class ArgumentCountError(MacroExpansionError):
    """Function-like macro called with the wrong number of arguments."""

    def __init__(
        self,
        macro_name: str,
        expected: int,
        actual: int,
        variadic: bool = False,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.variadic = variadic

        word = "argument" if expected == 1 else "arguments"
        qualifier = "at least " if variadic else ""
        super().__init__(
            macro_name,
            f"expects {qualifier}{expected} {word}, got {actual}",
            location=location,
            source_line=source_line,
        )


class UnterminatedInvocationError(MacroExpansionError):
    """End of input reached while collecting macro arguments."""

    def __init__(
        self,
        macro_name: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        super().__init__(
            macro_name,
            "unterminated argument list",
            location=location,
            hint="add closing ')' to complete the macro call",
            source_line=source_line,
        )


class PasteError(MacroExpansionError):
    """
    Token pasting produced something other than one valid token.

    Example:
        #define CAT(a, b) a ## b
        CAT(+, /)    // "+/" is two tokens
    """

    def __init__(
        self,
        macro_name: str,
        left: str,
        right: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.left = left
        self.right = right
        super().__init__(
            macro_name,
            f"pasting '{left}' and '{right}' does not give a valid "
            "preprocessing token",
            location=location,
            source_line=source_line,
        )


class RecursionLimitError(MacroExpansionError):
    """Macro expansion nested deeper than the configured maximum."""

    def __init__(
        self,
        macro_name: str,
        limit: int,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.limit = limit
        super().__init__(
            macro_name,
            f"expansion nested deeper than {limit} levels",
            location=location,
            hint="raise max_expansion_depth or check for runaway macros",
            source_line=source_line,
        )


# =============================================================================
# Expression Errors
# =============================================================================

class ExpressionError(PreprocessorError):
    """
    Error evaluating an #if or #elif expression.

    Also raised directly for semantic problems such as an out-of-range
    shift count.
    """
    pass


class ExpressionSyntaxError(ExpressionError):
    """
    Malformed constant expression.

    The location points at the offending token.
    """
    pass


class DivisionByZeroError(ExpressionError):
    """Division or modulo by zero on an evaluated side of an expression."""

    def __init__(
        self,
        operator: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.operator = operator
        kind = "modulo" if operator == "%" else "division"
        super().__init__(
            f"{kind} by zero in #if",
            location=location,
            source_line=source_line,
        )


# =============================================================================
# Directive Errors
# =============================================================================

class DirectiveError(PreprocessorError):
    """
    Misplaced or malformed preprocessor directive.

    Examples:
        - #else after #else
        - #elif without #if
        - #ifdef with no macro name
        - Unknown directive in a live region
    """
    pass


class UnmatchedEndifError(DirectiveError):
    """#endif with no open conditional."""

    def __init__(
        self,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        super().__init__(
            "#endif without #if",
            location=location,
            source_line=source_line,
        )


class UnterminatedConditionalError(DirectiveError):
    """End of input reached with a conditional still open."""

    def __init__(
        self,
        directive: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.directive = directive
        super().__init__(
            f"unterminated #{directive}",
            location=location,
            hint="add a matching #endif",
            source_line=source_line,
        )


class UserError(PreprocessorError):
    """#error directive reached in a live region."""

    def __init__(
        self,
        text: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.text = text
        super().__init__(
            f"#error {text}".rstrip(),
            location=location,
            source_line=source_line,
        )


# =============================================================================
# Diagnostics
# =============================================================================

class Severity(Enum):
    """Diagnostic severity."""
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Diagnostic:
    """
    One reported problem.

    Attributes:
        severity: ERROR or WARNING
        message: The bare description (no location prefix)
        location: Where the problem was found, when known
        fatal: True when the problem stopped processing
        error: The exception behind an error diagnostic, if any
    """
    severity: Severity
    message: str
    location: Optional[SourceLocation] = None
    fatal: bool = False
    error: Optional[PreprocessorError] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        if self.error is not None:
            return str(self.error)
        if self.location:
            return f"{self.location}: {self.severity.value}: {self.message}"
        return f"{self.severity.value}: {self.message}"


class DiagnosticCollector:
    """
    Collects diagnostics for batch reporting.

    The directive processor uses this to keep scanning after an error,
    so that one run reports every problem it can find.

    Example:
        collector = DiagnosticCollector(max_errors=100)

        for line in lines:
            try:
                process(line)
            except PreprocessorError as e:
                collector.add(e)
                if collector.should_stop():
                    break

        if collector.has_errors():
            print(collector.report())
    """

    def __init__(self, max_errors: int = 100):
        """
        Initialize the collector.

        Args:
            max_errors: Maximum errors to collect before should_stop() is True
        """
        self.diagnostics: List[Diagnostic] = []
        self.max_errors = max_errors

    def add(self, error: PreprocessorError, fatal: bool = False) -> Diagnostic:
        """Record an error and return its Diagnostic."""
        diagnostic = Diagnostic(
            severity=Severity.ERROR,
            message=error.message,
            location=error.location,
            fatal=fatal,
            error=error,
        )
        self.diagnostics.append(diagnostic)
        return diagnostic

    def add_warning(
        self, message: str, location: Optional[SourceLocation] = None
    ) -> Diagnostic:
        """Record a warning and return its Diagnostic."""
        diagnostic = Diagnostic(Severity.WARNING, message, location)
        self.diagnostics.append(diagnostic)
        return diagnostic

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    def has_errors(self) -> bool:
        """Return True if any errors have been collected."""
        return any(d.is_error for d in self.diagnostics)

    def should_stop(self) -> bool:
        """Return True if max_errors has been reached."""
        return self.error_count() >= self.max_errors

    def error_count(self) -> int:
        """Return the number of collected errors."""
        return len(self.errors)

    def warning_count(self) -> int:
        """Return the number of collected warnings."""
        return len(self.warnings)

    def report(self) -> str:
        """Format all errors and warnings for display."""
        lines = []

        for diagnostic in self.errors:
            lines.append(str(diagnostic))
            lines.append("")

        for diagnostic in self.warnings:
            lines.append(str(diagnostic))

        errors = self.error_count()
        warnings = self.warning_count()
        error_word = "error" if errors == 1 else "errors"
        warning_word = "warning" if warnings == 1 else "warnings"
        lines.append(f"\n{errors} {error_word}, {warnings} {warning_word}")

        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all collected diagnostics."""
        self.diagnostics.clear()

    def raise_if_errors(self) -> None:
        """Raise PreprocessingFailed if any errors were collected."""
        if self.has_errors():
            raise PreprocessingFailed(self.report())
