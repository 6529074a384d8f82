"""
cmacro Error Hierarchy
======================

This module defines the root of the exception hierarchy for cmacro.
All exceptions inherit from CMacroError, allowing callers to catch every
error raised by the package with a single except clause if desired.

Exception Hierarchy
-------------------
CMacroError (base)
└── PreprocessorError (see cmacro.preprocessor.errors)
    ├── LexError - malformed token
    ├── MacroDefinitionError - invalid #define
    ├── MacroExpansionError - error while expanding a macro
    ├── ExpressionError - error evaluating an #if expression
    ├── DirectiveError - misplaced or malformed directive
    ├── UserError - #error directive in a live region
    └── PreprocessingFailed - aggregate of collected errors

Error messages follow this format:
    filename:line:column: error: description
        source_line_text
        ^ (pointer to error location)
    hint: suggestion for fixing (when available)
"""

from dataclasses import dataclass


# =============================================================================
# Base Exception Class
# =============================================================================

class CMacroError(Exception):
    """
    Base exception for all cmacro errors.

        try:
            result = preprocess(source)
            result.raise_if_errors()
        except CMacroError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    A location in source text, used for tokens and diagnostics.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        return f"{self.filename}:{self.line}:{self.column}"
