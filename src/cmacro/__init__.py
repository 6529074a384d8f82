"""
cmacro - C Macro Preprocessor and Constant-Expression Evaluator
===============================================================

This package implements the macro layer of the C preprocessor: object-
like and function-like macros, stringizing and token pasting, the
conditional directives and the evaluation of #if constant expressions.

It is meant as a building block for tools that need to see C source the
way a compiler sees it after preprocessing, without invoking a compiler.

Main Components
---------------
- **preprocessor**: Lexer, macro table, expander, expression evaluator
  and directive processor
- **config**: PreprocessorOptions (predefines, limits, environment)
- **cli**: The `cmacro` command-line tool

Quick Start
-----------
Preprocess a string:
    >>> from cmacro import preprocess
    >>> result = preprocess('''
    ... #define FLAG_A 1
    ... #define FLAG_B 2
    ... #if (FLAG_A | FLAG_B) == 3
    ... int both;
    ... #endif
    ... ''')
    >>> print(result.text.strip())
    int both;

Evaluate a condition:
    >>> from cmacro import MacroTable, evaluate_condition
    >>> table = MacroTable()
    >>> table.define_from_text("LEVEL 3")
    >>> evaluate_condition("LEVEL > 2 && !defined(NDEBUG)", table)
    True

Or use the command-line tool:
    $ cmacro -D LEVEL=3 source.c

Version History
---------------
1.0.0 - Initial release
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from cmacro.errors import CMacroError, SourceLocation
from cmacro.config import PreprocessorOptions
from cmacro.preprocessor import (
    # Errors
    PreprocessorError,
    PreprocessingFailed,
    LexError,
    MacroDefinitionError,
    MacroExpansionError,
    ExpressionError,
    DirectiveError,
    UserError,
    Diagnostic,
    # Core types
    PPToken,
    PPTokenType,
    MacroDefinition,
    MacroTable,
    MacroExpander,
    ExpressionEvaluator,
    PPValue,
    DirectiveProcessor,
    PreprocessResult,
    ConditionalVerdict,
    # Convenience functions
    lex,
    render_tokens,
    preprocess,
    expand_text,
    evaluate_condition,
)

__all__ = [
    "__version__",
    # Configuration
    "PreprocessorOptions",
    # Exception hierarchy
    "CMacroError",
    "SourceLocation",
    "PreprocessorError",
    "PreprocessingFailed",
    "LexError",
    "MacroDefinitionError",
    "MacroExpansionError",
    "ExpressionError",
    "DirectiveError",
    "UserError",
    "Diagnostic",
    # Core types
    "PPToken",
    "PPTokenType",
    "MacroDefinition",
    "MacroTable",
    "MacroExpander",
    "ExpressionEvaluator",
    "PPValue",
    "DirectiveProcessor",
    "PreprocessResult",
    "ConditionalVerdict",
    # Convenience functions
    "lex",
    "render_tokens",
    "preprocess",
    "expand_text",
    "evaluate_condition",
]
