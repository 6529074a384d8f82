"""
C Macro Preprocessor
====================

This package implements the macro and conditional-compilation layer of
the C preprocessor: it tokenizes source into preprocessing tokens,
maintains the macro table, expands macro invocations and evaluates #if
expressions.

Main Components
---------------
- **PPLexer**: Tokenizes source into preprocessing tokens (layout kept)
- **MacroTable**: The set of live macro definitions
- **MacroExpander**: Expands object-like and function-like macros with
  hideset-based recursion prevention, stringizing and token pasting
- **ExpressionEvaluator**: Evaluates #if expressions in 64-bit integer
  arithmetic
- **DirectiveProcessor**: Walks a translation unit, applies directives
  and decides which lines are live

Processing Pipeline
-------------------
1. **Lexing**: Source text becomes a stream of PPTokens. Line splices
   are removed and comments are kept as COMMENT tokens.

2. **Directive processing**: Lines that start with '#' are directives.
   #define/#undef edit the macro table, conditional directives push and
   pop regions.

3. **Expansion**: Runs of live text lines are expanded together, so a
   macro call may span several lines.

4. **Output**: The result holds the expanded tokens, all diagnostics and
   a verdict for every branch-selecting directive.

Example Usage
-------------
>>> from cmacro.preprocessor import preprocess
>>> result = preprocess('''
... #define MAX(a, b) ((a) > (b) ? (a) : (b))
... int m = MAX(1, 2);
... ''')
>>> print(result.text.strip())
int m = ((1) > (2) ? (1) : (2));
"""

from cmacro.preprocessor.errors import (
    PreprocessorError,
    PreprocessingFailed,
    LexError,
    MacroDefinitionError,
    MacroExpansionError,
    ArgumentCountError,
    UnterminatedInvocationError,
    PasteError,
    RecursionLimitError,
    ExpressionError,
    ExpressionSyntaxError,
    DivisionByZeroError,
    DirectiveError,
    UnmatchedEndifError,
    UnterminatedConditionalError,
    UserError,
    Severity,
    Diagnostic,
    DiagnosticCollector,
)
from cmacro.preprocessor.lexer import (
    PPLexer,
    PPToken,
    PPTokenType,
    lex,
    render_tokens,
)
from cmacro.preprocessor.macros import (
    MacroDefinition,
    MacroKind,
    MacroTable,
    RedefinitionConflict,
    parse_macro_definition,
    seed_builtins,
)
from cmacro.preprocessor.expander import ExpansionContext, MacroExpander
from cmacro.preprocessor.expressions import (
    ExpressionEvaluator,
    PPValue,
    evaluate_expression,
    resolve_defined,
)
from cmacro.preprocessor.directives import (
    BranchState,
    ConditionalVerdict,
    DirectiveProcessor,
    PreprocessResult,
    ProcessorState,
    evaluate_condition,
    expand_text,
    preprocess,
)

__all__ = [
    # Errors and diagnostics
    "PreprocessorError",
    "PreprocessingFailed",
    "LexError",
    "MacroDefinitionError",
    "MacroExpansionError",
    "ArgumentCountError",
    "UnterminatedInvocationError",
    "PasteError",
    "RecursionLimitError",
    "ExpressionError",
    "ExpressionSyntaxError",
    "DivisionByZeroError",
    "DirectiveError",
    "UnmatchedEndifError",
    "UnterminatedConditionalError",
    "UserError",
    "Severity",
    "Diagnostic",
    "DiagnosticCollector",
    # Lexer
    "PPLexer",
    "PPToken",
    "PPTokenType",
    "lex",
    "render_tokens",
    # Macros
    "MacroDefinition",
    "MacroKind",
    "MacroTable",
    "RedefinitionConflict",
    "parse_macro_definition",
    "seed_builtins",
    # Expansion
    "ExpansionContext",
    "MacroExpander",
    # Expressions
    "ExpressionEvaluator",
    "PPValue",
    "evaluate_expression",
    "resolve_defined",
    # Directives
    "BranchState",
    "ConditionalVerdict",
    "DirectiveProcessor",
    "PreprocessResult",
    "ProcessorState",
    "evaluate_condition",
    "expand_text",
    "preprocess",
]
