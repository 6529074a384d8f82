"""
Directive Processor
===================

This module walks a translation unit line by line, applies preprocessor
directives, and decides which text lines are live (expanded and
emitted) and which are dead (skipped).

Supported Directives
--------------------
#define NAME value          - Object-like macro
#define NAME(args) body     - Function-like macro (variadic allowed)
#undef NAME                 - Undefine macro
#if expression              - Conditional on a constant expression
#ifdef NAME                 - If macro defined
#ifndef NAME                - If macro not defined
#elif expression            - Else if
#else                       - Else branch
#endif                      - End conditional
#error text                 - Stop with an error (live regions only)
#warning text               - Report a warning (live regions only)
#include, #pragma, #line    - Accepted; #include reports that inclusion
                              is not supported, the others are ignored

Conditional Regions
-------------------
Each #if/#ifdef/#ifndef pushes a ConditionalFrame. A frame is in one of
four branch states:

    ACTIVE     the current branch is live
    AWAITING   no branch taken yet; a later #elif/#else may be live
    DONE       an earlier branch was taken; the rest are dead
    DEAD       an enclosing region is dead; nothing here is evaluated

Directives inside dead regions are still tracked so that nesting stays
balanced, but they do not change the macro table and their expressions
are not evaluated.

Error Handling
--------------
Errors on one line are recorded and processing continues with the next
line. Two errors stop processing: #error in a live region and, at the
end of input, a conditional that was never closed.

Example
-------
>>> from cmacro.preprocessor.directives import preprocess
>>> result = preprocess('''
... #define SHIFT 4
... #if (1 << SHIFT) == 16
... int live;
... #else
... int dead;
... #endif
... ''')
>>> print(result.text.strip())
int live;
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, Optional

from cmacro.config import PreprocessorOptions, get_default_options
from cmacro.errors import SourceLocation
from cmacro.preprocessor.errors import (
    Diagnostic,
    DiagnosticCollector,
    DirectiveError,
    LexError,
    MacroExpansionError,
    PreprocessingFailed,
    PreprocessorError,
    UnmatchedEndifError,
    UnterminatedConditionalError,
    UserError,
)
from cmacro.preprocessor.expander import MacroExpander
from cmacro.preprocessor.expressions import (
    ExpressionEvaluator,
    PPValue,
    resolve_defined,
)
from cmacro.preprocessor.lexer import (
    PPLexer,
    PPToken,
    PPTokenType,
    lex,
    render_tokens,
)
from cmacro.preprocessor.macros import (
    MacroTable,
    parse_macro_definition,
    seed_builtins,
)

logger = logging.getLogger(__name__)

CONDITIONAL_DIRECTIVES = ("if", "ifdef", "ifndef", "elif", "else", "endif")

# Accepted and ignored
IGNORED_DIRECTIVES = ("pragma", "line", "ident", "sccs")

# Directives whose operand is free text rather than tokens
_MESSAGE_DIRECTIVE_RE = re.compile(r"^\s*#\s*(?:error|warning)\b(?P<text>.*)$")


# =============================================================================
# Conditional State
# =============================================================================

class BranchState(Enum):
    """State of the innermost branch of one conditional frame."""
    ACTIVE = auto()         # Current branch is live
    AWAITING = auto()       # No branch taken yet
    DONE = auto()           # A branch was already taken
    DEAD = auto()           # Enclosing region is dead


class ProcessorState(Enum):
    """Where the processor is, as seen from the innermost frame."""
    TOP = auto()
    INSIDE_TRUE_BRANCH = auto()
    INSIDE_FALSE_BRANCH_AWAITING_ELSE_OR_ELIF = auto()
    INSIDE_DEAD_BRANCH = auto()


@dataclass
class ConditionalFrame:
    """
    One #if ... #endif region.

    Attributes:
        directive: The opening directive ("if", "ifdef" or "ifndef")
        state: Current BranchState
        location: Location of the opening directive
        else_seen: True once #else has been processed for this frame
    """
    directive: str
    state: BranchState
    location: SourceLocation
    else_seen: bool = False

    @property
    def is_live(self) -> bool:
        return self.state == BranchState.ACTIVE


@dataclass(frozen=True)
class ConditionalVerdict:
    """
    Outcome of one branch-selecting directive.

    Attributes:
        directive: "if", "ifdef", "ifndef", "elif" or "else"
        location: Where the directive is
        taken: True if its branch is live, False if not, None if the
            directive was not evaluated (dead region or a branch was
            already taken)
        condition: The directive's condition as written
    """
    directive: str
    location: SourceLocation
    taken: Optional[bool]
    condition: str = ""


# =============================================================================
# Result
# =============================================================================

@dataclass
class PreprocessResult:
    """
    Everything a preprocessing run produces.

    Attributes:
        tokens: The expanded, directive-filtered token stream
        diagnostics: Errors and warnings in the order they were found
        verdicts: One ConditionalVerdict per branch-selecting directive
        macros: The macro table at the end of the run
        aborted: True if a fatal error stopped processing early
    """
    tokens: list[PPToken]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    verdicts: list[ConditionalVerdict] = field(default_factory=list)
    macros: MacroTable = field(default_factory=MacroTable)
    aborted: bool = False

    @property
    def text(self) -> str:
        """The token stream rendered back to source text."""
        return render_tokens(self.tokens)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    def identifiers(self) -> list[str]:
        """Names of all identifier tokens in the output, in order."""
        return [t.text for t in self.tokens if t.type == PPTokenType.IDENTIFIER]

    def report(self) -> str:
        """Format all diagnostics for display."""
        collector = DiagnosticCollector()
        collector.diagnostics.extend(self.diagnostics)
        return collector.report()

    def raise_if_errors(self) -> None:
        """Raise PreprocessingFailed if the run produced any error."""
        if self.has_errors():
            raise PreprocessingFailed(self.report())


# =============================================================================
# Directive Processor
# =============================================================================

class DirectiveProcessor:
    """
    Preprocesses one translation unit.

    Each processor owns its macro table, frame stack and diagnostics, so
    separate processors can run in parallel on separate inputs.

    Usage:
        processor = DirectiveProcessor(source, "main.c")
        result = processor.run()
        print(result.text)

    Attributes:
        source: Source text
        filename: Source filename for error reporting
        options: PreprocessorOptions in effect
        table: The MacroTable being built
    """

    def __init__(
        self,
        source: str,
        filename: str = "<input>",
        options: Optional[PreprocessorOptions] = None,
        table: Optional[MacroTable] = None,
    ):
        """
        Initialize the processor.

        Args:
            source: Source text to preprocess
            filename: Source filename for error reporting
            options: Options; defaults to get_default_options()
            table: Starting macro table; by default a fresh table with
                builtins and the options' predefines

        Raises:
            MacroDefinitionError: If a predefine from the options is invalid
        """
        self.source = source
        self.filename = filename
        self.options = options or get_default_options()
        self.table = table if table is not None else self._initial_table()

        self.expander = MacroExpander(
            self.table,
            max_depth=self.options.max_expansion_depth,
            no_expand=self.options.no_expand,
            source=source,
        )
        self.collector = DiagnosticCollector(self.options.max_errors)

        self._lines = source.splitlines()
        self._frames: list[ConditionalFrame] = []
        self._verdicts: list[ConditionalVerdict] = []
        self._output: list[PPToken] = []
        self._pending: list[list[PPToken]] = []
        self._aborted = False

    def _initial_table(self) -> MacroTable:
        table = MacroTable()
        if self.options.include_builtins:
            seed_builtins(table)
        for text in self.options.predefine_lines():
            table.define_from_text(text)
        for name in self.options.undefined:
            table.undefine(name)
        return table

    # =========================================================================
    # Main Loop
    # =========================================================================

    def run(self) -> PreprocessResult:
        """
        Process the whole source.

        Returns:
            PreprocessResult with tokens, diagnostics and verdicts
        """
        lexer = PPLexer(self.source, self.filename, on_error=self._on_lex_error)

        for line in self._logical_lines(lexer.tokenize()):
            if self._aborted:
                break

            if self._is_directive(line):
                self._flush_text()
                self._process_directive(line)
            elif self._is_live():
                self._pending.append(line)

            if self.collector.should_stop() and not self._aborted:
                logger.debug(f"stopping after {self.collector.error_count()} errors")
                self._aborted = True

        if not self._aborted:
            self._flush_text()
            self._check_balance()

        return PreprocessResult(
            tokens=self._output,
            diagnostics=list(self.collector.diagnostics),
            verdicts=list(self._verdicts),
            macros=self.table,
            aborted=self._aborted,
        )

    @property
    def state(self) -> ProcessorState:
        """The current state, derived from the frame stack."""
        if not self._frames:
            return ProcessorState.TOP
        branch = self._frames[-1].state
        if branch == BranchState.ACTIVE:
            return ProcessorState.INSIDE_TRUE_BRANCH
        if branch == BranchState.DEAD:
            return ProcessorState.INSIDE_DEAD_BRANCH
        return ProcessorState.INSIDE_FALSE_BRANCH_AWAITING_ELSE_OR_ELIF

    def _is_live(self) -> bool:
        return not self._frames or self._frames[-1].is_live

    @staticmethod
    def _logical_lines(tokens: Iterator[PPToken]) -> Iterator[list[PPToken]]:
        """Group tokens into lines, each ending with its NEWLINE token."""
        line: list[PPToken] = []
        for token in tokens:
            if token.type == PPTokenType.EOF:
                break
            line.append(token)
            if token.type == PPTokenType.NEWLINE:
                yield line
                line = []
        if line:
            yield line

    @staticmethod
    def _is_directive(line: list[PPToken]) -> bool:
        for token in line:
            if token.type in (PPTokenType.WHITESPACE, PPTokenType.COMMENT):
                continue
            return token.is_punct("#")
        return False

    def _check_balance(self) -> None:
        """Report the innermost conditional left open at end of input."""
        if not self._frames:
            return
        frame = self._frames[-1]
        self._record(
            UnterminatedConditionalError(
                frame.directive,
                frame.location,
                source_line=self._source_line(frame.location.line),
            ),
            fatal=True,
        )
        self._aborted = True

    # =========================================================================
    # Text Lines
    # =========================================================================

    def _flush_text(self) -> None:
        """
        Expand and emit the pending run of live text lines.

        The run is expanded as a whole so that a macro call may span
        lines. If that fails, each line is expanded separately and only
        the lines that fail are dropped.
        """
        if not self._pending:
            return
        lines, self._pending = self._pending, []

        try:
            self._emit(self.expander.expand([t for line in lines for t in line]))
            return
        except MacroExpansionError as error:
            if len(lines) == 1:
                self._record(error)
                return
            logger.debug(
                f"expanding {len(lines)} lines failed ({error.reason}); "
                "retrying line by line"
            )

        for line in lines:
            try:
                self._emit(self.expander.expand(line))
            except MacroExpansionError as error:
                self._record(error)

    def _emit(self, tokens: list[PPToken]) -> None:
        for token in tokens:
            if token.type == PPTokenType.COMMENT and not self.options.keep_comments:
                token = PPToken(
                    PPTokenType.WHITESPACE,
                    " ",
                    token.line,
                    token.column,
                    token.filename,
                )
            self._output.append(token)

    # =========================================================================
    # Directive Dispatch
    # =========================================================================

    def _process_directive(self, line: list[PPToken]) -> None:
        """Process one directive line."""
        significant = [
            i for i, t in enumerate(line)
            if t.type not in (PPTokenType.WHITESPACE, PPTokenType.COMMENT,
                              PPTokenType.NEWLINE)
        ]
        hash_token = line[significant[0]]
        location = hash_token.location

        # Null directive: a lone '#'
        if len(significant) == 1:
            return

        name_token = line[significant[1]]
        rest = [t for t in line[significant[1] + 1:] if t.type != PPTokenType.NEWLINE]

        if name_token.type != PPTokenType.IDENTIFIER:
            if name_token.type == PPTokenType.NUMBER:
                logger.debug(f"{location}: ignoring line marker")
                return
            if self._is_live():
                self._record(
                    DirectiveError(
                        "invalid preprocessing directive",
                        name_token.location,
                        source_line=self._source_line(location.line),
                    )
                )
            return

        directive = name_token.text

        try:
            if directive in CONDITIONAL_DIRECTIVES:
                self._process_conditional(directive, rest, location)
            elif not self._is_live():
                return
            elif directive == "define":
                self._process_define(rest, location)
            elif directive == "undef":
                self._process_undef(rest, location)
            elif directive == "error":
                self._process_error(rest, location)
            elif directive == "warning":
                self._process_warning(rest, location)
            elif directive == "include":
                self.collector.add_warning(
                    "#include is not supported; directive ignored", location
                )
            elif directive in IGNORED_DIRECTIVES:
                logger.debug(f"{location}: ignoring #{directive}")
            else:
                raise DirectiveError(
                    f"invalid preprocessing directive #{directive}",
                    name_token.location,
                    source_line=self._source_line(location.line),
                )
        except UserError as error:
            self._record(error, fatal=True)
            self._aborted = True
        except PreprocessorError as error:
            self._record(error)

    # =========================================================================
    # Macro Directives
    # =========================================================================

    def _process_define(self, rest: list[PPToken], location: SourceLocation) -> None:
        """Process #define directive."""
        definition = parse_macro_definition(rest, location)

        existing = self.table.lookup(definition.name)
        if existing is not None and existing.builtin:
            self.collector.add_warning(
                f"redefining builtin macro '{definition.name}' ignored",
                definition.location,
            )
            return

        conflict = self.table.define(definition)
        if conflict is not None:
            message = conflict.message
            if conflict.hint:
                message += f" ({conflict.hint})"
            self.collector.add_warning(message, definition.location)

    def _process_undef(self, rest: list[PPToken], location: SourceLocation) -> None:
        """Process #undef directive."""
        name = self._macro_name("undef", rest, location)

        definition = self.table.lookup(name.text)
        if definition is not None and definition.builtin:
            self.collector.add_warning(
                f"undefining builtin macro '{name.text}'", name.location
            )
        self.table.undefine(name.text, name.location)

    def _macro_name(
        self, directive: str, rest: list[PPToken], location: SourceLocation
    ) -> PPToken:
        """The macro name operand of #ifdef, #ifndef or #undef."""
        significant = [t for t in rest if not t.is_layout]
        source_line = self._source_line(location.line)

        if not significant:
            raise DirectiveError(
                f"no macro name given in #{directive} directive",
                location,
                source_line=source_line,
            )
        name = significant[0]
        if not name.is_identifier():
            raise DirectiveError(
                "macro names must be identifiers",
                name.location,
                source_line=source_line,
            )
        if len(significant) > 1:
            self.collector.add_warning(
                f"extra tokens at end of #{directive} directive",
                significant[1].location,
            )
        return name

    # =========================================================================
    # Conditional Directives
    # =========================================================================

    def _process_conditional(
        self, directive: str, rest: list[PPToken], location: SourceLocation
    ) -> None:
        """Process #if, #ifdef, #ifndef, #elif, #else and #endif."""
        condition = render_tokens(t for t in rest if t.type != PPTokenType.COMMENT).strip()

        if directive in ("if", "ifdef", "ifndef"):
            if not self._is_live():
                self._frames.append(ConditionalFrame(directive, BranchState.DEAD, location))
                self._verdict(directive, location, None, condition)
                return

            # Push first so the frame exists even if the condition fails
            frame = ConditionalFrame(directive, BranchState.AWAITING, location)
            self._frames.append(frame)

            if directive == "if":
                taken = self._evaluate_condition(rest, location)
            else:
                name = self._macro_name(directive, rest, location)
                taken = self.table.is_defined(name.text) == (directive == "ifdef")

            if taken:
                frame.state = BranchState.ACTIVE
            self._verdict(directive, location, taken, condition)
            return

        if not self._frames:
            if directive == "endif":
                raise UnmatchedEndifError(location, source_line=self._source_line(location.line))
            raise DirectiveError(
                f"#{directive} without #if",
                location,
                source_line=self._source_line(location.line),
            )

        frame = self._frames[-1]

        if directive == "endif":
            self._extra_tokens(directive, rest)
            self._frames.pop()
            return

        if frame.else_seen:
            raise DirectiveError(
                f"#{directive} after #else",
                location,
                hint=f"the #else for this conditional is at line {frame.location.line} or later",
                source_line=self._source_line(location.line),
            )

        if directive == "else":
            self._extra_tokens(directive, rest)
            frame.else_seen = True
            if frame.state == BranchState.DEAD:
                self._verdict(directive, location, None, condition)
            elif frame.state == BranchState.AWAITING:
                frame.state = BranchState.ACTIVE
                self._verdict(directive, location, True, condition)
            else:
                frame.state = BranchState.DONE
                self._verdict(directive, location, False, condition)
            return

        # elif
        if frame.state == BranchState.AWAITING:
            taken = self._evaluate_condition(rest, location)
            if taken:
                frame.state = BranchState.ACTIVE
            self._verdict(directive, location, taken, condition)
        else:
            if frame.state == BranchState.ACTIVE:
                frame.state = BranchState.DONE
            self._verdict(directive, location, None, condition)

    def _extra_tokens(self, directive: str, rest: list[PPToken]) -> None:
        significant = [t for t in rest if not t.is_layout]
        if significant and self._enclosing_live():
            self.collector.add_warning(
                f"extra tokens at end of #{directive} directive",
                significant[0].location,
            )

    def _enclosing_live(self) -> bool:
        return len(self._frames) < 2 or self._frames[-2].is_live

    def _verdict(
        self,
        directive: str,
        location: SourceLocation,
        taken: Optional[bool],
        condition: str,
    ) -> None:
        logger.debug(f"{location}: #{directive} {condition} -> {taken}")
        self._verdicts.append(ConditionalVerdict(directive, location, taken, condition))

    def _evaluate_condition(self, rest: list[PPToken], location: SourceLocation) -> bool:
        """
        Evaluate an #if or #elif condition.

        Errors are recorded and the branch is treated as false.
        """
        try:
            return self.evaluate(rest, location).truthy
        except PreprocessorError as error:
            self._record(error)
            return False

    def evaluate(
        self, tokens: list[PPToken], location: Optional[SourceLocation] = None
    ) -> PPValue:
        """
        Evaluate a condition with the current macro table.

        'defined' is resolved first, then macros are expanded, then the
        expression is evaluated.
        """
        source_line = self._source_line(location.line) if location else None
        resolved = resolve_defined(tokens, self.table.is_defined)
        expanded = self.expander.expand(resolved)

        on_undefined = self._warn_undefined if self.options.warn_undefined else None
        evaluator = ExpressionEvaluator(
            is_defined=self.table.is_defined,
            on_undefined=on_undefined,
        )
        return evaluator.evaluate(expanded, location, source_line)

    def _warn_undefined(self, token: PPToken) -> None:
        self.collector.add_warning(
            f"'{token.text}' is not defined, evaluates to 0", token.location
        )

    # =========================================================================
    # Diagnostic Directives
    # =========================================================================

    def _process_error(self, rest: list[PPToken], location: SourceLocation) -> None:
        """Process #error directive."""
        text = self._message_text(rest, location)
        raise UserError(text, location, source_line=self._source_line(location.line))

    def _process_warning(self, rest: list[PPToken], location: SourceLocation) -> None:
        """Process #warning directive."""
        text = self._message_text(rest, location)
        self.collector.add_warning(f"#warning {text}".rstrip(), location)

    def _message_text(self, rest: list[PPToken], location: SourceLocation) -> str:
        """
        The message of an #error or #warning, as written.

        The text need not be valid tokens ("don't" has an unmatched
        quote), so it is taken from the source line rather than from
        the lexer's tokens.
        """
        match = _MESSAGE_DIRECTIVE_RE.match(self._logical_source(location.line))
        if match is None:
            return "".join(t.text for t in rest).strip()
        return match.group("text").strip()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _record(self, error: PreprocessorError, fatal: bool = False) -> None:
        logger.debug(f"recorded: {error.message}")
        self.collector.add(error, fatal=fatal)

    def _on_lex_error(self, error: LexError) -> None:
        """
        Lexical errors count only in live regions, and never in the
        free-form text of #error and #warning.
        """
        if not self._is_live():
            logger.debug(f"ignoring lexical error in skipped region: {error.message}")
            return
        if error.location is not None and _MESSAGE_DIRECTIVE_RE.match(
            self._logical_source(error.location.line)
        ):
            logger.debug(f"ignoring lexical error in diagnostic text: {error.message}")
            return
        self._record(error)

    def _source_line(self, line: int) -> Optional[str]:
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None

    def _logical_source(self, line: int) -> str:
        """Source of the logical line containing physical `line`, splices joined."""
        if not 1 <= line <= len(self._lines):
            return ""
        start = line
        while start > 1 and self._lines[start - 2].endswith("\\"):
            start -= 1

        parts = []
        for text in self._lines[start - 1:]:
            if not text.endswith("\\"):
                parts.append(text)
                break
            parts.append(text[:-1])
        return "".join(parts)


# =============================================================================
# Convenience Functions
# =============================================================================

def preprocess(
    source: str,
    filename: str = "<input>",
    options: Optional[PreprocessorOptions] = None,
) -> PreprocessResult:
    """
    Preprocess C source text.

    Args:
        source: Source text to preprocess
        filename: Source filename for error reporting
        options: Preprocessor options

    Returns:
        PreprocessResult for the whole input
    """
    return DirectiveProcessor(source, filename, options).run()


def expand_text(text: str, table: Optional[MacroTable] = None) -> str:
    """
    Expand macros in a piece of text and return the result as text.

        >>> table = MacroTable()
        >>> table.define_from_text("SQUARE(x) ((x) * (x))")
        >>> expand_text("SQUARE(3)", table)
        '((3) * (3))'
    """
    if table is None:
        table = seed_builtins(MacroTable())
    return render_tokens(MacroExpander(table, source=text).expand(lex(text)))


def evaluate_condition(text: str, table: Optional[MacroTable] = None) -> bool:
    """Evaluate the text of an #if condition against `table`."""
    if table is None:
        table = seed_builtins(MacroTable())
    tokens = resolve_defined(lex(text), table.is_defined)
    expanded = MacroExpander(table, source=text).expand(tokens)
    return ExpressionEvaluator(is_defined=table.is_defined).evaluate(expanded).truthy
