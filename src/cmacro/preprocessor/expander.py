"""
Macro Expander
==============

This module rewrites a token sequence by replacing macro invocations
with their expansions, until no expandable invocation is left.

Algorithm
---------
The expander scans a work list from left to right. When an identifier
names a macro, its replacement is computed and pushed back onto the
front of the work list, so the result is rescanned in place together
with the rest of the input:

    #define TWO ONE + ONE
    #define ONE 1
    TWO * 2    ->    ONE + ONE * 2    ->    1 + 1 * 2

Recursion is stopped with hide sets. Every token carries the set of
macro names whose expansion produced it. A macro name found in its own
token's hide set is not expanded; the token is painted so it stays
unexpanded for good:

    #define A A + 1
    A    ->    A + 1      (the inner A is painted)

For object-like macros the hide set of the result is HS(name) + {name}.
For function-like macros it is (HS(name) & HS(')')) + {name}.

Function-like Invocations
-------------------------
The name must be followed by '(' (whitespace, comments and newlines may
come between them). Arguments are split on top-level commas. Each
argument is fully expanded on its own before it is substituted, except
where the parameter is an operand of '#' or '##'; those use the
argument's original tokens.

- '#param' becomes a string literal spelling the argument
- 'a ## b' joins two tokens; the joined text must lex as one token
- ', ## __VA_ARGS__' drops the comma when the variadic argument is empty

Builtins
--------
__FILE__ and __LINE__ expand to the file name and line of the token
being expanded.
"""

import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Optional

from cmacro.preprocessor.errors import (
    ArgumentCountError,
    LexError,
    PasteError,
    RecursionLimitError,
    UnterminatedInvocationError,
)
from cmacro.preprocessor.lexer import PPLexer, PPToken, PPTokenType
from cmacro.preprocessor.macros import (
    DYNAMIC_BUILTINS,
    MacroDefinition,
    MacroTable,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 200


# =============================================================================
# Expansion Context
# =============================================================================

@dataclass
class ExpansionContext:
    """
    State of one top-level expansion request.

    The set of macros being expanded lives in each token's hide set, so
    the context only tracks how deeply argument pre-expansion is nested
    and which macros were invoked. It is discarded when the request
    completes.

    Attributes:
        max_depth: Deepest nesting allowed before RecursionLimitError
        depth: Current nesting depth
        trace: Names of invoked macros, in invocation order
    """
    max_depth: int = DEFAULT_MAX_DEPTH
    depth: int = 0
    trace: list = field(default_factory=list)

    def nested(self) -> "ExpansionContext":
        """Context for expanding a macro argument one level down."""
        return ExpansionContext(self.max_depth, self.depth + 1, self.trace)


# =============================================================================
# Macro Expander
# =============================================================================

class MacroExpander:
    """
    Expands macro invocations in token sequences.

    Usage:
        expander = MacroExpander(table)
        output = expander.expand(tokens)

    Attributes:
        table: The MacroTable consulted for definitions
        max_depth: Default nesting bound for new contexts
        no_expand: Names that are never expanded
    """

    def __init__(
        self,
        table: MacroTable,
        max_depth: int = DEFAULT_MAX_DEPTH,
        no_expand: Iterable[str] = (),
        source: Optional[str] = None,
    ):
        """
        Initialize the expander.

        Args:
            table: Macro definitions to use
            max_depth: Expansion nesting bound
            no_expand: Macro names to leave untouched
            source: Source text, used to quote lines in error messages
        """
        self.table = table
        self.max_depth = max_depth
        self.no_expand = frozenset(no_expand)
        self._lines = source.splitlines() if source is not None else []

    def expand(
        self,
        tokens: Iterable[PPToken],
        context: Optional[ExpansionContext] = None,
    ) -> list[PPToken]:
        """
        Expand every macro invocation in `tokens`.

        Layout tokens (whitespace, comments, newlines) are kept where
        they are, except between a macro name and its argument list.

        Raises:
            MacroExpansionError: For malformed invocations, bad pastes
                or runaway nesting
        """
        if context is None:
            context = ExpansionContext(self.max_depth)

        tokens = [t for t in tokens if t.type != PPTokenType.EOF]
        result = self._expand(tokens, context)
        return [t for t in result if t.type != PPTokenType.PLACEMARKER]

    # =========================================================================
    # Rescanning
    # =========================================================================

    def _expand(self, tokens: list[PPToken], context: ExpansionContext) -> list[PPToken]:
        pending = deque(tokens)
        output: list[PPToken] = []

        while pending:
            token = pending.popleft()

            if token.type != PPTokenType.IDENTIFIER or token.painted:
                output.append(token)
                continue

            name = token.text
            definition = self.table.lookup(name)
            if definition is None or name in self.no_expand:
                output.append(token)
                continue

            if name in token.hideset:
                output.append(token.paint())
                continue

            if definition.builtin and name in DYNAMIC_BUILTINS:
                output.append(self._dynamic_builtin(token))
                continue

            if not definition.is_function_like:
                hideset = token.hideset | {name}
                self._check_limit(token, context, len(hideset))
                context.trace.append(name)
                body = self._substitute(definition, [], hideset, token, context)
                pending.extendleft(reversed(body))
                continue

            if not self._invocation_follows(pending):
                output.append(token)
                continue

            while pending[0].is_layout:
                pending.popleft()
            pending.popleft()  # '('

            args, rparen = self._collect_arguments(definition, token, pending)
            args = self._check_arguments(definition, token, args)

            hideset = (token.hideset & rparen.hideset) | {name}
            self._check_limit(token, context, len(hideset))
            context.trace.append(name)
            body = self._substitute(definition, args, hideset, token, context)
            pending.extendleft(reversed(body))

        return output

    def _check_limit(
        self, token: PPToken, context: ExpansionContext, hideset_size: int
    ) -> None:
        if context.depth > context.max_depth or hideset_size > context.max_depth:
            raise RecursionLimitError(
                token.text,
                context.max_depth,
                location=token.location,
                source_line=self._source_line(token),
            )

    def _dynamic_builtin(self, token: PPToken) -> PPToken:
        """Expand __FILE__ or __LINE__ at the position of `token`."""
        if token.text == "__LINE__":
            token_type, text = PPTokenType.NUMBER, str(token.line)
        else:
            escaped = token.filename.replace("\\", "\\\\").replace('"', '\\"')
            token_type, text = PPTokenType.STRING, f'"{escaped}"'
        return dataclasses.replace(
            token,
            type=token_type,
            text=text,
            hideset=token.hideset | {token.text},
        )

    # =========================================================================
    # Argument Collection
    # =========================================================================

    @staticmethod
    def _invocation_follows(pending: deque) -> bool:
        """True if the next significant token is '('."""
        for token in pending:
            if token.is_layout:
                continue
            return token.is_punct("(")
        return False

    def _collect_arguments(
        self,
        definition: MacroDefinition,
        name_token: PPToken,
        pending: deque,
    ) -> tuple[list[list[PPToken]], PPToken]:
        """
        Collect arguments up to the matching ')'.

        For a variadic macro, commas after the last named parameter stay
        inside the variadic argument. Newlines inside the argument list
        count as whitespace.

        Returns:
            (arguments with outer layout trimmed, the closing ')' token)
        """
        args: list[list[PPToken]] = [[]]
        named = len(definition.parameters)
        depth = 0

        while pending:
            token = pending.popleft()

            if token.is_punct("("):
                depth += 1
            elif token.is_punct(")"):
                if depth == 0:
                    return [self._trim(arg) for arg in args], token
                depth -= 1
            elif token.is_punct(",") and depth == 0:
                if not (definition.variadic and len(args) >= named):
                    args.append([])
                    continue
            elif token.type == PPTokenType.NEWLINE:
                token = dataclasses.replace(token, type=PPTokenType.WHITESPACE, text=" ")

            args[-1].append(token)

        raise UnterminatedInvocationError(
            definition.name,
            location=name_token.location,
            source_line=self._source_line(name_token),
        )

    @staticmethod
    def _trim(tokens: list[PPToken]) -> list[PPToken]:
        start, end = 0, len(tokens)
        while start < end and tokens[start].is_layout:
            start += 1
        while end > start and tokens[end - 1].is_layout:
            end -= 1
        return tokens[start:end]

    def _check_arguments(
        self,
        definition: MacroDefinition,
        name_token: PPToken,
        args: list[list[PPToken]],
    ) -> list[list[PPToken]]:
        """Check the argument count, filling in an omitted variadic argument."""
        expected = len(definition.parameters)

        # f() supplies no arguments to a macro without parameters
        if expected == 0 and len(args) == 1 and not args[0]:
            return []

        if definition.variadic and len(args) == expected - 1:
            return args + [[]]

        if len(args) != expected:
            variadic = definition.variadic
            raise ArgumentCountError(
                definition.name,
                expected - 1 if variadic else expected,
                len(args),
                variadic=variadic,
                location=name_token.location,
                source_line=self._source_line(name_token),
            )
        return args

    # =========================================================================
    # Substitution
    # =========================================================================

    def _substitute(
        self,
        definition: MacroDefinition,
        args: list[list[PPToken]],
        hideset: frozenset,
        origin: PPToken,
        context: ExpansionContext,
    ) -> list[PPToken]:
        """
        Build the replacement for one invocation.

        Parameters are replaced by their arguments, '#' and '##' are
        applied, and every resulting token gets `hideset` added to its
        own hide set. Tokens that come from the replacement list are
        placed at the invocation site.
        """
        params = {name: i for i, name in enumerate(definition.parameters)}
        body = definition.replacement
        expanded: dict[int, list[PPToken]] = {}
        function_like = definition.is_function_like

        result: list[PPToken] = []
        paste_at: set[int] = set()

        def neighbour(index: int, step: int) -> Optional[int]:
            """Index of the nearest non-layout body token in direction `step`."""
            index += step
            while 0 <= index < len(body):
                if not body[index].is_layout:
                    return index
                index += step
            return None

        def is_paste(index: Optional[int]) -> bool:
            return index is not None and body[index].is_punct("##")

        i = 0
        while i < len(body):
            token = body[i]

            # '#' param
            if function_like and token.is_punct("#"):
                operand = neighbour(i, 1)
                if operand is not None and body[operand].text in params:
                    arg = args[params[body[operand].text]]
                    result.append(self._stringize(arg, origin))
                    i = operand + 1
                    continue

            # '##' operator
            if token.is_punct("##"):
                while result and result[-1].type == PPTokenType.WHITESPACE:
                    result.pop()
                i += 1
                while i < len(body) and body[i].is_layout:
                    i += 1

                operand = body[i] if i < len(body) else None
                if (
                    definition.variadic
                    and operand is not None
                    and operand.text == definition.parameters[-1]
                    and result
                    and result[-1].is_punct(",")
                ):
                    # GNU comma elision
                    arg = args[params[operand.text]]
                    if not arg:
                        result.pop()
                    result.extend(arg)
                    i += 1
                    continue

                paste_at.add(len(result))
                continue

            if function_like and token.is_identifier() and token.text in params:
                index = params[token.text]
                if is_paste(neighbour(i, -1)) or is_paste(neighbour(i, 1)):
                    arg = args[index]
                    if arg:
                        result.extend(arg)
                    else:
                        result.append(self._placemarker(origin))
                else:
                    if index not in expanded:
                        expanded[index] = self._expand_argument(
                            definition, args[index], origin, context
                        )
                    result.extend(expanded[index])
                i += 1
                continue

            result.append(self._relocate(token, origin))
            i += 1

        if paste_at:
            result = self._apply_pastes(definition, result, paste_at, origin)

        return [t.with_hideset(t.hideset | hideset) for t in result]

    def _expand_argument(
        self,
        definition: MacroDefinition,
        arg: list[PPToken],
        origin: PPToken,
        context: ExpansionContext,
    ) -> list[PPToken]:
        """Fully expand one argument in isolation."""
        child = context.nested()
        self._check_limit(origin, child, 0)
        try:
            return self._expand(list(arg), child)
        except RecursionError:
            # The interpreter stack ran out before max_depth was reached
            raise RecursionLimitError(
                origin.text,
                context.depth,
                location=origin.location,
                source_line=self._source_line(origin),
            ) from None

    @staticmethod
    def _relocate(token: PPToken, origin: PPToken) -> PPToken:
        return dataclasses.replace(
            token,
            line=origin.line,
            column=origin.column,
            filename=origin.filename,
        )

    @staticmethod
    def _placemarker(origin: PPToken) -> PPToken:
        return PPToken(
            PPTokenType.PLACEMARKER, "", origin.line, origin.column, origin.filename
        )

    # =========================================================================
    # '#' and '##'
    # =========================================================================

    def _stringize(self, arg: list[PPToken], origin: PPToken) -> PPToken:
        """
        Spell an unexpanded argument as a string literal.

        Whitespace runs inside the argument become one space. Backslashes
        and double quotes inside string and character literals are
        escaped.
        """
        parts: list[str] = []
        space = False

        for token in arg:
            if token.is_layout:
                space = bool(parts)
                continue
            if space:
                parts.append(" ")
                space = False
            text = token.text
            if token.type in (PPTokenType.STRING, PPTokenType.CHAR_LITERAL):
                text = text.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(text)

        return PPToken(
            PPTokenType.STRING,
            '"' + "".join(parts) + '"',
            origin.line,
            origin.column,
            origin.filename,
        )

    def _apply_pastes(
        self,
        definition: MacroDefinition,
        items: list[PPToken],
        paste_at: set[int],
        origin: PPToken,
    ) -> list[PPToken]:
        """Join the tokens on either side of each '##' position."""
        output: list[PPToken] = []

        for index, token in enumerate(items):
            if index in paste_at and output:
                output.append(self._paste(definition, output.pop(), token, origin))
            else:
                output.append(token)

        return output

    def _paste(
        self,
        definition: MacroDefinition,
        left: PPToken,
        right: PPToken,
        origin: PPToken,
    ) -> PPToken:
        """
        Paste two tokens.

        A placemarker on either side yields the other token. Otherwise
        the joined spelling is lexed again and must be exactly one
        non-layout token.
        """
        if left.type == PPTokenType.PLACEMARKER:
            return right
        if right.type == PPTokenType.PLACEMARKER:
            return left

        text = left.text + right.text
        try:
            tokens = [
                t for t in PPLexer(text, origin.filename).tokenize()
                if t.type != PPTokenType.EOF
            ]
        except LexError as error:
            raise PasteError(
                definition.name,
                left.text,
                right.text,
                location=origin.location,
                source_line=self._source_line(origin),
            ) from error

        if len(tokens) != 1 or tokens[0].is_layout:
            raise PasteError(
                definition.name,
                left.text,
                right.text,
                location=origin.location,
                source_line=self._source_line(origin),
            )

        logger.debug(f"pasted '{left.text}' ## '{right.text}' -> '{text}'")
        return PPToken(
            tokens[0].type,
            text,
            origin.line,
            origin.column,
            origin.filename,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _source_line(self, token: PPToken) -> Optional[str]:
        if 1 <= token.line <= len(self._lines):
            return self._lines[token.line - 1]
        return None
