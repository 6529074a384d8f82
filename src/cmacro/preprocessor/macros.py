"""
Macro Definitions and Macro Table
=================================

This module holds macro definitions and the table that maps names to
them. It also parses the body of a #define directive into a
MacroDefinition and checks the rules that can be checked at definition
time.

Macro Kinds
-----------
- Object-like:   #define NAME replacement
- Function-like: #define NAME(a, b) replacement
- Variadic:      #define LOG(fmt, ...) printf(fmt, __VA_ARGS__)
- GNU variadic:  #define LOG(fmt, args...) printf(fmt, args)

Redefinition
------------
Redefining a macro with the same parameters and the same replacement
tokens (whitespace counts only as present or absent) is accepted
silently. Any other redefinition replaces the old definition and is
reported as a RedefinitionConflict, which the directive processor turns
into a warning.

Builtins
--------
Every table created through seed_builtins() knows:

    __STDC__            1
    __STDC_VERSION__    201112L
    __STDC_HOSTED__     1
    __FILE__            current file name (computed by the expander)
    __LINE__            current line (computed by the expander)
    _Pragma(x)          expands to nothing
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Iterator, Optional

from cmacro.errors import SourceLocation
from cmacro.preprocessor.errors import MacroDefinitionError
from cmacro.preprocessor.lexer import PPLexer, PPToken, PPTokenType

logger = logging.getLogger(__name__)

VA_ARGS = "__VA_ARGS__"

# Builtins whose value depends on where they are used
DYNAMIC_BUILTINS = ("__FILE__", "__LINE__")

STANDARD_PREDEFINES = {
    "__STDC__": "1",
    "__STDC_VERSION__": "201112L",
    "__STDC_HOSTED__": "1",
}


# =============================================================================
# Macro Definition
# =============================================================================

class MacroKind(Enum):
    """Whether a macro takes arguments."""
    OBJECT = auto()
    FUNCTION = auto()


@dataclass(frozen=True)
class MacroDefinition:
    """
    One macro definition.

    Attributes:
        name: Macro name
        kind: OBJECT or FUNCTION
        parameters: Parameter names in order; a trailing '...' is
            recorded as __VA_ARGS__ (or as the GNU named parameter)
        variadic: True if the last parameter collects extra arguments
        replacement: Replacement tokens, whitespace normalised to single
            spaces and trimmed at both ends
        version: Set by MacroTable.define; increases with every definition
        location: Where the macro was defined
        builtin: True for predefined macros
    """
    name: str
    kind: MacroKind = MacroKind.OBJECT
    parameters: tuple = ()
    variadic: bool = False
    replacement: tuple = ()
    version: int = 0
    location: Optional[SourceLocation] = None
    builtin: bool = False

    @property
    def is_function_like(self) -> bool:
        return self.kind == MacroKind.FUNCTION

    @property
    def body(self) -> str:
        """The replacement list as text."""
        return "".join(token.text for token in self.replacement)

    def signature(self) -> tuple:
        """Everything that must match for a redefinition to be benign."""
        body = tuple((token.type, token.text) for token in self.replacement)
        return (self.kind, self.parameters, self.variadic, body)

    def same_as(self, other: "MacroDefinition") -> bool:
        """Return True if `other` is an identical redefinition of this macro."""
        return self.signature() == other.signature()

    def __str__(self) -> str:
        head = self.name
        if self.is_function_like:
            params = list(self.parameters)
            if self.variadic:
                last = params.pop() if params else VA_ARGS
                params.append("..." if last == VA_ARGS else f"{last}...")
            head += f"({', '.join(params)})"
        body = self.body
        return f"#define {head} {body}" if body else f"#define {head}"


@dataclass(frozen=True)
class RedefinitionConflict:
    """
    Returned by MacroTable.define when a macro is redefined differently.

    The new definition has already replaced the old one; this record only
    exists so the caller can report a warning.
    """
    name: str
    previous: MacroDefinition
    current: MacroDefinition

    @property
    def message(self) -> str:
        return f"'{self.name}' redefined"

    @property
    def hint(self) -> Optional[str]:
        if self.previous.location is None:
            return None
        return f"previous definition is at {self.previous.location}"


@dataclass(frozen=True)
class MacroEvent:
    """One entry in the table's define/undef history."""
    action: str             # "define" or "undef"
    name: str
    version: int
    location: Optional[SourceLocation] = None


# =============================================================================
# Macro Table
# =============================================================================

class MacroTable:
    """
    Maps macro names to their current definitions.

    The table is owned by one directive processor. To give several
    workers identical starting tables, seed one and copy() it.

    Example:
        table = MacroTable()
        table.define(definition)
        if table.is_defined("DEBUG"):
            ...
    """

    def __init__(self):
        self._macros: dict[str, MacroDefinition] = {}
        self._history: list[MacroEvent] = []
        self._version = 0

    def define(self, definition: MacroDefinition) -> Optional[RedefinitionConflict]:
        """
        Insert or replace a definition.

        Returns:
            A RedefinitionConflict if a different definition was replaced,
            otherwise None
        """
        self._version += 1
        definition = replace(definition, version=self._version)
        previous = self._macros.get(definition.name)

        self._macros[definition.name] = definition
        self._history.append(
            MacroEvent("define", definition.name, self._version, definition.location)
        )
        logger.debug(f"defined {definition} (version {self._version})")

        if previous is not None and not previous.same_as(definition):
            return RedefinitionConflict(definition.name, previous, definition)
        return None

    def undefine(
        self, name: str, location: Optional[SourceLocation] = None
    ) -> Optional[MacroDefinition]:
        """Remove a definition if present. Returns the removed definition."""
        removed = self._macros.pop(name, None)
        if removed is not None:
            self._version += 1
            self._history.append(MacroEvent("undef", name, self._version, location))
            logger.debug(f"undefined {name}")
        return removed

    def lookup(self, name: str) -> Optional[MacroDefinition]:
        """Return the current definition of `name`, or None."""
        return self._macros.get(name)

    def is_defined(self, name: str) -> bool:
        return name in self._macros

    def __contains__(self, name: object) -> bool:
        return name in self._macros

    def __len__(self) -> int:
        return len(self._macros)

    def __iter__(self) -> Iterator[MacroDefinition]:
        return iter(self._macros.values())

    def names(self) -> list[str]:
        return sorted(self._macros)

    def user_defined(self) -> list[MacroDefinition]:
        """All definitions that are not builtins, in definition order."""
        return sorted(
            (d for d in self._macros.values() if not d.builtin),
            key=lambda d: d.version,
        )

    def history(self) -> list[MacroEvent]:
        """Every define and undef applied to this table, oldest first."""
        return list(self._history)

    def copy(self) -> "MacroTable":
        """Return an independent table with the same definitions."""
        table = MacroTable()
        table._macros = dict(self._macros)
        table._history = list(self._history)
        table._version = self._version
        return table

    def define_from_text(
        self,
        text: str,
        filename: str = "<command line>",
        builtin: bool = False,
    ) -> Optional[RedefinitionConflict]:
        """
        Define a macro from the text that would follow '#define'.

            table.define_from_text("MAX(a, b) ((a) > (b) ? (a) : (b))")
        """
        tokens = [
            token for token in PPLexer(text, filename).tokenize()
            if token.type != PPTokenType.EOF
        ]
        definition = parse_macro_definition(tokens, builtin=builtin)
        return self.define(definition)


def seed_builtins(table: MacroTable) -> MacroTable:
    """Add the predefined macros to `table` and return it."""
    for name, value in STANDARD_PREDEFINES.items():
        table.define_from_text(f"{name} {value}", "<built-in>", builtin=True)
    for name in DYNAMIC_BUILTINS:
        table.define(MacroDefinition(name, builtin=True))
    table.define_from_text("_Pragma(x)", "<built-in>", builtin=True)
    return table


# =============================================================================
# #define Parsing
# =============================================================================

def _skip_layout(tokens: list[PPToken], pos: int) -> int:
    while pos < len(tokens) and tokens[pos].is_layout:
        pos += 1
    return pos


def _normalise_replacement(tokens: list[PPToken]) -> tuple:
    """Collapse whitespace and comments to single spaces and trim both ends."""
    result: list[PPToken] = []
    for token in tokens:
        if token.is_layout:
            if result and result[-1].type != PPTokenType.WHITESPACE:
                result.append(
                    PPToken(
                        PPTokenType.WHITESPACE,
                        " ",
                        token.line,
                        token.column,
                        token.filename,
                    )
                )
            continue
        result.append(token)

    while result and result[-1].type == PPTokenType.WHITESPACE:
        result.pop()
    return tuple(result)


def _parse_parameters(
    tokens: list[PPToken], pos: int, name: str
) -> tuple[list[str], bool, int]:
    """
    Parse a parameter list starting just after '('.

    Returns:
        (parameter names, variadic flag, position after ')')
    """
    params: list[str] = []
    variadic = False

    pos = _skip_layout(tokens, pos)
    if pos < len(tokens) and tokens[pos].is_punct(")"):
        return params, variadic, pos + 1

    while True:
        pos = _skip_layout(tokens, pos)
        if pos >= len(tokens):
            raise MacroDefinitionError(
                "missing ')' in macro parameter list",
                macro_name=name,
                location=tokens[-1].location if tokens else None,
            )
        token = tokens[pos]

        if token.is_punct("..."):
            params.append(VA_ARGS)
            variadic = True
            pos += 1
        elif token.is_identifier():
            if token.text == VA_ARGS:
                raise MacroDefinitionError(
                    "__VA_ARGS__ can not be used as a parameter name",
                    macro_name=name,
                    location=token.location,
                )
            if token.text in params:
                raise MacroDefinitionError(
                    f"duplicate macro parameter '{token.text}'",
                    macro_name=name,
                    location=token.location,
                )
            params.append(token.text)
            pos = _skip_layout(tokens, pos + 1)
            # GNU named variadic parameter: args...
            if pos < len(tokens) and tokens[pos].is_punct("..."):
                variadic = True
                pos += 1
        else:
            raise MacroDefinitionError(
                f"expected parameter name, found '{token.text}'",
                macro_name=name,
                location=token.location,
            )

        pos = _skip_layout(tokens, pos)
        if pos >= len(tokens):
            continue
        separator = tokens[pos]
        if separator.is_punct(")"):
            return params, variadic, pos + 1
        if separator.is_punct(",") and not variadic:
            pos += 1
            continue
        expected = "')'" if variadic else "',' or ')'"
        raise MacroDefinitionError(
            f"expected {expected} in macro parameter list, found '{separator.text}'",
            macro_name=name,
            location=separator.location,
        )


def _check_operators(
    name: str, replacement: tuple, parameters: tuple, function_like: bool
) -> None:
    """Check the rules for '#' and '##' in a replacement list."""
    significant = [t for t in replacement if not t.is_layout]
    if not significant:
        return

    for edge in (significant[0], significant[-1]):
        if edge.is_punct("##"):
            raise MacroDefinitionError(
                "'##' cannot appear at either end of a macro expansion",
                macro_name=name,
                location=edge.location,
            )

    if not function_like:
        return

    for index, token in enumerate(significant):
        if not token.is_punct("#"):
            continue
        following = significant[index + 1] if index + 1 < len(significant) else None
        if following is None or not (
            following.is_identifier() and following.text in parameters
        ):
            raise MacroDefinitionError(
                "'#' is not followed by a macro parameter",
                macro_name=name,
                location=token.location,
            )


def parse_macro_definition(
    tokens: list[PPToken],
    location: Optional[SourceLocation] = None,
    builtin: bool = False,
) -> MacroDefinition:
    """
    Build a MacroDefinition from the tokens following '#define'.

    Args:
        tokens: The rest of the directive line (layout tokens included)
        location: Location of the directive, used when the name is missing
        builtin: Mark the definition as predefined

    Raises:
        MacroDefinitionError: If the definition is malformed
    """
    pos = _skip_layout(tokens, 0)
    if pos >= len(tokens):
        raise MacroDefinitionError(
            "no macro name given in #define directive",
            location=location,
        )

    name_token = tokens[pos]
    if not name_token.is_identifier():
        raise MacroDefinitionError(
            "macro names must be identifiers",
            location=name_token.location,
        )
    name = name_token.text
    if name == "defined":
        raise MacroDefinitionError(
            "'defined' cannot be used as a macro name",
            macro_name=name,
            location=name_token.location,
        )
    pos += 1

    parameters: list[str] = []
    variadic = False
    kind = MacroKind.OBJECT

    # A '(' directly after the name (no space) starts a parameter list
    if pos < len(tokens) and tokens[pos].is_punct("("):
        kind = MacroKind.FUNCTION
        parameters, variadic, pos = _parse_parameters(tokens, pos + 1, name)

    replacement = _normalise_replacement(tokens[_skip_layout(tokens, pos):])
    _check_operators(name, replacement, tuple(parameters), kind == MacroKind.FUNCTION)

    return MacroDefinition(
        name=name,
        kind=kind,
        parameters=tuple(parameters),
        variadic=variadic,
        replacement=replacement,
        location=name_token.location,
        builtin=builtin,
    )
