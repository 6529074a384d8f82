"""
Preprocessing Tokenizer
=======================

This module splits C source text into preprocessing tokens (pp-tokens).
Unlike a compiler lexer, it keeps every character of the input: whitespace,
comments and newlines come out as tokens too, so the directive processor
can find line boundaries and the expander can preserve spacing.

Token Categories
----------------
- Identifiers: letters, digits, '_' and '$', not starting with a digit
- Numbers: pp-numbers such as 42, 0x7FF, 1ULL, 1.5e+3, 0b101
- Strings: "double quoted", with optional L, u, U or u8 prefix
- Characters: 'single quoted', with optional L, u or U prefix
- Punctuators: longest match first, including '##', '...' and '<<='
- Other: any single character that starts none of the above, e.g. '@'
- Whitespace: runs of blanks and tabs
- Comments: // to end of line and /* ... */
- Newlines: one token per line end

Line Splicing
-------------
A backslash immediately followed by a newline is deleted before any
other processing, so

    #define LONG_NAME \\
        42

is a single logical line. Splices are invisible to tokens: a token's
text never contains one, and its position is that of its first
character.

Example Usage
-------------
>>> from cmacro.preprocessor.lexer import PPLexer
>>> for token in PPLexer("x = A(1);", "test.c").tokenize():
...     print(token)
Token(IDENTIFIER, 'x', 1:1)
Token(WHITESPACE, ' ', 1:2)
Token(PUNCTUATOR, '=', 1:3)
Token(WHITESPACE, ' ', 1:4)
Token(IDENTIFIER, 'A', 1:5)
Token(PUNCTUATOR, '(', 1:6)
Token(NUMBER, '1', 1:7)
Token(PUNCTUATOR, ')', 1:8)
Token(PUNCTUATOR, ';', 1:9)
Token(EOF, 1:10)
"""

import dataclasses
import logging
import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Iterable, Iterator, Optional

from cmacro.errors import SourceLocation
from cmacro.preprocessor.errors import LexError

logger = logging.getLogger(__name__)


# =============================================================================
# Token Type Enumeration
# =============================================================================

class PPTokenType(Enum):
    """
    Preprocessing token types.

    PLACEMARKER never comes out of the lexer. The expander uses it for
    an empty macro argument that is an operand of '##'.
    """

    # === Structural Tokens ===
    EOF = auto()            # End of input
    NEWLINE = auto()        # End of a logical line

    # === Identifiers and Literals ===
    IDENTIFIER = auto()     # Names, keywords, macro names
    NUMBER = auto()         # pp-number
    STRING = auto()         # String literals "..."
    CHAR_LITERAL = auto()   # Character literals '...'

    # === Operators and Separators ===
    PUNCTUATOR = auto()     # + - ## ... <<= etc.
    OTHER = auto()          # Any other character, such as '@' or a stray '\'

    # === Layout ===
    WHITESPACE = auto()     # Blanks and tabs
    COMMENT = auto()        # // and /* */ comments

    # === Expansion Internals ===
    PLACEMARKER = auto()    # Empty '##' operand


# Punctuators, longest first so that the scanner can take the first match
PUNCTUATORS: tuple[str, ...] = (
    "<<=", ">>=", "...",
    "->", "++", "--", "<<", ">>", "<=", ">=", "==", "!=", "&&", "||",
    "*=", "/=", "%=", "+=", "-=", "&=", "^=", "|=", "##",
    "[", "]", "(", ")", "{", "}", ".", "&", "*", "+", "-", "~", "!",
    "/", "%", "<", ">", "^", "|", "?", ":", ";", "=", ",", "#",
)

# Layout token types: never significant to expansion or evaluation
LAYOUT_TYPES = frozenset({
    PPTokenType.WHITESPACE,
    PPTokenType.COMMENT,
    PPTokenType.NEWLINE,
})

# Prefixes that turn a following quote into an encoded literal
LITERAL_PREFIXES = frozenset({"L", "u", "U", "u8"})


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class PPToken:
    """
    A single preprocessing token.

    Tokens are immutable. The expander never changes a token in place;
    it derives copies with a larger hide set or with the painted flag
    set.

    Attributes:
        type: The PPTokenType classification
        text: The exact spelling (line splices removed)
        line: Line number in source (1-indexed)
        column: Column number in source (1-indexed)
        filename: Name of the source file
        hideset: Names of the macros whose expansion produced this token
        painted: True when this identifier may never be expanded again
    """
    type: PPTokenType
    text: str
    line: int
    column: int
    filename: str = "<input>"
    hideset: frozenset = frozenset()
    painted: bool = False

    def __repr__(self) -> str:
        """Format token for debugging output."""
        if self.type in (PPTokenType.EOF, PPTokenType.PLACEMARKER):
            return f"Token({self.type.name}, {self.line}:{self.column})"
        return f"Token({self.type.name}, {self.text!r}, {self.line}:{self.column})"

    @property
    def location(self) -> SourceLocation:
        """Return a SourceLocation for error reporting."""
        return SourceLocation(self.filename, self.line, self.column)

    @property
    def is_layout(self) -> bool:
        """True for whitespace, comments and newlines."""
        return self.type in LAYOUT_TYPES

    def is_punct(self, text: str) -> bool:
        """Return True if this token is the punctuator `text`."""
        return self.type == PPTokenType.PUNCTUATOR and self.text == text

    def is_identifier(self, name: Optional[str] = None) -> bool:
        """Return True for an identifier, optionally with a given name."""
        if self.type != PPTokenType.IDENTIFIER:
            return False
        return name is None or self.text == name

    def with_hideset(self, hideset: frozenset) -> "PPToken":
        """Return a copy of this token carrying `hideset`."""
        return dataclasses.replace(self, hideset=hideset)

    def paint(self) -> "PPToken":
        """Return a copy of this token that can never be expanded."""
        return dataclasses.replace(self, painted=True)


# =============================================================================
# Lexer Implementation
# =============================================================================

class PPLexer:
    """
    Tokenizes C source text into preprocessing tokens.

    The token sequence covers the whole input with no gaps and always
    ends with an EOF token. tokenize() may be called any number of times;
    each call restarts from the beginning of the source.

    Errors are raised as LexError. If an `on_error` callback is given,
    the error is passed to it instead and scanning resumes at the end
    of the offending line.

    Usage:
        lexer = PPLexer(source_text, filename)
        tokens = list(lexer.tokenize())

    Attributes:
        source: The source text being tokenized
        filename: Name of the source file (for error reporting)
    """

    # Characters that can start an identifier
    IDENT_START = string.ascii_letters + "_$"

    # Characters that can continue an identifier
    IDENT_CHARS = string.ascii_letters + string.digits + "_$"

    # Horizontal whitespace
    BLANKS = " \t\f\v\r"

    # Characters allowed after a backslash in a literal
    SIMPLE_ESCAPES = "'\"?\\abfnrtv"

    def __init__(
        self,
        source: str,
        filename: str = "<input>",
        line_number: int = 1,
        on_error: Optional[Callable[[LexError], None]] = None,
    ):
        """
        Initialize the lexer with source text.

        Args:
            source: The C source text to tokenize
            filename: Name of the source file (for error messages)
            line_number: Line number of the first line
            on_error: Called with each LexError instead of raising it
        """
        self.source = source
        self.filename = filename
        self.first_line = line_number
        self.on_error = on_error
        self._reset()

    def _reset(self) -> None:
        self._pos = 0
        self._line = self.first_line
        self._column = 1
        self._line_start_pos = 0

        # Start of the token being scanned, for error locations
        self._start_line = self._line
        self._start_column = 1
        self._start_line_pos = 0

    def tokenize(self) -> Iterator[PPToken]:
        """
        Generate tokens from the source text.

        Yields:
            PPToken objects covering the input, then one EOF token

        Raises:
            LexError: If malformed input is found and no on_error is set
        """
        self._reset()

        while True:
            self._skip_splices()
            if self._at_end():
                break

            self._start_line = self._line
            self._start_column = self._column
            self._start_line_pos = self._line_start_pos

            try:
                token = self._scan_token()
            except LexError as error:
                if self.on_error is None:
                    raise
                logger.debug(f"recovered from lexical error: {error.message}")
                self.on_error(error)
                token = self._recover()
            yield token

        yield self._make_token(PPTokenType.EOF, "")

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _splice_length(self, pos: int) -> int:
        """Length of a backslash-newline splice at `pos`, or 0."""
        if self.source.startswith("\\\n", pos):
            return 2
        if self.source.startswith("\\\r\n", pos):
            return 3
        return 0

    def _skip_splices(self) -> None:
        """Consume any line splices at the current position."""
        while length := self._splice_length(self._pos):
            self._pos += length
            self._line += 1
            self._column = 1
            self._line_start_pos = self._pos

    def _physical_pos(self, offset: int) -> int:
        """Source index of the character `offset` logical characters ahead."""
        pos = self._pos
        while length := self._splice_length(pos):
            pos += length
        for _ in range(offset):
            pos += 1
            while length := self._splice_length(pos):
                pos += length
        return pos

    def _at_end(self) -> bool:
        """Check if we've reached the end of source."""
        return self._physical_pos(0) >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        """
        Look at the logical character `offset` ahead without advancing.

        Returns empty string if past end of source.
        """
        pos = self._physical_pos(offset)
        if pos >= len(self.source):
            return ""
        return self.source[pos]

    def _advance(self) -> str:
        """
        Consume and return the current logical character.

        Line splices in front of it are consumed first. Updates line and
        column tracking for error reporting.
        """
        self._skip_splices()
        if self._pos >= len(self.source):
            return ""

        char = self.source[self._pos]
        self._pos += 1

        if char == "\n":
            self._line += 1
            self._column = 1
            self._line_start_pos = self._pos
        else:
            self._column += 1

        return char

    def _match(self, expected: str) -> bool:
        """Consume next character if it matches expected."""
        if self._peek() == expected:
            self._advance()
            return True
        return False

    # =========================================================================
    # Token Creation
    # =========================================================================

    def _make_token(self, token_type: PPTokenType, text: str) -> PPToken:
        """Create a token positioned at the start of the current scan."""
        if token_type == PPTokenType.EOF:
            return PPToken(token_type, text, self._line, self._column, self.filename)
        return PPToken(
            token_type,
            text,
            self._start_line,
            self._start_column,
            self.filename,
        )

    def _error(self, message: str, hint: Optional[str] = None) -> LexError:
        """
        Create a LexError located at the start of the current token.

        Args:
            message: Error description
            hint: Optional hint for fixing
        """
        location = SourceLocation(
            self.filename, self._start_line, self._start_column
        )

        line_end = self.source.find("\n", self._start_line_pos)
        if line_end == -1:
            line_end = len(self.source)
        source_line = self.source[self._start_line_pos:line_end].rstrip("\r")

        return LexError(message, location, hint=hint, source_line=source_line)

    def _recover(self) -> PPToken:
        """
        Skip to the end of the current line after an error.

        The skipped text is returned as a WHITESPACE token so that the
        token sequence still has no gaps in position.
        """
        while not self._at_end() and self._peek() != "\n":
            self._advance()
        return self._make_token(PPTokenType.WHITESPACE, " ")

    # =========================================================================
    # Token Scanning
    # =========================================================================

    def _scan_token(self) -> PPToken:
        """Scan one token starting at the current position."""
        char = self._peek()

        if char == "\n":
            self._advance()
            return self._make_token(PPTokenType.NEWLINE, "\n")

        if char in self.BLANKS:
            return self._scan_whitespace()

        if char == "/" and self._peek(1) == "/":
            return self._scan_line_comment()

        if char == "/" and self._peek(1) == "*":
            return self._scan_block_comment()

        if char.isdigit() or (char == "." and self._peek(1).isdigit()):
            return self._scan_number()

        if char in self.IDENT_START:
            return self._scan_identifier()

        if char == '"':
            return self._scan_quoted('"', "")

        if char == "'":
            return self._scan_quoted("'", "")

        return self._scan_punctuator()

    def _scan_whitespace(self) -> PPToken:
        chars = []
        while self._peek() and self._peek() in self.BLANKS:
            chars.append(self._advance())
        return self._make_token(PPTokenType.WHITESPACE, "".join(chars))

    def _scan_line_comment(self) -> PPToken:
        """Scan a // comment up to, but not including, the newline."""
        chars = []
        while not self._at_end() and self._peek() != "\n":
            chars.append(self._advance())
        return self._make_token(PPTokenType.COMMENT, "".join(chars))

    def _scan_block_comment(self) -> PPToken:
        """Scan a /* ... */ comment, which may span lines."""
        chars = [self._advance(), self._advance()]

        while not self._at_end():
            if self._peek() == "*" and self._peek(1) == "/":
                chars.append(self._advance())
                chars.append(self._advance())
                return self._make_token(PPTokenType.COMMENT, "".join(chars))
            chars.append(self._advance())

        raise self._error(
            "unterminated comment",
            hint="add '*/' to close the comment",
        )

    def _scan_number(self) -> PPToken:
        """
        Scan a pp-number.

        A pp-number is deliberately loose: 0x1FULL, 1e+5 and even 1.2.3
        are single pp-numbers. The expression evaluator decides later
        whether the spelling is a valid integer constant.
        """
        chars = [self._advance()]

        while True:
            char = self._peek()
            if char in "eEpP" and char and self._peek(1) in ("+", "-"):
                chars.append(self._advance())
                chars.append(self._advance())
            elif char and (char in self.IDENT_CHARS or char == "."):
                chars.append(self._advance())
            else:
                break

        return self._make_token(PPTokenType.NUMBER, "".join(chars))

    def _scan_identifier(self) -> PPToken:
        """Scan an identifier, or an encoded literal such as L"wide"."""
        chars = []
        while self._peek() and self._peek() in self.IDENT_CHARS:
            chars.append(self._advance())
        text = "".join(chars)

        quote = self._peek()
        if text in LITERAL_PREFIXES and quote in ('"', "'"):
            return self._scan_quoted(quote, text)

        return self._make_token(PPTokenType.IDENTIFIER, text)

    def _scan_quoted(self, quote: str, prefix: str) -> PPToken:
        """
        Scan a string or character literal.

        Escape sequences are validated but kept verbatim in the token
        text, so the literal can be re-emitted exactly as written.
        """
        is_string = quote == '"'
        kind = "string literal" if is_string else "character constant"
        chars = [prefix, self._advance()]
        body_length = 0

        while True:
            char = self._peek()
            if char == "" or char == "\n":
                raise self._error(
                    f"unterminated {kind}",
                    hint=f"add closing {quote} to complete the {kind}",
                )
            if char == quote:
                chars.append(self._advance())
                break
            if char == "\\":
                chars.append(self._scan_escape())
            else:
                chars.append(self._advance())
            body_length += 1

        if not is_string and body_length == 0:
            raise self._error("empty character constant")

        token_type = PPTokenType.STRING if is_string else PPTokenType.CHAR_LITERAL
        return self._make_token(token_type, "".join(chars))

    def _scan_escape(self) -> str:
        """Scan and validate one escape sequence, returning its spelling."""
        chars = [self._advance()]
        char = self._peek()

        if char and char in self.SIMPLE_ESCAPES:
            chars.append(self._advance())
        elif char and char in "01234567":
            # Up to three octal digits
            for _ in range(3):
                if not (self._peek() and self._peek() in "01234567"):
                    break
                chars.append(self._advance())
        elif char == "x":
            chars.append(self._advance())
            if not (self._peek() and self._peek() in string.hexdigits):
                raise self._error(
                    "\\x used with no following hex digits",
                    hint="write the value as \\xNN",
                )
            while self._peek() and self._peek() in string.hexdigits:
                chars.append(self._advance())
        elif char in ("u", "U"):
            chars.append(self._advance())
            width = 4 if char == "u" else 8
            for _ in range(width):
                if not (self._peek() and self._peek() in string.hexdigits):
                    raise self._error(
                        f"incomplete universal character name \\{char}",
                        hint=f"\\{char} needs exactly {width} hex digits",
                    )
                chars.append(self._advance())
        else:
            shown = char if char and char != "\n" else ""
            raise self._error(
                f"invalid escape sequence '\\{shown}'",
                hint="use '\\\\' for a literal backslash",
            )

        return "".join(chars)

    def _scan_punctuator(self) -> PPToken:
        """
        Scan a punctuator using longest match.

        A character that starts no token is a token of its own; whether
        it is acceptable depends on where it ends up.
        """
        for punct in PUNCTUATORS:
            if all(self._peek(i) == c for i, c in enumerate(punct)):
                for _ in punct:
                    self._advance()
                return self._make_token(PPTokenType.PUNCTUATOR, punct)

        return self._make_token(PPTokenType.OTHER, self._advance())


# =============================================================================
# Rendering
# =============================================================================

def lex(source: str, filename: str = "<input>") -> list[PPToken]:
    """Tokenize `source` completely, without the trailing EOF token."""
    return [
        token for token in PPLexer(source, filename).tokenize()
        if token.type != PPTokenType.EOF
    ]


def needs_separator(left: PPToken, right: PPToken) -> bool:
    """
    Return True if writing `left` and `right` side by side would lex as
    something other than the same two tokens.

    Used when printing an expanded token stream, where two tokens that
    came from different places can end up adjacent:

        #define NEG -x
        -NEG    ->    - -x    (not --x)
    """
    if left.is_layout or right.is_layout:
        return False
    if not left.text or not right.text:
        return False

    word_types = (PPTokenType.IDENTIFIER, PPTokenType.NUMBER)
    if left.type in word_types and right.type in word_types:
        return True

    # L"x", u8"x" and friends
    if left.type == PPTokenType.IDENTIFIER and right.type in (
        PPTokenType.STRING,
        PPTokenType.CHAR_LITERAL,
    ):
        return left.text in LITERAL_PREFIXES

    if left.type == PPTokenType.NUMBER:
        if right.text[0] == ".":
            return True
        if left.text[-1] in "eEpP" and right.text[0] in "+-":
            return True

    if left.is_punct(".") and right.type == PPTokenType.NUMBER:
        return right.text[0].isdigit()

    if left.type == PPTokenType.PUNCTUATOR and right.type == PPTokenType.PUNCTUATOR:
        joined = left.text + right.text[0]
        if joined in ("//", "/*"):
            return True
        return any(
            len(punct) > len(left.text) and punct.startswith(joined)
            for punct in PUNCTUATORS
        )

    return False


def render_tokens(tokens: Iterable[PPToken]) -> str:
    """
    Join token spellings back into text.

    A single space is inserted between two adjacent tokens only where
    they would otherwise merge into a different token.
    """
    parts = []
    previous: Optional[PPToken] = None

    for token in tokens:
        if token.type in (PPTokenType.EOF, PPTokenType.PLACEMARKER):
            continue
        if previous is not None and needs_separator(previous, token):
            parts.append(" ")
        parts.append(token.text)
        previous = token

    return "".join(parts)
