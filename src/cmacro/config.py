"""
cmacro Configuration
====================

Options that control a preprocessing run. Options can come from:
- Default values (defined here)
- Environment variables (PreprocessorOptions.from_env)
- Command-line flags (cmacro.cli)

Environment Variables
---------------------
    CMACRO_DEFINES        Comma-separated predefines: "DEBUG,LEVEL=3"
    CMACRO_UNDEFINES      Comma-separated builtins to remove
    CMACRO_MAX_DEPTH      Expansion nesting bound (integer)
    CMACRO_MAX_ERRORS     Errors collected before stopping (integer)
    CMACRO_KEEP_COMMENTS  "1", "true" or "yes" to keep comments
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXPANSION_DEPTH = 200
DEFAULT_MAX_ERRORS = 100

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class PreprocessorOptions:
    """
    Preprocessor configuration options.

    Attributes:
        predefined: Macros to define before processing; a value of None
            defines the macro as 1, like '-D NAME'
        undefined: Names removed after builtins and predefines are set
        include_builtins: Define __STDC__, __FILE__, __LINE__ and friends
        max_expansion_depth: Nesting bound for macro expansion
        max_errors: Stop after this many errors
        keep_comments: Keep comments in the output instead of a space
        warn_undefined: Warn when an identifier in #if evaluates to 0
        no_expand: Macro names that are never expanded
    """
    predefined: dict[str, Optional[str]] = field(default_factory=dict)
    undefined: list[str] = field(default_factory=list)
    include_builtins: bool = True
    max_expansion_depth: int = DEFAULT_MAX_EXPANSION_DEPTH
    max_errors: int = DEFAULT_MAX_ERRORS
    keep_comments: bool = False
    warn_undefined: bool = False
    no_expand: set[str] = field(default_factory=set)

    def define(self, text: str) -> None:
        """Add a predefine written as 'NAME', 'NAME=VALUE' or 'F(x)=VALUE'."""
        name, sep, value = text.partition("=")
        name = name.strip()
        if not name:
            raise ValueError(f"invalid macro definition '{text}'")
        self.predefined[name] = value if sep else None

    def predefine_lines(self) -> list[str]:
        """The predefines as text that could follow '#define'."""
        lines = []
        for name, value in self.predefined.items():
            lines.append(f"{name} {1 if value is None else value}")
        return lines

    @classmethod
    def from_env(cls) -> "PreprocessorOptions":
        """
        Create PreprocessorOptions from environment variables.

        Invalid integer values are logged and ignored.

        Returns:
            PreprocessorOptions with values from environment variables
        """
        options = cls()

        if defines := os.environ.get("CMACRO_DEFINES"):
            for text in defines.split(","):
                if text.strip():
                    options.define(text)

        if undefines := os.environ.get("CMACRO_UNDEFINES"):
            options.undefined.extend(
                name.strip() for name in undefines.split(",") if name.strip()
            )

        if depth := os.environ.get("CMACRO_MAX_DEPTH"):
            try:
                options.max_expansion_depth = int(depth)
            except ValueError:
                logger.warning(f"ignoring invalid CMACRO_MAX_DEPTH={depth!r}")

        if max_errors := os.environ.get("CMACRO_MAX_ERRORS"):
            try:
                options.max_errors = int(max_errors)
            except ValueError:
                logger.warning(f"ignoring invalid CMACRO_MAX_ERRORS={max_errors!r}")

        if keep := os.environ.get("CMACRO_KEEP_COMMENTS"):
            options.keep_comments = keep.strip().lower() in _TRUE_VALUES

        return options


# Global default options (can be overridden)
_default_options: Optional[PreprocessorOptions] = None


def get_default_options() -> PreprocessorOptions:
    """
    Get the default options.

    On first use the options are read from the environment.
    """
    global _default_options
    if _default_options is None:
        _default_options = PreprocessorOptions.from_env()
    return _default_options


def set_default_options(options: Optional[PreprocessorOptions]) -> None:
    """Set the default options. Pass None to re-read the environment."""
    global _default_options
    _default_options = options
