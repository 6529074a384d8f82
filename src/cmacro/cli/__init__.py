"""
cmacro Command-Line Interface
=============================

This package provides the `cmacro` command, which preprocesses a C
source file and prints the expanded text, the token stream or the
verdicts of its conditional directives.

The tool is implemented as a Click-based CLI application.
"""

__all__ = ["cmacro"]
