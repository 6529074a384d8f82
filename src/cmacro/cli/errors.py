"""
CLI Error Handling
==================

Exit codes, exception handling and diagnostic reporting for the cmacro
command.

Diagnostics from a preprocessing run are not exceptions: the run
finishes and returns them. report_diagnostics() prints them the way a
compiler driver does and returns the exit code the command should use.
Exceptions (unreadable input, a bad -D value, an invalid predefine) go
through handle_cli_exception() instead.
"""

import sys
import traceback
from enum import IntEnum
from typing import Iterable, NoReturn

import click

from cmacro.preprocessor.errors import Diagnostic


class ExitCode(IntEnum):
    """Exit codes for the cmacro command."""
    SUCCESS = 0
    BUILD_ERROR = 1      # Preprocessing reported an error
    INVALID_ARGS = 2     # Bad option value or unreadable input
    INTERNAL_ERROR = 3   # Unexpected internal error


def report_diagnostics(diagnostics: Iterable[Diagnostic]) -> ExitCode:
    """
    Print diagnostics to stderr, followed by an error count if needed.

        flags.c:3:2: error: #error RXf_PMf_COMPILETIME is invalid
            #error RXf_PMf_COMPILETIME is invalid
            ^
        1 error generated

    Returns:
        BUILD_ERROR if any diagnostic is an error, else SUCCESS
    """
    errors = 0
    for diagnostic in diagnostics:
        click.echo(str(diagnostic), err=True)
        if diagnostic.is_error:
            errors += 1

    if errors:
        click.echo(f"{errors} error{'s' if errors != 1 else ''} generated", err=True)
        return ExitCode.BUILD_ERROR
    return ExitCode.SUCCESS


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report an exception raised while setting up or running the
    preprocessor, and exit.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    from cmacro.errors import CMacroError

    if isinstance(error, CMacroError):
        # Invalid predefine: already formatted with location and caret
        click.echo(str(error), err=True)
        sys.exit(ExitCode.BUILD_ERROR)

    elif isinstance(error, (OSError, UnicodeDecodeError)):
        click.echo(f"Error: cannot read input: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (click.BadParameter, ValueError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
