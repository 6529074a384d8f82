"""
cmacro - C Macro Preprocessor Command-Line Interface
====================================================

This module implements the command-line interface for the preprocessor.
It expands macros in a C source file, applies conditional directives,
and prints the result.

Usage Examples
--------------
Basic preprocessing:
    $ cmacro flags.c

With output file:
    $ cmacro flags.c -o flags.i

With predefined macros:
    $ cmacro -D DEBUG -D LEVEL=3 flags.c

Show how each #if was decided:
    $ cmacro --verdicts flags.c

Dump the token stream:
    $ cmacro --tokens flags.c
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from cmacro import __version__
from cmacro.cli.errors import ExitCode, handle_cli_exception, report_diagnostics
from cmacro.config import PreprocessorOptions
from cmacro.preprocessor.directives import PreprocessResult, preprocess

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )


def format_tokens(result: PreprocessResult) -> str:
    """One line per significant token: location, type and spelling."""
    lines = []
    for token in result.tokens:
        if token.is_layout:
            continue
        lines.append(f"{token.location}\t{token.type.name}\t{token.text}")
    return "\n".join(lines) + "\n" if lines else ""


def format_verdicts(result: PreprocessResult) -> str:
    """One line per branch-selecting directive."""
    outcome = {True: "taken", False: "not taken", None: "skipped"}
    lines = []
    for verdict in result.verdicts:
        head = f"#{verdict.directive} {verdict.condition}".rstrip()
        lines.append(f"{verdict.location}: {head} -> {outcome[verdict.taken]}")
    return "\n".join(lines) + "\n" if lines else ""


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write output to a file instead of stdout",
)
@click.option(
    "-D", "--define",
    "defines",
    multiple=True,
    metavar="NAME[=VALUE]",
    help="Predefine a macro (can be repeated)",
)
@click.option(
    "-U", "--undefine",
    "undefines",
    multiple=True,
    metavar="NAME",
    help="Remove a builtin or predefined macro (can be repeated)",
)
@click.option(
    "--max-depth",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum macro expansion nesting depth (default: 200)",
)
@click.option(
    "-C", "--keep-comments",
    is_flag=True,
    help="Keep comments in the output",
)
@click.option(
    "--warn-undef",
    is_flag=True,
    help="Warn when an undefined identifier is evaluated in #if",
)
@click.option(
    "--tokens",
    "dump_tokens",
    is_flag=True,
    help="Print the token stream instead of text",
)
@click.option(
    "--verdicts",
    is_flag=True,
    help="Print how each conditional directive was decided",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="cmacro")
def main(
    input_file: Path,
    output: Optional[Path],
    defines: tuple[str, ...],
    undefines: tuple[str, ...],
    max_depth: Optional[int],
    keep_comments: bool,
    warn_undef: bool,
    dump_tokens: bool,
    verdicts: bool,
    verbose: bool,
) -> None:
    """
    Expand macros and conditional directives in a C source file.

    INPUT_FILE is the C source file to preprocess.

    Diagnostics are written to stderr. The exit status is 1 if any
    error was reported, for example an #error directive in a live
    region.

    \b
    Examples:
        cmacro flags.c                 # Print expanded source
        cmacro flags.c -o flags.i      # Write to a file
        cmacro -D DEBUG=1 flags.c      # Predefine a macro
        cmacro --verdicts flags.c      # Show #if decisions
    """
    setup_logging(verbose)

    try:
        # Flags override CMACRO_* environment defaults
        options = PreprocessorOptions.from_env()
        if keep_comments:
            options.keep_comments = True
        if warn_undef:
            options.warn_undefined = True
        if max_depth is not None:
            options.max_expansion_depth = max_depth
        for text in defines:
            options.define(text)
        options.undefined.extend(undefines)

        logger.debug(f"Preprocessing {input_file}...")
        source = input_file.read_text(encoding="utf-8")
        result = preprocess(source, str(input_file), options)

    except Exception as e:
        handle_cli_exception(e, verbose=verbose)

    text = format_tokens(result) if dump_tokens else result.text
    if verdicts:
        text += format_verdicts(result)

    if output is not None:
        output.write_text(text, encoding="utf-8")
        logger.debug(f"Wrote {len(text)} characters to {output}")
    else:
        click.echo(text, nl=False)

    exit_code = report_diagnostics(result.diagnostics)
    if exit_code != ExitCode.SUCCESS:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
