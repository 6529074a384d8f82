"""
cmacro Test Configuration
=========================

Shared fixtures for the cmacro test suite.
"""

from pathlib import Path

import pytest

from cmacro.config import PreprocessorOptions, set_default_options


# =============================================================================
# Paths
# =============================================================================

@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    """
    Fixture: Directory holding the C source fixtures.
    """
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def read_fixture(fixtures_dir: Path):
    """
    Fixture: Read a C fixture by file name.

    Returns (source text, path as a string) so tests can pass the
    filename on to the preprocessor.
    """
    def _read(name: str) -> tuple[str, str]:
        path = fixtures_dir / name
        return path.read_text(encoding="utf-8"), str(path)
    return _read


# =============================================================================
# Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_options(monkeypatch):
    """
    Fixture: Keep CMACRO_* variables from the developer's shell out of
    the tests and reset the cached default options around each test.
    """
    for name in (
        "CMACRO_DEFINES",
        "CMACRO_UNDEFINES",
        "CMACRO_MAX_DEPTH",
        "CMACRO_MAX_ERRORS",
        "CMACRO_KEEP_COMMENTS",
    ):
        monkeypatch.delenv(name, raising=False)
    set_default_options(PreprocessorOptions())
    yield
    set_default_options(None)
