# =============================================================================
# test_macros.py - Macro Definition and Macro Table Tests
# =============================================================================
# Tests for #define parsing and the MacroTable.
#
# Test coverage includes:
#   - Object-like, function-like and variadic definitions
#   - Replacement list normalisation
#   - Definition-time errors ('#', '##', parameters)
#   - define/undefine/lookup and redefinition conflicts
#   - Builtin macros
# =============================================================================

import pytest

from cmacro.preprocessor.errors import MacroDefinitionError
from cmacro.preprocessor.lexer import lex
from cmacro.preprocessor.macros import (
    VA_ARGS,
    MacroKind,
    MacroTable,
    parse_macro_definition,
    seed_builtins,
)


# =============================================================================
# Helper Function
# =============================================================================

def parse(text: str):
    """Parse the text that would follow '#define'."""
    return parse_macro_definition(lex(text, "<test>"))


# =============================================================================
# Definition Parsing Tests
# =============================================================================

class TestObjectLikeDefinitions:
    """#define NAME replacement"""

    def test_simple_value(self):
        definition = parse("SHIFT_A 4")
        assert definition.name == "SHIFT_A"
        assert definition.kind == MacroKind.OBJECT
        assert definition.body == "4"

    def test_empty_replacement(self):
        definition = parse("EMPTY")
        assert definition.replacement == ()
        assert str(definition) == "#define EMPTY"

    def test_whitespace_normalised(self):
        definition = parse("X  a   +\t b   ")
        assert definition.body == "a + b"

    def test_comment_becomes_space(self):
        definition = parse("X a/* note */b")
        assert definition.body == "a b"

    def test_space_before_paren_makes_object_like(self):
        definition = parse("F (x) x")
        assert definition.kind == MacroKind.OBJECT
        assert definition.body == "(x) x"

    def test_location_is_name_token(self):
        definition = parse("  NAME 1")
        assert definition.location.column == 3


class TestFunctionLikeDefinitions:
    """#define NAME(params) replacement"""

    def test_parameters(self):
        definition = parse("MAX(a, b) ((a) > (b) ? (a) : (b))")
        assert definition.kind == MacroKind.FUNCTION
        assert definition.is_function_like
        assert definition.parameters == ("a", "b")
        assert not definition.variadic

    def test_no_parameters(self):
        definition = parse("F() 1")
        assert definition.is_function_like
        assert definition.parameters == ()

    def test_variadic(self):
        definition = parse("LOG(fmt, ...) printf(fmt, __VA_ARGS__)")
        assert definition.variadic
        assert definition.parameters == ("fmt", VA_ARGS)

    def test_gnu_named_variadic(self):
        definition = parse("LOG(fmt, args...) printf(fmt, args)")
        assert definition.variadic
        assert definition.parameters == ("fmt", "args")

    def test_str_round_trip(self):
        assert str(parse("F(a, ...) a")) == "#define F(a, ...) a"
        assert str(parse("G(x, rest...) x")) == "#define G(x, rest...) x"
        assert str(parse("nBIT_MASK(n) (((1ULL) << (n)) - 1)")) == (
            "#define nBIT_MASK(n) (((1ULL) << (n)) - 1)"
        )

    def test_stringize_parameter_accepted(self):
        definition = parse("STR(x) #x")
        assert definition.body == "#x"

    def test_paste_accepted(self):
        definition = parse("UINTMAX_C(c) c ## UL")
        assert definition.body == "c ## UL"


class TestDefinitionErrors:
    """Malformed #define directives."""

    def test_missing_name(self):
        with pytest.raises(MacroDefinitionError, match="no macro name given"):
            parse_macro_definition([])

    def test_name_must_be_identifier(self):
        with pytest.raises(MacroDefinitionError, match="macro names must be identifiers"):
            parse("123 x")

    def test_defined_is_reserved(self):
        with pytest.raises(MacroDefinitionError, match="'defined' cannot be used"):
            parse("defined 1")

    def test_duplicate_parameter(self):
        with pytest.raises(MacroDefinitionError, match="duplicate macro parameter 'a'"):
            parse("F(a, a) a")

    def test_bad_parameter(self):
        with pytest.raises(MacroDefinitionError, match="expected parameter name"):
            parse("F(1) x")

    def test_missing_close_paren(self):
        with pytest.raises(MacroDefinitionError, match="missing '\\)'"):
            parse("F(a, b")

    def test_va_args_as_parameter(self):
        with pytest.raises(MacroDefinitionError, match="__VA_ARGS__ can not be used"):
            parse("F(__VA_ARGS__) 1")

    def test_parameter_after_ellipsis(self):
        with pytest.raises(MacroDefinitionError, match="expected '\\)'"):
            parse("F(..., a) 1")

    def test_paste_at_start(self):
        with pytest.raises(MacroDefinitionError, match="'##' cannot appear"):
            parse("F(a) ## a")

    def test_paste_at_end(self):
        with pytest.raises(MacroDefinitionError, match="'##' cannot appear"):
            parse("X a ##")

    def test_stringize_non_parameter(self):
        with pytest.raises(MacroDefinitionError, match="'#' is not followed"):
            parse("F(a) #b")

    def test_hash_allowed_in_object_like(self):
        """'#' has no special meaning in an object-like macro."""
        assert parse("HASH # x").body == "# x"

    def test_error_carries_macro_name(self):
        with pytest.raises(MacroDefinitionError) as exc_info:
            parse("F(a, a) a")
        assert exc_info.value.macro_name == "F"


# =============================================================================
# Macro Table Tests
# =============================================================================

class TestMacroTable:
    """define / undefine / lookup."""

    def test_define_and_lookup(self):
        table = MacroTable()
        table.define(parse("A 1"))
        assert table.is_defined("A")
        assert "A" in table
        assert table.lookup("A").body == "1"

    def test_lookup_missing(self):
        table = MacroTable()
        assert table.lookup("A") is None
        assert not table.is_defined("A")

    def test_undefine(self):
        table = MacroTable()
        table.define(parse("A 1"))
        removed = table.undefine("A")
        assert removed.name == "A"
        assert not table.is_defined("A")

    def test_undefine_missing_is_noop(self):
        table = MacroTable()
        assert table.undefine("NOPE") is None
        assert table.history() == []

    def test_versions_increase(self):
        table = MacroTable()
        table.define(parse("A 1"))
        table.define(parse("B 2"))
        assert table.lookup("A").version < table.lookup("B").version

    def test_identical_redefinition_is_silent(self):
        table = MacroTable()
        assert table.define(parse("A (1 + 2)")) is None
        assert table.define(parse("A   (1 +  2)")) is None

    def test_different_redefinition_conflicts(self):
        table = MacroTable()
        table.define(parse("A 1"))
        conflict = table.define(parse("A 2"))
        assert conflict is not None
        assert conflict.name == "A"
        assert conflict.previous.body == "1"
        assert conflict.current.body == "2"
        assert table.lookup("A").body == "2"

    def test_parameter_change_conflicts(self):
        table = MacroTable()
        table.define(parse("F(a) a"))
        conflict = table.define(parse("F(a, b) a"))
        assert conflict is not None
        assert table.lookup("F").parameters == ("a", "b")

    def test_whitespace_presence_matters(self):
        table = MacroTable()
        table.define(parse("A a+b"))
        assert table.define(parse("A a + b")) is not None

    def test_conflict_message_and_hint(self):
        table = MacroTable()
        table.define_from_text("A 1", "one.c")
        conflict = table.define_from_text("A 2", "two.c")
        assert conflict.message == "'A' redefined"
        assert conflict.hint == "previous definition is at one.c:1:1"

    def test_history(self):
        table = MacroTable()
        table.define(parse("A 1"))
        table.undefine("A")
        assert [(e.action, e.name) for e in table.history()] == [
            ("define", "A"),
            ("undef", "A"),
        ]

    def test_copy_is_independent(self):
        table = MacroTable()
        table.define(parse("A 1"))
        copy = table.copy()
        copy.define(parse("B 2"))
        copy.undefine("A")
        assert table.is_defined("A")
        assert not table.is_defined("B")

    def test_names_sorted(self):
        table = MacroTable()
        table.define(parse("B 1"))
        table.define(parse("A 1"))
        assert table.names() == ["A", "B"]
        assert len(table) == 2

    def test_iteration(self):
        table = MacroTable()
        table.define(parse("A 1"))
        assert [d.name for d in table] == ["A"]

    def test_define_from_text(self):
        table = MacroTable()
        table.define_from_text("SQUARE(x) ((x) * (x))")
        definition = table.lookup("SQUARE")
        assert definition.parameters == ("x",)
        assert definition.location.filename == "<command line>"


# =============================================================================
# Builtin Tests
# =============================================================================

class TestBuiltins:
    """Predefined macros."""

    def test_standard_predefines(self):
        table = seed_builtins(MacroTable())
        assert table.lookup("__STDC__").body == "1"
        assert table.lookup("__STDC_VERSION__").body == "201112L"
        assert table.lookup("__STDC_HOSTED__").body == "1"

    def test_dynamic_builtins_present(self):
        table = seed_builtins(MacroTable())
        assert table.is_defined("__FILE__")
        assert table.is_defined("__LINE__")

    def test_pragma_operator(self):
        definition = seed_builtins(MacroTable()).lookup("_Pragma")
        assert definition.is_function_like
        assert definition.replacement == ()

    def test_builtins_flagged(self):
        table = seed_builtins(MacroTable())
        assert all(d.builtin for d in table)
        assert table.user_defined() == []

    def test_user_defined_in_order(self):
        table = seed_builtins(MacroTable())
        table.define_from_text("B 1")
        table.define_from_text("A 1")
        assert [d.name for d in table.user_defined()] == ["B", "A"]
