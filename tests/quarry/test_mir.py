"""Tests for name and variable resolution."""

from quarry import Quarry, QuarryCompileError, QuarryDefinitions, QuarryLexer, QuarryNative, QuarryParser
from quarry.quarry_filter import QuarryBind, QuarryLiteral, QuarryNativeCall
from quarry.quarry_mir import QuarryMir, QuarryMirCall, QuarryMirVar


def parse(text):
    return QuarryParser(QuarryLexer().lex(text), text).parse()


def parse_defs(text):
    return QuarryParser(QuarryLexer().lex(text), text).parse_definitions()


def constant_native(name, value):
    """A native of arity 0 that outputs value."""
    return QuarryNative(name, 0, lambda evaluator, args, ctx, input_value: iter([value]))


class TestQuarryMirShadowing:
    """Test that later insertions hide earlier ones for the text after them."""

    def test_definition_shadows_native_for_later_text(self):
        """Test that code before a redefinition keeps the native binding."""
        definitions = QuarryDefinitions()
        definitions.insert_native(constant_native("f", "A"))
        errs = []
        definitions.insert_definitions(parse_defs('def before: f; def f: "B"; def after: f;'), errs)
        compiled = definitions.finish(parse("[before, after, f]"), errs)

        assert errs == []
        assert list(compiled.run()) == [["A", "B", "B"]]

    def test_local_definition_scope_ends_with_its_body(self):
        """Test that a local definition is only visible inside its body."""
        definitions = QuarryDefinitions()
        definitions.insert_native(constant_native("f", "A"))
        errs = []
        compiled = definitions.finish(parse('[f, (def f: "B"; f), f]'), errs)

        assert errs == []
        assert list(compiled.run()) == [["A", "B", "A"]]

    def test_redefinition_at_same_depth_wins_for_later_text(self):
        """Test that the most recent of two same-arity definitions is used."""
        definitions = QuarryDefinitions()
        errs = []
        definitions.insert_definitions(parse_defs("def f: 1; def g: f; def f: 2;"), errs)
        compiled = definitions.finish(parse("[g, f]"), errs)
        assert list(compiled.run()) == [[1, 2]]

    def test_arity_distinguishes_definitions(self):
        """Test that f/0 and f/1 are different filters."""
        definitions = QuarryDefinitions()
        errs = []
        definitions.insert_definitions(parse_defs("def f: 0; def f(x): x;"), errs)
        compiled = definitions.finish(parse("[f, f(5)]"), errs)
        assert list(compiled.run()) == [[0, 5]]

    def test_call_to_native_resolves_directly(self):
        """Test that a native call becomes a native call node."""
        mir = QuarryMir()
        native = constant_native("f", 1)
        mir.insert_native(native)
        root = mir.finish(parse("f"), [])
        assert isinstance(root.body, QuarryNativeCall)
        assert root.body.native is native

    def test_calls_are_recorded(self):
        """Test that the static call graph is recorded per definition."""
        mir = QuarryMir()
        errs = []
        recursive = mir.insert_definition(parse_defs("def f: f;")[0], errs)
        root = mir.finish(parse("f"), errs)

        assert isinstance(root.body, QuarryMirCall)
        assert root.calls == {recursive.id}
        assert recursive.calls == {recursive.id}


class TestQuarryMirVariables:
    """Test variable resolution."""

    def test_nominal_positions_count_globals_first(self):
        """Test that variables are numbered from the oldest binding."""
        mir = QuarryMir(["g"])
        root = mir.finish(parse(". as $x | [$g, $x]"), [])

        assert isinstance(root.body, QuarryBind)
        array_body = root.body.body.body
        assert isinstance(array_body.lhs, QuarryMirVar) and array_body.lhs.position == 0
        assert isinstance(array_body.rhs, QuarryMirVar) and array_body.rhs.position == 1

    def test_inner_binding_shadows_outer(self):
        """Test that the most recent binding of a name is used."""
        quarry = Quarry(include_std=False)
        assert quarry.evaluate("1 as $x | 2 as $x | $x", None) == [2]

    def test_value_parameters_are_also_filters(self):
        """Test that a `$x` parameter can be used as `$x` or called as `x`."""
        quarry = Quarry(include_std=False)
        assert quarry.evaluate("def f($x): x; f(1)", None) == [1]
        assert quarry.evaluate("def f($x): x + $x; f(2)", None) == [4]
        assert quarry.evaluate("def f($x): [x]; f(1, 2)", None) == [[1], [2]]

    def test_value_parameter_filter_ignores_later_bindings(self):
        """Test that calling `x` gives the parameter even under a new `$x`."""
        quarry = Quarry(include_std=False)
        assert quarry.evaluate("def f($x): 5 as $x | [x, $x]; f(1)", None) == [[1, 5]]

    def test_value_parameter_filter_takes_no_arguments(self):
        """Test that the parameter filter exists only with arity 0."""
        quarry = Quarry(include_std=False)
        _, errs = quarry.compile_with_errors("def f($x): x(1); f(1)")
        assert [e.kind for e in errs] == [QuarryCompileError.ARITY]

    def test_value_parameter_filter_in_recursion(self):
        """Test the parameter filter inside a recursive definition."""
        quarry = Quarry(include_std=False)
        assert quarry.evaluate("def f($n): if n > 0 then n, f(n - 1) else empty end; [f(3)]", None) == [[3, 2, 1]]

    def test_location_variable(self):
        """Test that $__loc__ gives the file and line."""
        root = QuarryMir().finish(parse("\n$__loc__"), [])
        assert isinstance(root.body, QuarryLiteral)
        assert root.body.value == {"file": "<stdin>", "line": 2}

    def test_global_variables_are_supplied_at_run_time(self):
        """Test running with global variable values."""
        quarry = Quarry(global_vars=["a", "b"], include_std=False)
        assert quarry.evaluate("[$a, $b]", None, variables=[1, 2]) == [[1, 2]]


class TestQuarryMirErrors:
    """Test error collection."""

    def test_undefined_filter_and_unbound_variable_together(self):
        """Test that one compilation reports both problems and gives the identity filter."""
        quarry = Quarry()
        compiled, errs = quarry.compile_with_errors("g(1; 2) | $x")

        assert {e.kind for e in errs} == {QuarryCompileError.UNDEFINED_FILTER, QuarryCompileError.UNBOUND_VARIABLE}
        assert compiled.is_identity()
        assert list(compiled.run(value=7)) == [7]

    def test_arity_mismatch_lists_available_arities(self):
        """Test the arity error for a known name."""
        quarry = Quarry()
        _, errs = quarry.compile_with_errors("map(.; .)")

        assert len(errs) == 1
        assert errs[0].kind == QuarryCompileError.ARITY
        assert "map/1" in errs[0].expected

    def test_misspelt_name_gets_suggestion(self):
        """Test the similar-name suggestion."""
        quarry = Quarry()
        _, errs = quarry.compile_with_errors("lenght")
        assert "length" in errs[0].suggestion

    def test_errors_inside_arguments_are_reported(self):
        """Test that an unresolvable call still resolves its arguments."""
        quarry = Quarry(include_std=False)
        _, errs = quarry.compile_with_errors("nope($y)")
        assert [e.kind for e in errs] == [QuarryCompileError.UNBOUND_VARIABLE, QuarryCompileError.UNDEFINED_FILTER]

    def test_errors_carry_positions(self):
        """Test that compile errors point at the offending text."""
        quarry = Quarry(include_std=False)
        _, errs = quarry.compile_with_errors(".a |\n  $missing")
        assert (errs[0].line, errs[0].column) == (2, 3)
