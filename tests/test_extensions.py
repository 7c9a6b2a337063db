import os

import pytest

from extensions import (
    EngExtensionError,
    ExtensionAPI,
    RuntimeServices,
    load_extension_module,
    load_runtime_services,
)
from storage import EngRuntimeError, Limits
from values import text

STRINGS_EXT = os.path.join(os.path.dirname(os.path.dirname(__file__)), "ext", "strings.py")


def _services(name="test"):
    services = RuntimeServices()
    return services, ExtensionAPI(services=services, ext_name=name)


def test_strings_extension_statements(run_source):
    services = load_runtime_services([STRINGS_EXT])
    assert [meta.name for meta in services.metadata] == ["strings"]
    run = run_source(
        """
        uppercase "abc" into up
        set word to "Hello"
        lowercase word into low
        reverse word into back
        trim "  padded  " into tight
        """,
        services=services,
    )
    assert run.var("up") == "ABC"
    assert run.var("low") == "hello"
    assert run.var("back") == "olleH"
    assert run.var("tight") == "padded"
    assert run.errors == []


def test_extension_statement_decorator(run_source):
    services, ext = _services()

    @ext.statement("shout _")
    def shout(interpreter, tokens, index):
        interpreter.write(interpreter.text_of(tokens[1]).upper() + "!\n")

    run = run_source('shout "hey"', services=services)
    assert run.output == "HEY!\n"


def test_extension_handler_can_jump(run_source):
    services, ext = _services()

    @ext.statement("goto _")
    def goto(interpreter, tokens, index):
        return int(interpreter.number_of(tokens[1])) - 1

    run = run_source(
        """
        goto 3
        print "skipped"
        print "landed"
        """,
        services=services,
    )
    assert run.output == "landed\n"


def test_builtin_forms_take_precedence(run_source):
    services, ext = _services()
    ext.register_statement("print _", lambda interpreter, tokens, index: interpreter.write("hijacked\n"))
    run = run_source("print 1", services=services)
    assert run.output == "1\n"


def test_statement_pattern_validation():
    _, ext = _services()
    with pytest.raises(EngExtensionError):
        ext.register_statement("   ", lambda *args: None)
    with pytest.raises(EngExtensionError):
        ext.register_statement("_ into _", lambda *args: None)


def test_lifecycle_events(run_source):
    services, ext = _services()
    seen = []
    ext.on_event("program_start", lambda interpreter, program: seen.append(("start", len(program))))
    ext.on_event("after_call", lambda interpreter, name, location: seen.append(("call", name, location.line)))
    ext.on_event("program_end", lambda interpreter, code: seen.append(("end", code)))
    run_source(
        """
        define f as
          print 1
        end define
        call f
        """,
        services=services,
    )
    assert seen == [("start", 4), ("call", "f", 4), ("end", 0)]


def test_program_end_reports_stop(run_source):
    services, ext = _services()
    codes = []
    ext.on_event("program_end", lambda interpreter, code: codes.append(code))
    run = run_source("stop", services=services)
    assert run.exit_code == 0
    assert codes == [0]


def test_statement_hooks_see_locations(run_source):
    services, ext = _services()
    lines = []

    @ext.on_event("before_statement")
    def before(interpreter, location):
        lines.append(location.line)

    run_source(
        """
        set x to 1

        # comment
        print x
        """,
        services=services,
    )
    assert lines == [1, 4]


def test_hook_priority_order(run_source):
    services, ext = _services()
    order = []
    ext.on_event("program_start", lambda interpreter, program: order.append("low"), priority=1)
    ext.on_event("program_start", lambda interpreter, program: order.append("high"), priority=10)
    run_source("print 1", services=services)
    assert order == ["high", "low"]


def test_step_rule_runs_every_n_steps(run_source):
    services, ext = _services()
    fired = []

    @ext.every_n_steps(2)
    def every_other(interpreter, ctx):
        fired.append((ctx.step_index, ctx.rule))

    run_source(
        """
        set a to 1
        set b to 2
        print a
        print b
        """,
        services=services,
    )
    assert fired == [(2, "SET"), (4, "PRINT")]


def test_step_rule_interval_must_be_positive():
    _, ext = _services()
    with pytest.raises(EngExtensionError):
        ext.every_n_steps(0, lambda interpreter, ctx: None)


def test_failing_hook_becomes_runtime_error(run_source):
    services, ext = _services()

    def broken(interpreter, location):
        raise ValueError("boom")

    ext.on_event("before_statement", broken)
    with pytest.raises(EngRuntimeError, match="Extension hook 'before_statement' from 'test' failed: boom") as excinfo:
        run_source("print 1", services=services)
    assert excinfo.value.rule == "EXT"
    assert excinfo.value.location.line == 1


def test_on_error_hook_receives_error(run_source):
    services, ext = _services()
    errors = []
    ext.on_event("on_error", lambda interpreter, error: errors.append(error.message))
    with pytest.raises(EngRuntimeError):
        run_source("create array a\ncreate array b", services=services, limits=Limits(max_arrays=1))
    assert errors == ["too many arrays"]


def test_extension_can_assign_values(run_source):
    services, ext = _services()
    ext.register_statement("greet _", lambda interpreter, tokens, index: interpreter.assign(tokens[1].value, text("hi")))
    run = run_source("greet who", services=services)
    assert run.var("who") == "hi"


def test_missing_extension_path(tmp_path):
    with pytest.raises(EngExtensionError, match="Extension not found"):
        load_extension_module(str(tmp_path / "absent.py"))


def test_extension_without_register_function(tmp_path):
    path = tmp_path / "empty_ext.py"
    path.write_text("VALUE = 1\n", encoding="utf-8")
    with pytest.raises(EngExtensionError, match="englang_register"):
        load_runtime_services([str(path)])


def test_extension_api_version_mismatch(tmp_path):
    path = tmp_path / "future_ext.py"
    path.write_text(
        "ENGLANG_EXTENSION_API_VERSION = 99\n"
        "def englang_register(ext):\n"
        "    pass\n",
        encoding="utf-8",
    )
    with pytest.raises(EngExtensionError, match="requires API 99"):
        load_runtime_services([str(path)])



def test_failing_step_rule_names_its_owner(run_source):
    services, ext = _services("watchdog")

    @ext.every_n_steps(1)
    def tripwire(interpreter, ctx):
        raise RuntimeError("tripped")

    with pytest.raises(EngRuntimeError, match="step rule 'tripwire' from 'watchdog' failed: tripped"):
        run_source("print 1", services=services)


def test_unknown_event_is_rejected():
    _, ext = _services()
    with pytest.raises(EngExtensionError, match="Unknown event 'before_everything'"):
        ext.on_event("before_everything", lambda *args: None)


def test_metadata_requiring_newer_api_is_rejected(tmp_path):
    path = tmp_path / "greedy.py"
    path.write_text(
        "def englang_register(ext):\n"
        "    ext.metadata(version='2.0.0', requires_api=2)\n",
        encoding="utf-8",
    )
    with pytest.raises(EngExtensionError, match="greedy 2.0.0 requires API 2"):
        load_runtime_services([str(path)])


def test_extension_name_defaults_to_file_name(tmp_path):
    path = tmp_path / "tagged.py"
    path.write_text("def englang_register(ext):\n    ext.metadata()\n", encoding="utf-8")
    services = load_runtime_services([str(path)])
    assert services.metadata[0].name == "tagged"


def test_extension_import_failure(tmp_path):
    path = tmp_path / "broken.py"
    path.write_text("raise ImportError('missing dependency')\n", encoding="utf-8")
    with pytest.raises(EngExtensionError, match="failed to import: missing dependency"):
        load_runtime_services([str(path)])


def test_each_load_gets_a_fresh_module():
    first = load_extension_module(STRINGS_EXT)
    second = load_extension_module(STRINGS_EXT)
    assert first is not second
    assert first.__name__ != second.__name__
