import json
import tomllib
from pathlib import Path

import pytest

from tokfkit.verify import (
    CaseResult,
    CaseSpec,
    DiscoveredSuite,
    Expectation,
    SuiteResult,
    VerifyError,
    cmd_verify,
    discover_all_filters_with_coverage,
    discover_suites,
    evaluate,
    format_list,
    format_results,
    load_case,
    load_fixture,
    results_to_json,
    run_case,
    run_suite,
)


def _load_filter(path):
    """Minimal filter: on success, replace output with on_success.output if set."""
    path = Path(path)
    if not path.exists():
        return None
    data = tomllib.loads(path.read_text(encoding="utf-8"))
    template = data.get("on_success", {}).get("output")

    def apply(output, exit_code, args):
        if exit_code == 0 and template is not None:
            return template
        return output

    return apply


def _write_filter(filters_root, rel, body='command = "x"\n'):
    path = filters_root / f"{rel}.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    return path


def _write_case(suite_dir, name, body):
    suite_dir.mkdir(parents=True, exist_ok=True)
    path = suite_dir / f"{name}.toml"
    path.write_text(body, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "filters"
    _write_filter(
        root,
        "mytest/cmd",
        'command = "mytest cmd"\n\n[on_success]\noutput = "filtered output"\n',
    )
    return root


# --- evaluate ---


def test_evaluate_contains():
    assert evaluate(Expectation(contains="ell"), "hello") is None
    msg = evaluate(Expectation(contains="zzz"), "hello")
    assert msg == 'expected output to contain "zzz"\ngot:\nhello'


def test_evaluate_not_contains():
    msg = evaluate(Expectation(not_contains="ell"), "hello")
    assert msg.startswith('expected output NOT to contain "ell"')


def test_evaluate_equals_starts_ends():
    assert evaluate(Expectation(equals="abc", starts_with="a", ends_with="c"), "abc") is None
    assert evaluate(Expectation(starts_with="b"), "abc").startswith(
        'expected output to start with "b"'
    )
    assert evaluate(Expectation(ends_with="b"), "abc").startswith(
        'expected output to end with "b"'
    )


def test_evaluate_line_count_ignores_blank_lines():
    assert evaluate(Expectation(line_count=2), "a\n\n  \nb\n") is None
    msg = evaluate(Expectation(line_count=3), "a\nb")
    assert msg.startswith("expected 3 non-empty lines, got 2")


def test_evaluate_regex():
    assert evaluate(Expectation(matches=r"\d+ passed"), "20 passed") is None
    assert evaluate(Expectation(not_matches="FAIL"), "ok").__class__ is type(None)
    assert evaluate(Expectation(not_matches="ok"), "ok").startswith(
        'expected output NOT to match regex "ok"'
    )
    assert evaluate(Expectation(matches="("), "x").startswith('invalid regex "("')


def test_evaluate_reports_first_failure_only():
    msg = evaluate(Expectation(contains="q", equals="r"), "x")
    assert msg.startswith("expected output to contain")


# --- discovery ---


def test_discover_suites_requires_suite_dir(tmp_path):
    root = tmp_path / "filters"
    _write_filter(root, "git/push")
    _write_filter(root, "git/status")
    (root / "git" / "push_test").mkdir()
    suites = discover_suites([root])
    assert [s.filter_name for s in suites] == ["git/push"]
    assert suites[0].suite_dir == root / "git" / "push_test"


def test_discover_suites_sorted_and_skips_hidden(tmp_path):
    root = tmp_path / "filters"
    for name in ["b", "a", ".hidden"]:
        _write_filter(root, name)
        (root / f"{name}_test").mkdir()
    assert [s.filter_name for s in discover_suites([root])] == ["a", "b"]


def test_discover_suites_first_dir_wins(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    for root in (first, second):
        _write_filter(root, "tool")
        (root / "tool_test").mkdir()
    suites = discover_suites([first, second, tmp_path / "missing"])
    assert len(suites) == 1
    assert suites[0].filter_path == first / "tool.toml"


def test_discover_suites_filters_by_name(tmp_path):
    root = tmp_path / "filters"
    for name in ["a", "b"]:
        _write_filter(root, name)
        (root / f"{name}_test").mkdir()
    assert [s.filter_name for s in discover_suites([root], "b")] == ["b"]
    assert discover_suites([root], "c") == []


def test_coverage_reports_uncovered_and_prefix(tmp_path):
    root = tmp_path / "filters"
    _write_filter(root, "git/push")
    _write_filter(root, "git/status")
    _write_filter(root, "gitx")
    (root / "git" / "push_test").mkdir()
    all_filters = discover_all_filters_with_coverage([root])
    assert all_filters == [("git/push", True), ("git/status", False), ("gitx", False)]
    assert discover_all_filters_with_coverage([root], "git") == [
        ("git/push", True),
        ("git/status", False),
    ]


def test_coverage_skips_test_directories(tmp_path):
    root = tmp_path / "filters"
    _write_filter(root, "tool")
    _write_case(root / "tool_test", "case", 'name = "c"\n')
    assert discover_all_filters_with_coverage([root]) == [("tool", True)]


# --- loading ---


def test_load_case_parses_fields(tmp_path):
    path = _write_case(
        tmp_path,
        "c",
        'name = "n"\ninline = "x"\nexit_code = 3\nargs = ["a"]\n\n'
        '[[expect]]\ncontains = "x"\n\n[[expect]]\nline_count = 1\n',
    )
    case = load_case(path)
    assert case.name == "n"
    assert case.exit_code == 3
    assert case.args == ["a"]
    assert case.expects == [Expectation(contains="x"), Expectation(line_count=1)]


def test_load_case_without_expect_fails(tmp_path):
    path = _write_case(tmp_path, "c", 'name = "n"\ninline = "x"\n')
    with pytest.raises(VerifyError, match=r"no \[\[expect\]\] blocks"):
        load_case(path)


def test_load_case_invalid_toml(tmp_path):
    path = _write_case(tmp_path, "c", "not valid [[[")
    with pytest.raises(VerifyError, match="cannot parse"):
        load_case(path)


def test_load_case_missing_file(tmp_path):
    with pytest.raises(VerifyError, match="cannot read"):
        load_case(tmp_path / "none.toml")


def test_load_fixture_inline_trims_end(tmp_path):
    case = CaseSpec(name="n", inline="hello  \n\n")
    assert load_fixture(case, tmp_path / "c.toml") == "hello"


def test_load_fixture_relative_to_case(tmp_path):
    (tmp_path / "out.txt").write_text("data\n", encoding="utf-8")
    case = CaseSpec(name="n", fixture="out.txt")
    assert load_fixture(case, tmp_path / "c.toml") == "data"


def test_load_fixture_errors(tmp_path):
    with pytest.raises(VerifyError, match="fixture not found: nope.txt"):
        load_fixture(CaseSpec(name="n", fixture="nope.txt"), tmp_path / "c.toml")
    with pytest.raises(VerifyError, match="either 'fixture' or 'inline'"):
        load_fixture(CaseSpec(name="n"), tmp_path / "c.toml")


# --- running ---


def test_run_case_passes_args_and_exit_code(tmp_path):
    path = _write_case(
        tmp_path,
        "c",
        'name = "args"\ninline = "in"\nexit_code = 5\nargs = ["x", "y"]\n\n'
        '[[expect]]\nequals = "in 5 x y"\n',
    )
    result = run_case(lambda out, code, args: " ".join([out, str(code), *args]), path)
    assert result == CaseResult("args", True, [])


def test_run_case_bad_case_uses_stem(tmp_path):
    path = _write_case(tmp_path, "broken", "[[[")
    result = run_case(lambda o, c, a: o, path)
    assert result.name == "broken"
    assert not result.passed
    assert result.failures[0].startswith("failed to load case:")


def test_run_case_missing_fixture(tmp_path):
    path = _write_case(
        tmp_path, "c", 'name = "n"\nfixture = "gone.txt"\n\n[[expect]]\ncontains = "x"\n'
    )
    result = run_case(lambda o, c, a: o, path)
    assert result.failures == ["failed to load fixture: fixture not found: gone.txt"]


def test_run_suite_filter_not_found(tmp_path):
    suite = DiscoveredSuite(tmp_path / "f.toml", tmp_path / "f_test", "f")
    result = run_suite(suite, _load_filter)
    assert result.error == f"filter not found: {tmp_path / 'f.toml'}"
    assert result.cases == []


def test_run_suite_loader_error(tmp_path):
    def failing(path):
        raise ValueError("bad filter")

    suite = DiscoveredSuite(tmp_path / "f.toml", tmp_path / "f_test", "f")
    assert run_suite(suite, failing).error == "bad filter"


def test_run_suite_empty_dir(tmp_path, project):
    suite_dir = project / "mytest" / "cmd_test"
    suite_dir.mkdir()
    suite = DiscoveredSuite(project / "mytest" / "cmd.toml", suite_dir, "mytest/cmd")
    assert run_suite(suite, _load_filter).error.startswith("suite directory is empty")


def test_run_suite_runs_cases_in_order(project):
    suite_dir = project / "mytest" / "cmd_test"
    _write_case(suite_dir, "b", 'name = "second"\ninline = "x"\n[[expect]]\ncontains = "nope"\n')
    _write_case(
        suite_dir, "a", 'name = "first"\ninline = "x"\n[[expect]]\nequals = "filtered output"\n'
    )
    suite = DiscoveredSuite(project / "mytest" / "cmd.toml", suite_dir, "mytest/cmd")
    result = run_suite(suite, _load_filter)
    assert [c.name for c in result.cases] == ["first", "second"]
    assert [c.passed for c in result.cases] == [True, False]
    assert result.passed is False


# --- formatting ---


def test_format_list_counts_cases(project):
    suite_dir = project / "mytest" / "cmd_test"
    _write_case(suite_dir, "a", "")
    suites = discover_suites([project])
    assert format_list(suites) == "mytest/cmd (1 case)"
    _write_case(suite_dir, "b", "")
    assert format_list(suites) == "mytest/cmd (2 cases)"


def test_format_results_summary():
    results = [
        SuiteResult("a", [CaseResult("ok", True), CaseResult("bad", False, ["l1\nl2"])]),
        SuiteResult("b", error="boom"),
    ]
    text = format_results(results)
    assert text.splitlines() == [
        "\u2717 a",
        "    \u2713 ok",
        "    \u2717 bad",
        "        l1",
        "        l2",
        "\u2717 b \u2014 error: boom",
        "",
        "1/2 passed",
    ]


def test_results_to_json_omits_missing_error():
    data = json.loads(
        results_to_json([SuiteResult("a", [CaseResult("c", True)]), SuiteResult("b", error="e")])
    )
    assert data[0] == {
        "filter_name": "a",
        "cases": [{"name": "c", "passed": True, "failures": []}],
    }
    assert data[1]["error"] == "e"


# --- cmd_verify ---


def test_verify_failing_expectation_exits_1(project, capsys):
    _write_case(
        project / "mytest" / "cmd_test",
        "bad",
        'name = "intentionally failing case"\ninline = "hello world"\nexit_code = 0\n\n'
        '[[expect]]\nequals = "this will never match"\n',
    )
    code = cmd_verify(_load_filter, "mytest/cmd", search_dirs=[project])
    out = capsys.readouterr().out
    assert code == 1
    assert "this will never match" in out
    assert "intentionally failing case" in out


def test_verify_passing_suite_exits_0(project, capsys):
    _write_case(
        project / "mytest" / "cmd_test",
        "good",
        'name = "good"\ninline = "x"\n[[expect]]\nequals = "filtered output"\n',
    )
    code = cmd_verify(_load_filter, "mytest/cmd", search_dirs=[project])
    out = capsys.readouterr().out
    assert code == 0
    assert "mytest/cmd" in out
    assert "1/1 passed" in out


def test_verify_missing_filter_exits_2(project, capsys):
    code = cmd_verify(_load_filter, "no/such/filter", search_dirs=[project])
    assert code == 2
    assert "no/such/filter" in capsys.readouterr().err


def test_verify_no_suites_exits_0(tmp_path, capsys):
    assert cmd_verify(_load_filter, search_dirs=[tmp_path]) == 0
    assert "no test suites discovered" in capsys.readouterr().err


def test_verify_json_output(project, capsys):
    _write_case(
        project / "mytest" / "cmd_test",
        "good",
        'name = "good"\ninline = "x"\n[[expect]]\ncontains = "filtered"\n',
    )
    code = cmd_verify(_load_filter, "mytest/cmd", json_output=True, search_dirs=[project])
    parsed = json.loads(capsys.readouterr().out)
    assert code == 0
    assert parsed[0]["filter_name"] == "mytest/cmd"
    assert parsed[0]["cases"][0]["passed"] is True


def test_verify_list_shows_suites(project, capsys):
    _write_case(project / "mytest" / "cmd_test", "a", "")
    code = cmd_verify(_load_filter, list_only=True, search_dirs=[project])
    assert code == 0
    assert capsys.readouterr().out.strip() == "mytest/cmd (1 case)"


def test_verify_require_all_uncovered_exits_2(project, capsys):
    _write_filter(project, "other")
    code = cmd_verify(_load_filter, require_all=True, search_dirs=[project])
    err = capsys.readouterr().err
    assert code == 2
    assert "  mytest/cmd" in err
    assert "  other" in err


def test_verify_list_require_all(project, capsys):
    _write_case(project / "mytest" / "cmd_test", "a", "")
    _write_filter(project, "other")
    code = cmd_verify(_load_filter, list_only=True, require_all=True, search_dirs=[project])
    out = capsys.readouterr().out
    assert code == 2
    assert "\u2713 mytest/cmd" in out
    assert "\u2717 other" in out
    assert "1 filter(s) have no test suite." in out


def test_verify_suite_error_exits_2(project, capsys):
    (project / "mytest" / "cmd_test").mkdir()
    code = cmd_verify(_load_filter, "mytest/cmd", search_dirs=[project])
    assert code == 2
    assert "suite directory is empty" in capsys.readouterr().out