"""Discover filter test suites, run their cases and report the results."""

from __future__ import annotations

import json
import re
import sys
import tomllib
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import platformdirs

PASS_ICON = "\u2713"
FAIL_ICON = "\u2717"

ApplyFilter = Callable[[str, int, list[str]], str]
"""Filters combined command output: ``(output, exit_code, args) -> filtered``."""

LoadFilter = Callable[[Path], "ApplyFilter | None"]
"""Loads a filter TOML file; returns ``None`` when it does not exist."""


class VerifyError(Exception):
    """A test case or its fixture could not be loaded."""


@dataclass(frozen=True)
class Expectation:
    """One ``[[expect]]`` block; every assertion that is set must hold."""

    contains: str | None = None
    not_contains: str | None = None
    equals: str | None = None
    starts_with: str | None = None
    ends_with: str | None = None
    line_count: int | None = None
    matches: str | None = None
    not_matches: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Expectation:
        if not isinstance(data, dict):
            raise ValueError("expect block must be a table")
        line_count = data.get("line_count")
        if line_count is not None and (
            not isinstance(line_count, int) or isinstance(line_count, bool) or line_count < 0
        ):
            raise ValueError("line_count must be a non-negative integer")
        strings = {
            key: _optional_str(data, key)
            for key in (
                "contains",
                "not_contains",
                "equals",
                "starts_with",
                "ends_with",
                "matches",
                "not_matches",
            )
        }
        return cls(line_count=line_count, **strings)


@dataclass(frozen=True)
class CaseSpec:
    """A test case read from a suite directory."""

    name: str
    fixture: str | None = None
    inline: str | None = None
    exit_code: int = 0
    args: list[str] = field(default_factory=list)
    expects: list[Expectation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CaseSpec:
        name = data.get("name")
        if not isinstance(name, str):
            raise ValueError("missing field `name`")
        exit_code = data.get("exit_code", 0)
        if not isinstance(exit_code, int) or isinstance(exit_code, bool):
            raise ValueError("exit_code must be an integer")
        args = data.get("args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError("args must be a list of strings")
        expects = data.get("expect", [])
        if not isinstance(expects, list):
            raise ValueError("expect must be an array of tables")
        return cls(
            name=name,
            fixture=_optional_str(data, "fixture"),
            inline=_optional_str(data, "inline"),
            exit_code=exit_code,
            args=list(args),
            expects=[Expectation.from_dict(e) for e in expects],
        )


@dataclass
class CaseResult:
    """Outcome of one test case."""

    name: str
    passed: bool
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "failures": list(self.failures)}


@dataclass
class SuiteResult:
    """Outcome of one filter's suite; ``error`` is set when it could not run."""

    filter_name: str
    cases: list[CaseResult] = field(default_factory=list)
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.error is None and all(case.passed for case in self.cases)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "filter_name": self.filter_name,
            "cases": [case.to_dict() for case in self.cases],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class DiscoveredSuite:
    """A filter TOML file together with its ``<stem>_test`` suite directory."""

    filter_path: Path
    suite_dir: Path
    filter_name: str


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _debug(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _lines(text: str) -> list[str]:
    parts = text.split("\n")
    if parts and parts[-1] == "":
        parts.pop()
    return [part.removesuffix("\r") for part in parts]


# --- Discovery ---


def _walk_filters(root: Path, directory: Path) -> Iterator[tuple[Path, Path, str]]:
    """Yield ``(filter_path, suite_dir, filter_name)`` for every filter under ``directory``."""
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError:
        return
    for path in entries:
        if path.name.startswith("."):
            continue
        if path.is_file() and path.suffix == ".toml":
            suite_dir = path.parent / f"{path.stem}_test"
            try:
                relative = path.relative_to(root)
            except ValueError:
                relative = path
            yield path, suite_dir, relative.with_suffix("").as_posix()
        elif path.is_dir() and not path.name.endswith("_test"):
            yield from _walk_filters(root, path)


def _walk_search_dirs(search_dirs: Iterable[Path]) -> Iterator[tuple[Path, Path, str]]:
    for directory in map(Path, search_dirs):
        if directory.exists():
            yield from _walk_filters(directory, directory)


def verify_search_dirs() -> list[Path]:
    """Directories searched for filters, highest priority first."""
    dirs: list[Path] = []
    try:
        cwd = Path.cwd()
    except OSError:
        cwd = None
    if cwd is not None:
        dirs.append(cwd / "filters")
        dirs.append(cwd / ".tokf" / "filters")
    config = platformdirs.user_config_dir()
    if config:
        dirs.append(Path(config) / "tokf" / "filters")
    return dirs


def discover_all_filters_with_coverage(
    search_dirs: Iterable[Path], prefix: str | None = None
) -> list[tuple[str, bool]]:
    """Return ``(filter_name, has_suite)`` for every filter, first occurrence winning."""
    seen: set[str] = set()
    result: list[tuple[str, bool]] = []
    for _, suite_dir, name in _walk_search_dirs(search_dirs):
        if name not in seen:
            seen.add(name)
            result.append((name, suite_dir.is_dir()))
    if prefix is not None:
        result = [
            (name, covered)
            for name, covered in result
            if name == prefix or name.startswith(f"{prefix}/")
        ]
    return result


def discover_suites(
    search_dirs: Iterable[Path], filter_name: str | None = None
) -> list[DiscoveredSuite]:
    """Return filters that have a suite directory, optionally only the named one."""
    seen: set[str] = set()
    suites: list[DiscoveredSuite] = []
    for filter_path, suite_dir, name in _walk_search_dirs(search_dirs):
        if not suite_dir.is_dir() or name in seen:
            continue
        seen.add(name)
        suites.append(DiscoveredSuite(filter_path, suite_dir, name))
    if filter_name is not None:
        suites = [s for s in suites if s.filter_name == filter_name]
    return suites


# --- Loading ---


def load_case(case_path: Path) -> CaseSpec:
    """Read and validate a test case file."""
    case_path = Path(case_path)
    try:
        content = case_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise VerifyError(f"cannot read {case_path}: {exc}") from exc
    try:
        case = CaseSpec.from_dict(tomllib.loads(content))
    except (tomllib.TOMLDecodeError, ValueError) as exc:
        raise VerifyError(f"cannot parse {case_path}: {exc}") from exc
    if not case.expects:
        raise VerifyError(f"{case_path}: test case has no [[expect]] blocks")
    return case


def _read_trimmed(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").rstrip()
    except (OSError, UnicodeDecodeError) as exc:
        raise VerifyError(f"cannot read fixture {path}: {exc}") from exc


def load_fixture(case: CaseSpec, case_path: Path) -> str:
    """Return the case's input text, with trailing whitespace removed."""
    if case.inline is not None:
        return case.inline.rstrip()
    if case.fixture is not None:
        relative_to_case = Path(case_path).parent / case.fixture
        if relative_to_case.exists():
            return _read_trimmed(relative_to_case)
        relative_to_cwd = Path(case.fixture)
        if relative_to_cwd.exists():
            return _read_trimmed(relative_to_cwd)
        raise VerifyError(f"fixture not found: {case.fixture}")
    raise VerifyError("test case must specify either 'fixture' or 'inline'")


# --- Assertions ---


def _regex_check(pattern: str, output: str, want_match: bool) -> str | None:
    try:
        regex = re.compile(pattern)
    except re.error as exc:
        return f"invalid regex {_debug(pattern)}: {exc}"
    found = regex.search(output) is not None
    if found == want_match:
        return None
    negation = "" if want_match else "NOT "
    return f"expected output {negation}to match regex {_debug(pattern)}\ngot:\n{output}"


def evaluate(expect: Expectation, output: str) -> str | None:
    """Return a failure message for the first assertion that does not hold."""
    if expect.contains is not None and expect.contains not in output:
        return f"expected output to contain {_debug(expect.contains)}\ngot:\n{output}"
    if expect.not_contains is not None and expect.not_contains in output:
        return f"expected output NOT to contain {_debug(expect.not_contains)}\ngot:\n{output}"
    if expect.equals is not None and output != expect.equals:
        return f"expected output to equal {_debug(expect.equals)}\ngot:\n{output}"
    if expect.starts_with is not None and not output.startswith(expect.starts_with):
        return f"expected output to start with {_debug(expect.starts_with)}\ngot:\n{output}"
    if expect.ends_with is not None and not output.endswith(expect.ends_with):
        return f"expected output to end with {_debug(expect.ends_with)}\ngot:\n{output}"
    if expect.line_count is not None:
        count = sum(1 for line in _lines(output) if line.strip())
        if count != expect.line_count:
            return (
                f"expected {expect.line_count} non-empty lines, got {count}\n"
                f"output:\n{output}"
            )
    if expect.matches is not None:
        message = _regex_check(expect.matches, output, want_match=True)
        if message is not None:
            return message
    if expect.not_matches is not None:
        message = _regex_check(expect.not_matches, output, want_match=False)
        if message is not None:
            return message
    return None


# --- Execution ---


def run_case(apply_filter: ApplyFilter, case_path: Path) -> CaseResult:
    """Load one case, run it through the filter and check its expectations."""
    case_path = Path(case_path)
    try:
        case = load_case(case_path)
    except VerifyError as exc:
        return CaseResult(case_path.stem, False, [f"failed to load case: {exc}"])
    try:
        fixture = load_fixture(case, case_path)
    except VerifyError as exc:
        return CaseResult(case.name, False, [f"failed to load fixture: {exc}"])

    output = apply_filter(fixture, case.exit_code, list(case.args))
    failures = [
        message
        for message in (evaluate(expect, output) for expect in case.expects)
        if message is not None
    ]
    return CaseResult(case.name, not failures, failures)


def run_suite(suite: DiscoveredSuite, load_filter: LoadFilter) -> SuiteResult:
    """Run every case file in a suite directory, in name order."""
    try:
        apply_filter = load_filter(suite.filter_path)
    except Exception as exc:  # any failure to load the filter is reported, not raised
        return SuiteResult(suite.filter_name, error=str(exc))
    if apply_filter is None:
        return SuiteResult(suite.filter_name, error=f"filter not found: {suite.filter_path}")

    try:
        case_files = sorted(p for p in suite.suite_dir.iterdir() if p.suffix == ".toml")
    except OSError as exc:
        return SuiteResult(suite.filter_name, error=f"cannot read suite dir: {exc}")
    if not case_files:
        return SuiteResult(
            suite.filter_name, error=f"suite directory is empty: {suite.suite_dir}"
        )

    return SuiteResult(
        suite.filter_name, cases=[run_case(apply_filter, path) for path in case_files]
    )


# --- Output ---


def _case_count(directory: Path) -> int:
    try:
        return sum(1 for p in directory.iterdir() if p.suffix == ".toml")
    except OSError:
        return 0


def format_list(suites: Sequence[DiscoveredSuite]) -> str:
    """One line per suite with its number of cases."""
    lines = []
    for suite in suites:
        count = _case_count(suite.suite_dir)
        noun = "case" if count == 1 else "cases"
        lines.append(f"{suite.filter_name} ({count} {noun})")
    return "\n".join(lines)


def format_results(results: Sequence[SuiteResult]) -> str:
    """Human-readable report ending with a ``passed/total`` summary line."""
    lines: list[str] = []
    total = passed = 0
    for suite in results:
        if suite.error is not None:
            lines.append(f"{FAIL_ICON} {suite.filter_name} \u2014 error: {suite.error}")
            continue
        icon = PASS_ICON if suite.passed else FAIL_ICON
        lines.append(f"{icon} {suite.filter_name}")
        for case in suite.cases:
            total += 1
            if case.passed:
                passed += 1
                lines.append(f"    {PASS_ICON} {case.name}")
            else:
                lines.append(f"    {FAIL_ICON} {case.name}")
                lines.extend(
                    f"        {line}" for failure in case.failures for line in _lines(failure)
                )
    lines.append("")
    lines.append(f"{passed}/{total} passed")
    return "\n".join(lines)


def results_to_json(results: Sequence[SuiteResult]) -> str:
    """Pretty-printed JSON array of suite results."""
    return json.dumps([suite.to_dict() for suite in results], indent=2, ensure_ascii=False)


# --- Entry point ---


def cmd_verify(
    load_filter: LoadFilter,
    filter_name: str | None = None,
    list_only: bool = False,
    json_output: bool = False,
    require_all: bool = False,
    search_dirs: Sequence[Path] | None = None,
) -> int:
    """Run the verify command; returns 0 (pass), 1 (assertion failure) or 2 (error)."""
    dirs = verify_search_dirs() if search_dirs is None else [Path(d) for d in search_dirs]

    if list_only and require_all:
        coverage = discover_all_filters_with_coverage(dirs, filter_name)
        for name, covered in coverage:
            print(f"{PASS_ICON if covered else FAIL_ICON} {name}")
        uncovered_count = sum(1 for _, covered in coverage if not covered)
        if uncovered_count:
            print(f"\n{uncovered_count} filter(s) have no test suite.")
            return 2
        return 0

    if require_all:
        uncovered = [
            name
            for name, covered in discover_all_filters_with_coverage(dirs, filter_name)
            if not covered
        ]
        if uncovered:
            print(f"{FAIL_ICON} uncovered filters (no test suite found):", file=sys.stderr)
            for name in uncovered:
                print(f"  {name}", file=sys.stderr)
            print("\nRun `tokf verify --list` to see discovered suites.", file=sys.stderr)
            return 2

    suites = discover_suites(dirs, filter_name)
    if not suites:
        if filter_name is not None:
            print(f"[tokf] no test suite found for filter: {filter_name}", file=sys.stderr)
            return 2
        print("[tokf] no test suites discovered", file=sys.stderr)
        return 0

    if list_only:
        print(format_list(suites))
        return 0

    results = [run_suite(suite, load_filter) for suite in suites]
    print(results_to_json(results) if json_output else format_results(results))

    if any(suite.error is not None for suite in results):
        return 2
    return int(any(not case.passed for suite in results for case in suite.cases))