# tokfkit

Output-compression filters shrink a command's output before it reaches an LLM
context window. tokfkit is a library that works alongside such filters. It
records how much the filters saved, and it checks that each filter behaves as
its test suite says.

The library has two modules:

- `tokfkit.tracking` records each run in a local SQLite database and reports
  the token savings.
- `tokfkit.verify` finds the test suites that sit next to filter files, runs
  their cases through a filter you supply, and reports the results.

## Installation

Install the package with pip. It needs Python 3.11 or later and depends only
on `platformdirs`. To install the test requirements as well, use the `test`
extra.

## Tracking token savings

```python
from tokfkit.tracking import (
    build_event, db_path, open_db, record_event,
    query_summary, query_by_filter, query_daily,
)

conn = open_db(db_path())
record_event(conn, build_event("git status", "git status", 4000, 400, 5, 0))

summary = query_summary(conn)
print(summary.total_commands, summary.tokens_saved, f"{summary.savings_pct:.1f}%")

for row in query_by_filter(conn):   # largest savings first
    print(row.filter_name, row.commands, row.tokens_saved)

for day in query_daily(conn):       # most recent day first
    print(day.date, day.commands, day.tokens_saved)
```

- `build_event(command, filter_name, input_bytes, output_bytes, filter_time_ms, exit_code)`
  returns a `TrackingEvent`. It does no I/O. Token counts are estimated as the
  byte count divided by 4, rounded down. Pass `None` as `filter_name` for a
  run that used no filter.
- `db_path()` returns the value of the `TOKF_DB_PATH` environment variable
  when that variable is set. Otherwise it returns `tokf/tracking.db` inside
  the user data directory.
- `open_db(path)` creates any missing parent directories and the `events`
  table, and returns a `sqlite3.Connection`. It is safe to call it again on an
  existing database.
- `record_event(conn, event)` inserts one row and commits it. SQLite sets the
  timestamp, in UTC and ISO 8601 form.
- `query_summary(conn)` returns a `GainSummary` with the totals over all
  events.
- `query_by_filter(conn)` returns a list of `FilterGain`, one per filter.
  Runs without a filter appear under the name `passthrough`.
- `query_daily(conn)` returns a list of `DailyGain`, one per UTC date.

In every result, `savings_pct` is the share of input tokens saved, as a
percentage. It is `0.0` when there were no input tokens. The result types are
frozen dataclasses, so `dataclasses.asdict` turns them into plain dicts.

## Verifying filter test suites

A filter file `<name>.toml` can have a suite directory `<name>_test/` beside
it. Each `*.toml` file in that directory is one case:

```toml
name = "clean build"
fixture = "success.txt"   # or: inline = "..."
exit_code = 0
args = []

[[expect]]
contains = "ok"

[[expect]]
line_count = 1
```

- The input comes from `inline` or from a `fixture` file. A fixture path is
  tried first relative to the case file and then relative to the current
  directory. Trailing whitespace is removed from the input.
- Every case must have at least one `[[expect]]` block.
- An expectation may set any of `contains`, `not_contains`, `equals`,
  `starts_with`, `ends_with`, `line_count`, `matches` and `not_matches`.
  `line_count` counts only lines that are not blank. `matches` and
  `not_matches` are regular expressions, searched anywhere in the output.

### Supplying the filter

tokfkit does not filter output itself; you supply the filter engine:

```python
from pathlib import Path
from tokfkit.verify import cmd_verify

def load_filter(path: Path):
    if not path.exists():
        return None
    config = ...  # load the filter with your engine

    def apply_filter(output: str, exit_code: int, args: list[str]) -> str:
        return ...  # the filtered output

    return apply_filter

status = cmd_verify(load_filter, filter_name="cargo/build")
```

- `load_filter(path)` returns a callable `(output, exit_code, args) -> str`,
  or `None` if the filter is not found.
- If `load_filter` raises, the error is reported as that suite's error.

### `cmd_verify`

```python
cmd_verify(load_filter, filter_name=None, list_only=False,
           json_output=False, require_all=False, search_dirs=None)
```

It prints its report to standard output and returns an exit status:

- `0`: every case passed, or no suites were found and no filter was named.
- `1`: at least one expectation failed.
- `2`: one of these:
  - a suite could not be run (filter missing or failing to load, unreadable
    or empty suite directory);
  - the named filter has no suite;
  - `require_all` is set and some filter has no suite.

The options change what it does:

- `list_only` prints each suite with its number of cases instead of running
  them.
- With both `list_only` and `require_all`, it prints every filter marked ✓ or
  ✗ by whether it has a suite.
- `json_output` prints the results as a JSON array.
- `filter_name` limits the run to one filter, such as `git/push`. With
  `require_all`, it limits the coverage check to names equal to it or under it.

When `search_dirs` is `None`, `verify_search_dirs()` gives the directories to
search, in this order:

1. `filters/` in the current directory;
2. `.tokf/filters/` in the current directory;
3. `tokf/filters/` in the user config directory.

When the same filter name turns up in more than one directory, the first one
found wins. Entries whose names start with a dot are skipped, and `_test`
directories are not searched for filters.

### Building blocks

- Discovery:
  - `discover_suites(search_dirs, filter_name)` returns a list of
    `DiscoveredSuite`.
  - `discover_all_filters_with_coverage(search_dirs, prefix)` returns
    `(name, has_suite)` pairs.
- Loading:
  - `load_case(case_path)` returns a `CaseSpec`.
  - `load_fixture(case, case_path)` returns the input text.
  - Both raise `VerifyError` on failure.
- Checking:
  - `evaluate(expect, output)` returns the failure message for the first
    assertion that does not hold, or `None` if all hold.
- Running:
  - `run_case(apply_filter, case_path)` returns a `CaseResult`. It records
    load failures as failures and does not raise.
  - `run_suite(suite, load_filter)` returns a `SuiteResult`.
- Output:
  - `format_list(suites)` and `format_results(results)` return the text
    reports.
  - `results_to_json(results)` returns the JSON report. The `error` key
    appears only for suites that could not run.

## What this package does not do

tokfkit is a library only:

- It installs no command-line program.
- It contains no filter engine.
- It does not run commands or capture their output.

Recording runs, reading filter files and applying filters are left to the
code that calls it.