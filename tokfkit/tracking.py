"""Record filter runs in SQLite and summarise the token savings."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import platformdirs

_I64_MAX = 2**63 - 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp         TEXT    NOT NULL,
    command           TEXT    NOT NULL,
    filter_name       TEXT,
    input_bytes       INTEGER NOT NULL,
    output_bytes      INTEGER NOT NULL,
    input_tokens_est  INTEGER NOT NULL,
    output_tokens_est INTEGER NOT NULL,
    filter_time_ms    INTEGER NOT NULL,
    exit_code         INTEGER NOT NULL
);
"""

_INSERT = """
INSERT INTO events
    (timestamp, command, filter_name,
     input_bytes, output_bytes,
     input_tokens_est, output_tokens_est,
     filter_time_ms, exit_code)
VALUES
    (strftime('%Y-%m-%dT%H:%M:%SZ','now'),
     ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SUMMARY = """
SELECT COUNT(*), COALESCE(SUM(input_tokens_est), 0),
       COALESCE(SUM(output_tokens_est), 0),
       COALESCE(SUM(input_tokens_est - output_tokens_est), 0)
FROM events
"""

_BY_FILTER = """
SELECT COALESCE(filter_name, 'passthrough'), COUNT(*),
       SUM(input_tokens_est), SUM(output_tokens_est),
       SUM(input_tokens_est - output_tokens_est)
FROM events
GROUP BY filter_name
ORDER BY SUM(input_tokens_est - output_tokens_est) DESC
"""

_DAILY = """
SELECT substr(timestamp, 1, 10), COUNT(*),
       SUM(input_tokens_est), SUM(output_tokens_est),
       SUM(input_tokens_est - output_tokens_est)
FROM events
GROUP BY substr(timestamp, 1, 10)
ORDER BY substr(timestamp, 1, 10) DESC
"""


@dataclass(frozen=True)
class TrackingEvent:
    """One recorded run of a command, with byte counts and token estimates."""

    command: str
    filter_name: str | None
    input_bytes: int
    output_bytes: int
    input_tokens_est: int
    output_tokens_est: int
    filter_time_ms: int
    exit_code: int


@dataclass(frozen=True)
class GainSummary:
    """Totals over every recorded event."""

    total_commands: int
    total_input_tokens: int
    total_output_tokens: int
    tokens_saved: int
    savings_pct: float


@dataclass(frozen=True)
class DailyGain:
    """Totals for one calendar day (UTC)."""

    date: str
    commands: int
    input_tokens: int
    output_tokens: int
    tokens_saved: int
    savings_pct: float


@dataclass(frozen=True)
class FilterGain:
    """Totals for one filter; unfiltered runs are grouped as ``passthrough``."""

    filter_name: str
    commands: int
    input_tokens: int
    output_tokens: int
    tokens_saved: int
    savings_pct: float


def _savings_pct(saved: int, total_input: int) -> float:
    return 0.0 if total_input == 0 else saved / total_input * 100.0


def db_path() -> Path | None:
    """Return the tracking DB path; ``TOKF_DB_PATH`` overrides the default."""
    override = os.environ.get("TOKF_DB_PATH")
    if override is not None:
        return Path(override)
    base = platformdirs.user_data_dir(roaming=False)
    if not base:
        return None
    return Path(base) / "tokf" / "tracking.db"


def open_db(path: str | os.PathLike[str]) -> sqlite3.Connection:
    """Open or create the DB at ``path`` and ensure the events table exists."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(_SCHEMA)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def build_event(
    command: str,
    filter_name: str | None,
    input_bytes: int,
    output_bytes: int,
    filter_time_ms: int,
    exit_code: int,
) -> TrackingEvent:
    """Build an event, estimating tokens as a quarter of the byte count."""
    return TrackingEvent(
        command=command,
        filter_name=filter_name,
        input_bytes=input_bytes,
        output_bytes=output_bytes,
        input_tokens_est=input_bytes // 4,
        output_tokens_est=output_bytes // 4,
        filter_time_ms=min(filter_time_ms, _I64_MAX),
        exit_code=exit_code,
    )


def record_event(conn: sqlite3.Connection, event: TrackingEvent) -> None:
    """Insert one row; the timestamp is set by SQLite in UTC."""
    with conn:
        conn.execute(
            _INSERT,
            (
                event.command,
                event.filter_name,
                event.input_bytes,
                event.output_bytes,
                event.input_tokens_est,
                event.output_tokens_est,
                event.filter_time_ms,
                event.exit_code,
            ),
        )


def query_summary(conn: sqlite3.Connection) -> GainSummary:
    """Return totals over all recorded events."""
    commands, total_in, total_out, saved = conn.execute(_SUMMARY).fetchone()
    return GainSummary(
        total_commands=commands,
        total_input_tokens=total_in,
        total_output_tokens=total_out,
        tokens_saved=saved,
        savings_pct=_savings_pct(saved, total_in),
    )


def query_by_filter(conn: sqlite3.Connection) -> list[FilterGain]:
    """Return per-filter totals, largest savings first."""
    return [
        FilterGain(
            filter_name=name,
            commands=commands,
            input_tokens=total_in,
            output_tokens=total_out,
            tokens_saved=saved,
            savings_pct=_savings_pct(saved, total_in),
        )
        for name, commands, total_in, total_out, saved in conn.execute(_BY_FILTER)
    ]


def query_daily(conn: sqlite3.Connection) -> list[DailyGain]:
    """Return per-day totals, most recent day first."""
    return [
        DailyGain(
            date=date,
            commands=commands,
            input_tokens=total_in,
            output_tokens=total_out,
            tokens_saved=saved,
            savings_pct=_savings_pct(saved, total_in),
        )
        for date, commands, total_in, total_out, saved in conn.execute(_DAILY)
    ]