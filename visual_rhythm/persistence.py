from __future__ import annotations

import logging
import os
import sqlite3
import time
from pathlib import Path

from .results import SessionResult
from .rhythm_test import FrequencyResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "VISUAL_RHYTHM_DB_PATH"


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".visual_rhythm" / "results.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                id INTEGER PRIMARY KEY,
                created_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt (
                id INTEGER PRIMARY KEY,
                session_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
                test_code TEXT NOT NULL,
                test_version INTEGER NOT NULL,
                app_version TEXT NOT NULL,
                rng_seed INTEGER NOT NULL,
                refresh_rate_hz INTEGER NOT NULL,
                duration_ms REAL NOT NULL,
                final_stage TEXT NOT NULL,
                custom_stage_b INTEGER NOT NULL,
                stage_b_noise_level REAL,
                center_frequency_hz INTEGER,
                peak_frequency_hz INTEGER,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS frequency_result (
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                stage TEXT NOT NULL,
                frequency_hz INTEGER NOT NULL,
                correct INTEGER NOT NULL,
                total INTEGER NOT NULL,
                accuracy REAL NOT NULL,
                threshold REAL,
                noise_low REAL NOT NULL,
                noise_high REAL NOT NULL,
                is_pinned INTEGER NOT NULL,
                PRIMARY KEY (attempt_id, stage, frequency_hz)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (attempt_id, key)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trial_event (
                id INTEGER PRIMARY KEY,
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                stage TEXT NOT NULL,
                frequency_hz INTEGER NOT NULL,
                noise_level REAL NOT NULL,
                word TEXT NOT NULL,
                response TEXT NOT NULL,
                is_correct INTEGER NOT NULL,
                dont_know INTEGER NOT NULL,
                frame_count INTEGER NOT NULL,
                phase_rad REAL NOT NULL,
                presented_at_ms INTEGER NOT NULL,
                answered_at_ms INTEGER NOT NULL,
                rt_ms INTEGER NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trial_event_attempt_seq ON trial_event(attempt_id, seq);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def record_rhythm_session(*, db_path: Path, result: SessionResult, app_version: str) -> int:
    """
    Store one session:
      session -> attempt -> frequency_result + metric + trial_event
    """
    conn = open_db(db_path)
    try:
        attempt_id = _insert_attempt(conn=conn, result=result, app_version=app_version)
    finally:
        conn.close()
    logger.info("Saved session attempt %d to %s", attempt_id, db_path)
    return attempt_id


def _insert_frequency_results(
    conn: sqlite3.Connection,
    *,
    attempt_id: int,
    stage: str,
    results: list[FrequencyResult],
) -> None:
    for r in results:
        conn.execute(
            """
            INSERT INTO frequency_result(
                attempt_id, stage, frequency_hz, correct, total, accuracy,
                threshold, noise_low, noise_high, is_pinned
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attempt_id,
                stage,
                int(r.frequency_hz),
                int(r.correct),
                int(r.total),
                float(r.accuracy),
                None if r.threshold is None else float(r.threshold),
                float(r.noise_low),
                float(r.noise_high),
                1 if r.is_pinned else 0,
            ),
        )


def _insert_attempt(*, conn: sqlite3.Connection, result: SessionResult, app_version: str) -> int:
    now = _utc_now_iso()

    with conn:
        cur = conn.execute("INSERT INTO session(created_at_utc) VALUES (?)", (now,))
        session_id = int(cur.lastrowid)

        cur = conn.execute(
            """
            INSERT INTO attempt(
                session_id, test_code, test_version, app_version,
                rng_seed, refresh_rate_hz, duration_ms, final_stage, custom_stage_b,
                stage_b_noise_level, center_frequency_hz, peak_frequency_hz,
                completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                str(result.test_code),
                int(result.test_version),
                app_version,
                int(result.seed),
                int(result.refresh_rate_hz),
                float(result.duration_ms),
                str(result.final_stage.value),
                1 if result.custom_stage_b else 0,
                result.stage_b_noise_level,
                result.center_frequency_hz,
                result.peak_frequency_hz,
                _utc_now_iso(),
            ),
        )
        attempt_id = int(cur.lastrowid)

        _insert_frequency_results(conn, attempt_id=attempt_id, stage="stage_a", results=result.stage_a)
        _insert_frequency_results(conn, attempt_id=attempt_id, stage="stage_b", results=result.stage_b)

        mean_rt = "" if result.mean_rt_ms is None else f"{result.mean_rt_ms:.3f}"
        median_rt = "" if result.median_rt_ms is None else f"{result.median_rt_ms:.3f}"
        metrics = {
            "attempted": str(result.attempted),
            "correct": str(result.correct),
            "accuracy": f"{result.accuracy:.6f}",
            "mean_rt_ms": mean_rt,
            "median_rt_ms": median_rt,
        }
        for k, v in metrics.items():
            conn.execute("INSERT INTO metric(attempt_id, key, value) VALUES (?, ?, ?)", (attempt_id, k, v))

        for r in result.records:
            conn.execute(
                """
                INSERT INTO trial_event(
                    attempt_id, seq, stage, frequency_hz, noise_level, word, response,
                    is_correct, dont_know, frame_count, phase_rad,
                    presented_at_ms, answered_at_ms, rt_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attempt_id,
                    int(r.seq),
                    str(r.stage.value),
                    int(r.frequency_hz),
                    float(r.noise_level),
                    str(r.word),
                    str(r.response),
                    1 if r.is_correct else 0,
                    1 if r.dont_know else 0,
                    int(r.frame_count),
                    float(r.phase_rad),
                    int(round(r.presented_at_s * 1000.0)),
                    int(round(r.answered_at_s * 1000.0)),
                    int(round(r.response_time_s * 1000.0)),
                ),
            )

    return attempt_id
