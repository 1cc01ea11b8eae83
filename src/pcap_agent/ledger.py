# ledger.py
# SQLite persistence for sessions, rounds and steps, plus the history
# projection handed to the planner at the start of every round.
#
# History is folded from all rounds on every read. There is no cache; the
# ledger is touched once per user turn.

import hashlib
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel

from pcap_agent.errors import LedgerError
from pcap_agent.models import Plan, Result, SessionHistory

logger = logging.getLogger(__name__)


class SessionSummary(BaseModel):
    id: str
    pcap_path: str
    created_at: str
    updated_at: str
    rounds: int


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def fold_history(rows: list[tuple[int, str, str, str]]) -> SessionHistory:
    """
    Fold (round_num, findings, operation_log, report) rows, in round order,
    into a SessionHistory. Empty fields are skipped.
    """
    history = SessionHistory()
    findings: list[str] = []
    op_logs: list[str] = []

    for round_num, round_findings, round_log, report in rows:
        if round_findings:
            findings.append(f"## Round {round_num}\n{round_findings}")
        if round_log:
            op_logs.append(f"## Round {round_num}\n{round_log}")
        if report:
            history.all_reports.append(report)
            history.previous_report = report

    history.findings = "".join(f"{chunk}\n\n" for chunk in findings)
    history.operation_log = "".join(f"{chunk}\n\n" for chunk in op_logs)
    return history


class RoundLedger:
    """
    SQLite-backed ledger of investigation sessions.

    Storage: a single database file (WAL mode); ":memory:" works for tests.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS captures (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        file_name   TEXT NOT NULL,
        file_path   TEXT NOT NULL,
        file_size   INTEGER DEFAULT 0,
        file_hash   TEXT DEFAULT '',
        created_at  TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS sessions (
        id          TEXT PRIMARY KEY,
        pcap_path   TEXT NOT NULL,
        capture_id  INTEGER REFERENCES captures(id),
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS rounds (
        id            INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id    TEXT NOT NULL REFERENCES sessions(id),
        round_num     INTEGER NOT NULL,
        user_query    TEXT NOT NULL,
        plan_json     TEXT DEFAULT '',
        table_schema  TEXT DEFAULT '',
        report        TEXT DEFAULT '',
        findings      TEXT DEFAULT '',
        operation_log TEXT DEFAULT '',
        created_at    TEXT NOT NULL,
        UNIQUE (session_id, round_num)
    );
    CREATE TABLE IF NOT EXISTS steps (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        round_id    INTEGER NOT NULL REFERENCES rounds(id),
        step_id     INTEGER NOT NULL,
        intent      TEXT NOT NULL,
        status      TEXT DEFAULT 'pending'
    );
    CREATE INDEX IF NOT EXISTS idx_rounds_session ON rounds(session_id, round_num);
    """

    def __init__(self, db_path: str | Path = "pcap_agent.db") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(self.SCHEMA)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise LedgerError(f"[ledger] open {self.db_path}: {exc}") from exc
        self._lock = threading.Lock()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RoundLedger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self, what: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise LedgerError(f"[ledger] {what}: {exc}") from exc
            except BaseException:
                # KeyboardInterrupt included: nothing half-written may stay on the connection.
                self._conn.rollback()
                raise

    def _query(self, what: str, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise LedgerError(f"[ledger] {what}: {exc}") from exc

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def record_capture(self, pcap_path: str) -> int | None:
        """Register the target capture (name, size, sha256). None if it is not a readable file."""
        path = Path(pcap_path)
        if not path.is_file():
            return None
        digest = hashlib.sha256()
        try:
            with path.open("rb") as fh:
                for chunk in iter(lambda: fh.read(1 << 20), b""):
                    digest.update(chunk)
            size = path.stat().st_size
        except OSError as exc:
            logger.warning("[ledger] could not hash capture %s: %s", pcap_path, exc)
            return None
        with self.transaction("record capture") as conn:
            cursor = conn.execute(
                "INSERT INTO captures (file_name, file_path, file_size, file_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                (path.name, str(path), size, digest.hexdigest(), _now()),
            )
            return cursor.lastrowid

    def create_session(self, pcap_path: str) -> str:
        """Create a session for a capture and return its id (sess_<unix millis>)."""
        capture_id = self.record_capture(pcap_path)
        millis = int(time.time() * 1000)
        with self.transaction("create session") as conn:
            while conn.execute("SELECT 1 FROM sessions WHERE id = ?", (f"sess_{millis}",)).fetchone():
                millis += 1
            session_id = f"sess_{millis}"
            now = _now()
            conn.execute(
                "INSERT INTO sessions (id, pcap_path, capture_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (session_id, pcap_path, capture_id, now, now),
            )
        logger.info("[ledger] created session %s for %s", session_id, pcap_path)
        return session_id

    def session_exists(self, session_id: str) -> bool:
        rows = self._query("session exists", "SELECT COUNT(*) FROM sessions WHERE id = ?", (session_id,))
        return rows[0][0] > 0

    def session_pcap_path(self, session_id: str) -> str:
        rows = self._query("session pcap path", "SELECT pcap_path FROM sessions WHERE id = ?", (session_id,))
        if not rows:
            raise LedgerError(f"[ledger] session {session_id} not found")
        return rows[0][0]

    def round_count(self, session_id: str) -> int:
        rows = self._query("round count", "SELECT COUNT(*) FROM rounds WHERE session_id = ?", (session_id,))
        return rows[0][0]

    def list_sessions(self, limit: int = 20) -> list[SessionSummary]:
        rows = self._query(
            "list sessions",
            """
            SELECT s.id, s.pcap_path, s.created_at, s.updated_at, COUNT(r.id)
            FROM sessions s LEFT JOIN rounds r ON r.session_id = s.id
            GROUP BY s.id ORDER BY s.updated_at DESC, s.id DESC LIMIT ?
            """,
            (limit,),
        )
        return [
            SessionSummary(id=r[0], pcap_path=r[1], created_at=r[2], updated_at=r[3], rounds=r[4])
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def save_round(
        self,
        session_id: str,
        plan: Plan,
        report: str,
        findings: str,
        operation_log: str,
        user_query: str = "",
    ) -> int:
        """
        Persist a completed round with one row per plan step. Returns the round
        number, assigned sequentially per session starting at 1.
        """
        with self.transaction(f"save round for {session_id}") as conn:
            if not conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone():
                raise LedgerError(f"[ledger] session {session_id} not found")
            (last,) = conn.execute(
                "SELECT COALESCE(MAX(round_num), 0) FROM rounds WHERE session_id = ?", (session_id,)
            ).fetchone()
            round_num = last + 1
            cursor = conn.execute(
                """
                INSERT INTO rounds (
                    session_id, round_num, user_query, plan_json, table_schema,
                    report, findings, operation_log, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    round_num,
                    user_query,
                    plan.model_dump_json(),
                    plan.table_schema,
                    report,
                    findings,
                    operation_log,
                    _now(),
                ),
            )
            round_id = cursor.lastrowid
            conn.executemany(
                "INSERT INTO steps (round_id, step_id, intent, status) VALUES (?, ?, ?, ?)",
                [(round_id, step.step_id, step.intent, "completed") for step in plan.steps],
            )
            conn.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (_now(), session_id))
        logger.info("[ledger] saved round %d for session %s", round_num, session_id)
        return round_num

    def load_history(self, session_id: str) -> SessionHistory | None:
        """Fold every round of the session. None when the session has no rounds yet."""
        rows = self._query(
            "load history",
            "SELECT round_num, findings, operation_log, report FROM rounds "
            "WHERE session_id = ? ORDER BY round_num ASC",
            (session_id,),
        )
        if not rows:
            return None
        return fold_history(rows)

    def load_plan(self, session_id: str, round_num: int) -> Plan:
        rows = self._query(
            "load plan",
            "SELECT plan_json FROM rounds WHERE session_id = ? AND round_num = ?",
            (session_id, round_num),
        )
        if not rows:
            raise LedgerError(f"[ledger] round {round_num} of session {session_id} not found")
        return Plan.model_validate_json(rows[0][0])


# ---------------------------------------------------------------------------
# Session handle
# ---------------------------------------------------------------------------


class Session:
    """One analysis session: a capture plus the rounds asked about it."""

    def __init__(self, ledger: RoundLedger, session_id: str, pcap_path: str, round_num: int = 0) -> None:
        self.ledger = ledger
        self.id = session_id
        self.pcap_path = pcap_path
        self.round_num = round_num

    @classmethod
    def create(cls, ledger: RoundLedger, pcap_path: str) -> "Session":
        return cls(ledger, ledger.create_session(pcap_path), pcap_path)

    @classmethod
    def resume(cls, ledger: RoundLedger, session_id: str) -> "Session":
        if not ledger.session_exists(session_id):
            raise LedgerError(f"[ledger] session {session_id} not found")
        return cls(
            ledger,
            session_id,
            ledger.session_pcap_path(session_id),
            ledger.round_count(session_id),
        )

    def history(self) -> SessionHistory | None:
        if self.round_num == 0:
            return None
        return self.ledger.load_history(self.id)

    def save_round(self, user_query: str, plan: Plan, result: Result) -> int:
        round_num = self.ledger.save_round(
            self.id,
            plan,
            result.report,
            result.findings,
            result.operation_log,
            user_query=user_query,
        )
        self.round_num = round_num
        return round_num
