import hashlib
import sqlite3

import pytest
from unittest.mock import patch

from pcap_agent.errors import LedgerError
from pcap_agent.ledger import RoundLedger, Session, fold_history
from pcap_agent.models import Plan, Result, Step


@pytest.fixture
def ledger(tmp_path):
    with RoundLedger(tmp_path / "ledger.db") as led:
        yield led


def _plan(*intents):
    return Plan(thought="t", steps=[Step(step_id=i + 1, intent=intent) for i, intent in enumerate(intents)])


# ---------------------------------------------------------------------------
# History folding
# ---------------------------------------------------------------------------

def test_fold_history_two_rounds():
    history = fold_history([(1, "F1", "L1", "R1"), (2, "F2", "L2", "R2")])
    assert history.findings == "## Round 1\nF1\n\n## Round 2\nF2\n\n"
    assert history.operation_log == "## Round 1\nL1\n\n## Round 2\nL2\n\n"
    assert history.previous_report == "R2"
    assert history.all_reports == ["R1", "R2"]

def test_fold_history_skips_empty_fields():
    history = fold_history([(1, "", "L1", "R1"), (2, "F2", "", "")])
    assert history.findings == "## Round 2\nF2\n\n"
    assert history.operation_log == "## Round 1\nL1\n\n"
    assert history.previous_report == "R1"

# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def test_create_session_ids_are_unique(ledger):
    first = ledger.create_session("/data/a.pcap")
    second = ledger.create_session("/data/a.pcap")
    assert first.startswith("sess_")
    assert first != second
    assert ledger.session_exists(first)
    assert not ledger.session_exists("sess_0")

def test_record_capture_hashes_file(ledger, tmp_path):
    pcap = tmp_path / "cap.pcap"
    pcap.write_bytes(b"\xd4\xc3\xb2\xa1" + b"\x00" * 20)
    capture_id = ledger.record_capture(str(pcap))
    assert capture_id is not None
    conn = sqlite3.connect(ledger.db_path)
    name, size, digest = conn.execute(
        "SELECT file_name, file_size, file_hash FROM captures WHERE id = ?", (capture_id,)
    ).fetchone()
    conn.close()
    assert name == "cap.pcap"
    assert size == 24
    assert digest == hashlib.sha256(pcap.read_bytes()).hexdigest()

def test_record_capture_missing_file(ledger, tmp_path):
    assert ledger.record_capture(str(tmp_path / "missing.pcap")) is None

def test_list_sessions_counts_rounds(ledger):
    sid = ledger.create_session("/data/a.pcap")
    ledger.create_session("/data/b.pcap")
    ledger.save_round(sid, _plan("x"), "R1", "F1", "L1")
    sessions = {s.id: s for s in ledger.list_sessions()}
    assert len(sessions) == 2
    assert sessions[sid].rounds == 1
    assert sessions[sid].pcap_path == "/data/a.pcap"

# ---------------------------------------------------------------------------
# Rounds
# ---------------------------------------------------------------------------

def test_round_numbers_are_sequential(ledger):
    sid = ledger.create_session("/p")
    assert ledger.save_round(sid, _plan("a"), "R1", "F1", "L1") == 1
    assert ledger.save_round(sid, _plan("b"), "R2", "F2", "L2") == 2
    assert ledger.round_count(sid) == 2

def test_round_numbers_are_per_session(ledger):
    a = ledger.create_session("/p")
    b = ledger.create_session("/p")
    ledger.save_round(a, _plan("x"), "R", "", "")
    assert ledger.save_round(b, _plan("x"), "R", "", "") == 1

def test_load_history_after_two_rounds(ledger):
    sid = ledger.create_session("/p")
    ledger.save_round(sid, _plan("a"), "R1", "F1", "L1")
    ledger.save_round(sid, _plan("b"), "R2", "F2", "L2")
    history = ledger.load_history(sid)
    assert history.findings == "## Round 1\nF1\n\n## Round 2\nF2\n\n"
    assert history.previous_report == "R2"

def test_load_history_without_rounds(ledger):
    sid = ledger.create_session("/p")
    assert ledger.load_history(sid) is None

def test_save_round_unknown_session(ledger):
    with pytest.raises(LedgerError, match="not found"):
        ledger.save_round("sess_nope", _plan("a"), "R", "F", "L")

def test_save_round_records_steps_and_plan(ledger):
    sid = ledger.create_session("/p")
    plan = Plan(thought="t", table_schema="conn(ts)", steps=[Step(step_id=2, intent="a"), Step(step_id=5, intent="b")])
    ledger.save_round(sid, plan, "R", "F", "L", user_query="what?")
    assert ledger.load_plan(sid, 1) == plan

    conn = sqlite3.connect(ledger.db_path)
    rows = conn.execute("SELECT step_id, intent, status FROM steps ORDER BY id").fetchall()
    query = conn.execute("SELECT user_query, table_schema FROM rounds").fetchone()
    conn.close()
    assert rows == [(2, "a", "completed"), (5, "b", "completed")]
    assert query == ("what?", "conn(ts)")

def test_load_plan_missing_round(ledger):
    sid = ledger.create_session("/p")
    with pytest.raises(LedgerError):
        ledger.load_plan(sid, 3)

def test_failed_write_leaves_nothing_behind(ledger):
    sid = ledger.create_session("/p")
    with pytest.raises(RuntimeError):
        with ledger.transaction("test") as conn:
            conn.execute(
                "INSERT INTO rounds (session_id, round_num, user_query, created_at) VALUES (?, 1, 'q', 'now')",
                (sid,),
            )
            raise RuntimeError("boom")
    assert ledger.round_count(sid) == 0

def test_sqlite_error_becomes_ledger_error(ledger):
    with pytest.raises(LedgerError, match="bad insert"):
        with ledger.transaction("bad insert") as conn:
            conn.execute("INSERT INTO no_such_table VALUES (1)")

# ---------------------------------------------------------------------------
# Session handle
# ---------------------------------------------------------------------------

def test_session_create_and_save(ledger):
    session = Session.create(ledger, "/data/cap.pcap")
    assert session.round_num == 0
    assert session.history() is None

    n = session.save_round("q1", _plan("a"), Result(report="R1", findings="F1", operation_log="L1"))
    assert n == 1
    assert session.round_num == 1
    assert session.history().previous_report == "R1"

def test_session_resume(ledger):
    session = Session.create(ledger, "/data/cap.pcap")
    session.save_round("q1", _plan("a"), Result(report="R1", findings="F1"))
    session.save_round("q2", _plan("b"), Result(report="R2", findings="F2"))

    resumed = Session.resume(ledger, session.id)
    assert resumed.pcap_path == "/data/cap.pcap"
    assert resumed.round_num == 2
    assert resumed.history().findings == "## Round 1\nF1\n\n## Round 2\nF2\n\n"

def test_session_resume_unknown(ledger):
    with pytest.raises(LedgerError):
        Session.resume(ledger, "sess_unknown")

def test_ledger_persists_across_reopen(tmp_path):
    path = tmp_path / "ledger.db"
    with RoundLedger(path) as first:
        sid = first.create_session("/p")
        first.save_round(sid, _plan("a"), "R1", "F1", "L1")
    with RoundLedger(path) as second:
        assert second.round_count(sid) == 1
        assert second.load_history(sid).previous_report == "R1"

def test_interrupted_save_is_rolled_back(ledger):
    sid = ledger.create_session("/p")
    with patch("pcap_agent.ledger._now", side_effect=["2026-01-01T00:00:00+00:00", KeyboardInterrupt()]):
        with pytest.raises(KeyboardInterrupt):
            ledger.save_round(sid, _plan("a", "b"), "INTERRUPTED", "F", "L")

    assert ledger.save_round(sid, _plan("c"), "R-next", "F", "L") == 1

    conn = sqlite3.connect(ledger.db_path)
    reports = [r[0] for r in conn.execute("SELECT report FROM rounds WHERE session_id = ?", (sid,))]
    steps = conn.execute("SELECT COUNT(*) FROM steps").fetchone()[0]
    conn.close()
    assert reports == ["R-next"]
    assert steps == 1
