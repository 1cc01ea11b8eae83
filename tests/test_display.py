import pytest
from rich.console import Console

from pcap_agent import display
from pcap_agent.events import ErrorData, Event, EventType, StepFindingsData


@pytest.fixture
def console(monkeypatch):
    recorder = Console(record=True, width=200, color_system=None)
    monkeypatch.setattr(display, "console", recorder)
    return recorder


# ---------------------------------------------------------------------------
# Bracketed text is printed literally
# ---------------------------------------------------------------------------

def test_query_with_closing_tag_is_printed_verbatim(console):
    display.prompt_received("why is [/b] in the http payload?", 1)
    assert "why is [/b] in the http payload?" in console.export_text()

def test_findings_keep_wireshark_labels(console):
    display.step_findings({"findings": "[TCP Retransmission] seen 14 times", "actions": "tshark -Y '[bold]'"})
    text = console.export_text()
    assert "[TCP Retransmission] seen 14 times" in text
    assert "tshark -Y '[bold]'" in text

def test_plan_intents_and_thought_are_escaped(console):
    display.plan_created(
        {
            "thought": "check [/dim] markers",
            "total_steps": 1,
            "steps": [{"step_id": 1, "intent": "count [TCP Dup ACK] frames"}],
        }
    )
    text = console.export_text()
    assert "[TCP Dup ACK]" in text
    assert "check [/dim] markers" in text

def test_error_event_message_is_escaped(console):
    event = Event.create(EventType.STEP_ERROR, ErrorData(phase="executor", message="bad reply [/red]", step_id=2))
    display.render(event)
    assert "bad reply [/red]" in console.export_text()

def test_halt_and_ledger_warning_are_escaped(console):
    display.halt("[ledger] session sess_1 not found")
    display.ledger_warning("[ledger] save round: disk full")
    text = console.export_text()
    assert "[ledger] session sess_1 not found" in text
    assert "[ledger] save round: disk full" in text

def test_step_findings_event_renders(console):
    event = Event.create(
        EventType.STEP_FINDINGS,
        StepFindingsData(step_id=1, intent="scan", findings="443/tcp [SYN]", actions="tshark"),
    )
    display.render(event)
    assert "443/tcp [SYN]" in console.export_text()
