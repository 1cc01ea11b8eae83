import pytest

from pcap_agent.errors import ExtractionError
from pcap_agent.models import Plan, Step, StepOutput, flex_string
from pcap_agent.parsing import extract_json, format_plan_overview, parse_plan, parse_step_output, truncate

# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def test_extract_json_bare_object():
    assert extract_json('{"a": 1}') == '{"a": 1}'

def test_extract_json_with_preamble_and_trailer():
    text = 'Here is the plan: {"a": {"b": 2}} hope that helps'
    assert extract_json(text) == '{"a": {"b": 2}}'

def test_extract_json_strips_json_fence():
    text = 'Sure.\n```json\n{"findings": "x"}\n```\nDone.'
    assert extract_json(text) == '{"findings": "x"}'

def test_extract_json_strips_plain_fence():
    text = '```\n{"findings": "x"}\n```'
    assert extract_json(text) == '{"findings": "x"}'

def test_extract_json_is_idempotent_on_clean_json():
    raw = '{"thought": "t", "steps": [{"step_id": 1, "intent": "i"}]}'
    once = extract_json(raw)
    assert extract_json(once) == once

def test_extract_json_no_object():
    with pytest.raises(ExtractionError):
        extract_json("no braces at all")

def test_extract_json_brace_order_inverted():
    with pytest.raises(ExtractionError):
        extract_json("} backwards {")

# ---------------------------------------------------------------------------
# Plan / step output decoding
# ---------------------------------------------------------------------------

def test_parse_plan_valid():
    reply = """
    ```json
    {
        "thought": "Look at transport layers first.",
        "table_schema": "",
        "steps": [
            {"step_id": 1, "intent": "scan for TCP"},
            {"step_id": 3, "intent": "summarize"}
        ]
    }
    ```
    """
    plan = parse_plan(reply)
    assert plan.thought == "Look at transport layers first."
    assert [s.step_id for s in plan.steps] == [1, 3]

def test_parse_plan_malformed_json():
    with pytest.raises(ValueError):
        parse_plan("{ broken json }")

def test_parse_plan_steps_not_a_list():
    with pytest.raises(ValueError):
        parse_plan('{"thought": "t", "steps": "step one"}')

def test_parse_plan_tolerates_literal_newlines():
    reply = '{"thought": "line one\nline two", "steps": [{"step_id": 1, "intent": "x"}]}'
    assert parse_plan(reply).thought == "line one\nline two"

def test_parse_step_output_array_fields():
    out = parse_step_output('{"findings": ["a", "b"], "my_actions": "tshark -r x.pcap"}')
    assert out.findings == "a\nb"
    assert out.my_actions == "tshark -r x.pcap"

def test_parse_step_output_missing_fields_default_empty():
    out = parse_step_output('{"unrelated": 1}')
    assert out == StepOutput(findings="", my_actions="")

# ---------------------------------------------------------------------------
# FlexString
# ---------------------------------------------------------------------------

def test_flex_string_single_string():
    assert StepOutput.model_validate({"findings": "a"}).findings == "a"

def test_flex_string_array_joined_with_newlines():
    assert StepOutput.model_validate({"findings": ["a", "b"]}).findings == "a\nb"

def test_flex_string_malformed_value_keeps_raw_text():
    out = StepOutput.model_validate({"findings": {"hosts": 3}, "my_actions": 42})
    assert out.findings == '{"hosts":3}'
    assert out.my_actions == "42"

def test_flex_string_mixed_array_keeps_raw_text():
    assert flex_string(["a", 1]) == '["a",1]'

def test_flex_string_null_is_empty():
    assert flex_string(None) == ""

# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------

def test_format_plan_overview():
    plan = Plan(thought="why", steps=[Step(step_id=1, intent="scan"), Step(step_id=2, intent="report")])
    overview = format_plan_overview(plan)
    assert overview.startswith("## Investigation Plan\n\n**Planner Thought**: why\n\n")
    assert "- **Step 1**: scan\n" in overview
    assert "- **Step 2**: report\n" in overview

def test_truncate():
    assert truncate("abc", 5) == "abc"
    assert truncate("abcdef", 3) == "abc..."
