import pytest

from proactive_listener.llm.client import LLMParseError
from proactive_listener.llm.contracts import (
    SMS_LIMIT,
    VOICE_OPENER_LIMIT,
    CriticalityVerdict,
    DigestResult,
    WaitingCheckMatch,
    parse_tool_arguments,
)


class TestWaitingCheckMatch:
    @pytest.mark.parametrize("raw, expected", [
        (3, 3),
        (3.0, 3),
        ("3", 3),
        (None, None),
        ("null", None),
        ("", None),
        (True, None),
    ])
    def test_id_coercion(self, raw, expected):
        result = parse_tool_arguments({"waiting_check_id": raw}, WaitingCheckMatch)
        assert result.waiting_check_id == expected
        assert result.matched is (expected is not None)

    def test_fractional_id_is_rejected(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments({"waiting_check_id": 2.5}, WaitingCheckMatch)

    def test_copy_is_truncated(self):
        result = parse_tool_arguments(
            {"waiting_check_id": 1, "sms_message": "s" * 400, "first_message": "f" * 400},
            WaitingCheckMatch,
        )
        assert len(result.sms_message) == SMS_LIMIT
        assert len(result.first_message) == VOICE_OPENER_LIMIT


class TestCriticalityVerdict:
    def test_string_booleans(self):
        assert parse_tool_arguments({"is_critical": "true"}, CriticalityVerdict).is_critical is True
        assert parse_tool_arguments({"is_critical": "False"}, CriticalityVerdict).is_critical is False

    def test_non_boolean_is_a_parse_error(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments({"is_critical": "maybe"}, CriticalityVerdict)

    def test_missing_flag_is_a_parse_error(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments({"what_to_inform": "hi"}, CriticalityVerdict)

    def test_copy_blanked_when_not_critical(self):
        verdict = parse_tool_arguments(
            {"is_critical": False, "what_to_inform": "x", "first_message": "y"}, CriticalityVerdict,
        )
        assert verdict.what_to_inform == ""
        assert verdict.first_message == ""


class TestParseToolArguments:
    def test_json_string_in_fences(self):
        raw = '```json\n{"digest": "WHATSAPP: Mom asked about dinner"}\n```'
        assert parse_tool_arguments(raw, DigestResult).digest == "WHATSAPP: Mom asked about dinner"

    def test_thinking_preamble_is_stripped(self):
        raw = '<think>hmm</think>{"is_critical": true, "what_to_inform": "Boss needs you"}'
        verdict = parse_tool_arguments(raw, CriticalityVerdict)
        assert verdict.is_critical is True
        assert verdict.what_to_inform == "Boss needs you"

    def test_non_object_payload(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments(["digest"], DigestResult)

    def test_empty_string(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments("   ", DigestResult)

    def test_empty_digest(self):
        with pytest.raises(LLMParseError):
            parse_tool_arguments({"digest": "  "}, DigestResult)
