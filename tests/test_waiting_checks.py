from proactive_listener.proactive.waiting_checks import (
    check_waiting_check_match,
    waiting_check_content_type,
    waiting_check_fallback_copy,
)
from proactive_listener.store.models import WaitingCheck
from tests.fakes import FakeLLM, call_failure

TOOL = "analyze_waiting_check_match"
CHECKS = [
    WaitingCheck(id=4, user_id=1, content="package delivered", service_type="messaging"),
    WaitingCheck(id=9, user_id=1, content="Rasmus replies about the phone", service_type="whatsapp",
                 noti_type="call"),
]


class TestCheckWaitingCheckMatch:
    def test_match(self):
        llm = FakeLLM({TOOL: [{
            "waiting_check_id": 9,
            "sms_message": "Rasmus replied about the phone.",
            "first_message": "Hey, Rasmus got back to you about the phone!",
            "match_explanation": "sender and topic match",
        }]})
        result = check_waiting_check_match(llm, "Whatsapp from Rasmus: phone is fixed", CHECKS)
        assert result == (9, "Rasmus replied about the phone.", "Hey, Rasmus got back to you about the phone!")
        prompt = llm.calls_for(TOOL)[0]
        assert "ID: 4, Content: package delivered" in prompt
        assert "Whatsapp from Rasmus: phone is fixed" in prompt

    def test_null_is_no_match(self):
        llm = FakeLLM({TOOL: [{"waiting_check_id": None}]})
        assert check_waiting_check_match(llm, "hi", CHECKS) == (None, None, None)

    def test_unknown_id_is_no_match(self):
        llm = FakeLLM({TOOL: [{"waiting_check_id": 77, "sms_message": "x"}]})
        assert check_waiting_check_match(llm, "hi", CHECKS) == (None, None, None)

    def test_llm_failure_is_no_match(self):
        llm = FakeLLM({TOOL: [call_failure()]})
        assert check_waiting_check_match(llm, "hi", CHECKS) == (None, None, None)

    def test_empty_copy_comes_back_as_none(self):
        llm = FakeLLM({TOOL: [{"waiting_check_id": "4", "sms_message": "", "first_message": ""}]})
        assert check_waiting_check_match(llm, "delivered!", CHECKS) == (4, None, None)

    def test_no_checks_skips_the_llm(self):
        llm = FakeLLM()
        assert check_waiting_check_match(llm, "hi", []) == (None, None, None)
        assert llm.calls == []


class TestCopy:
    def test_content_type(self):
        assert waiting_check_content_type("whatsapp", CHECKS[1]) == "whatsapp_waiting_check_call"
        assert waiting_check_content_type("whatsapp", CHECKS[0]) == "whatsapp_waiting_check_sms"
        assert waiting_check_content_type("signal", None) == "signal_waiting_check_sms"

    def test_fallback(self):
        sms, first = waiting_check_fallback_copy("telegram")
        assert sms == "Waiting check matched in telegram, but failed to get content"
        assert "Telegram" in first
