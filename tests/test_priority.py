from proactive_listener.config import SMS_SENDER_MAX_CHARS
from proactive_listener.proactive.priority import (
    ELLIPSIS,
    is_focus_sender,
    match_priority,
    priority_content_type,
    priority_first_message,
    trim_for_sms,
)
from proactive_listener.store.models import PrioritySender


def _ps(sender, platform="whatsapp", mode="all", noti_type="sms"):
    return PrioritySender(user_id=1, platform=platform, sender=sender, noti_mode=mode, noti_type=noti_type)


class TestMatchPriority:
    def test_case_insensitive_substring_of_chat_name(self):
        ps = match_priority("whatsapp", "Mom Smith", "whatsapp_358401", [_ps("mom")])
        assert ps is not None
        assert ps.sender == "mom"

    def test_matches_sender_name(self):
        assert match_priority("whatsapp", "Family", "rasmus", [_ps("Rasmus")]) is not None

    def test_bridge_suffix_on_stored_name_is_ignored(self):
        assert match_priority("whatsapp", "Mom", "x", [_ps("Mom (WA)")]) is not None

    def test_focus_mode_senders_never_bypass(self):
        assert match_priority("whatsapp", "Mom", "x", [_ps("Mom", mode="focus")]) is None

    def test_other_platform_is_ignored(self):
        assert match_priority("whatsapp", "Mom", "x", [_ps("Mom", platform="telegram")]) is None

    def test_first_match_in_stored_order(self):
        senders = [_ps("Mo", noti_type="call"), _ps("Mom")]
        assert match_priority("whatsapp", "Mom", "x", senders).noti_type == "call"

    def test_empty_name_never_matches(self):
        assert match_priority("whatsapp", "Mom", "x", [_ps("")]) is None


class TestFocusSender:
    def test_only_focus_mode_counts(self):
        assert is_focus_sender("Mom", "x", [_ps("Mom", mode="focus")])
        assert not is_focus_sender("Mom", "x", [_ps("Mom", mode="all")])


class TestCopy:
    def test_content_type_suffix_follows_noti_type(self):
        assert priority_content_type("whatsapp", _ps("Mom")) == "whatsapp_priority_sms"
        assert priority_content_type("telegram", _ps("Mom", noti_type="call")) == "telegram_priority_call"

    def test_first_message(self):
        assert priority_first_message("whatsapp", _ps("Mom")) == (
            "Hello, you have an important Whatsapp message from Mom."
        )

    def test_short_message_is_untouched(self):
        assert trim_for_sms("whatsapp", "Mom", "call me") == "Whatsapp from Mom: call me"

    def test_long_content_is_cut_with_ellipsis(self):
        text = trim_for_sms("whatsapp", "Mom", "x" * 500)
        assert text.startswith("Whatsapp from Mom: x")
        assert text.endswith(ELLIPSIS)
        assert len(text) <= 160

    def test_long_sender_is_capped(self):
        sender = "S" * 80
        text = trim_for_sms("whatsapp", sender, "hi")
        assert "S" * SMS_SENDER_MAX_CHARS + ELLIPSIS + ": hi" in text
        assert "S" * (SMS_SENDER_MAX_CHARS + 1) not in text
