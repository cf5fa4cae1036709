import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from proactive_listener.proactive.digest import (
    SLOTS,
    DigestConfigError,
    DigestScheduler,
    compute_window,
    hours_since,
    hours_until,
    parse_digest_hour,
)
from proactive_listener.proactive.dispatcher import NotificationDispatcher
from proactive_listener.sources.base import MessageInfo
from proactive_listener.store.models import BridgeConnection, DigestSettings, PrioritySender
from tests.fakes import FakeBridgeHistory, FakeCalendar, FakeEmail, FakeLLM, FakeSender

# Helsinki is UTC+2 in January
HELSINKI_0700_UTC = datetime(2026, 1, 15, 5, 0, tzinfo=timezone.utc)


def _at(clock, local_hour):
    clock.now = (HELSINKI_0700_UTC + timedelta(hours=local_hour - 7)).timestamp()


def _msg(sender, platform, minutes_ago, content="hi"):
    ts = int(HELSINKI_0700_UTC.timestamp()) - minutes_ago * 60
    return MessageInfo(sender, content, datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(), platform, ts)


class RecordingCompose:
    def __init__(self, result="WHATSAPP: Mom asked about dinner", fail=False):
        self.result = result
        self.fail = fail
        self.calls = []

    def __call__(self, llm, messages, calendar_events, hours, priority_map):
        self.calls.append({"messages": messages, "events": calendar_events, "hours": hours, "map": priority_map})
        if self.fail:
            raise RuntimeError("composer exploded")
        return self.result


class FakeAlerter:
    def __init__(self):
        self.alerts = []

    async def send_alert_async(self, subject, message):
        self.alerts.append((subject, message))
        return True


@pytest.fixture
def digest_env(store, user, clock):
    store.set_digests(1, morning="07:00", day="13:00")
    sender = FakeSender()
    compose = RecordingCompose()
    bridges = FakeBridgeHistory({"whatsapp": [_msg("Mom", "whatsapp", 30)]})

    def build(**overrides):
        kwargs = dict(
            store=store,
            dispatcher=NotificationDispatcher(store, sender),
            llm=FakeLLM(),
            calendar=FakeCalendar(),
            email=FakeEmail(),
            bridges=bridges,
            compose=compose,
            clock=clock,
        )
        kwargs.update(overrides)
        return DigestScheduler(**kwargs)

    return build, sender, compose


class TestHourArithmetic:
    def test_parse(self):
        assert parse_digest_hour("07:00") == 7
        assert parse_digest_hour("23") == 23
        for bad in ("24:00", "seven", "", None):
            with pytest.raises(DigestConfigError):
                parse_digest_hour(bad)

    def test_wraparound(self):
        assert hours_until(20, 8) == 12
        assert hours_until(8, 8) == 0
        assert hours_since(7, 20) == 11
        assert hours_since(18, 12) == 6

    def test_morning_window(self):
        settings = DigestSettings(morning_digest="07:00", day_digest="13:00")
        assert compute_window(SLOTS["morning"], 7, settings) == (6, 7)

    def test_morning_falls_through_to_evening(self):
        settings = DigestSettings(morning_digest="07:00", evening_digest="19:00")
        assert compute_window(SLOTS["morning"], 7, settings) == (12, 12)

    def test_day_and_evening_fallbacks(self):
        assert compute_window(SLOTS["day"], 12, DigestSettings(day_digest="12:00")) == (12, 6)
        assert compute_window(SLOTS["evening"], 20, DigestSettings(evening_digest="20:00")) == (12, 8)

    def test_malformed_neighbour_uses_default_hour(self):
        settings = DigestSettings(morning_digest="07:00", day_digest="noon")
        assert compute_window(SLOTS["morning"], 7, settings) == (5, 7)

    def test_malformed_neighbours_of_day_slot(self):
        settings = DigestSettings(morning_digest="8am", day_digest="12:00", evening_digest="late")
        assert compute_window(SLOTS["day"], 12, settings) == (12, 6)


class TestCheckDigest:
    def test_fires_only_at_the_configured_local_hour(self, digest_env, clock):
        build, sender, _ = digest_env
        scheduler = build()
        results = {}
        for hour in (6, 7, 8):
            _at(clock, hour)
            results[hour] = asyncio.run(scheduler.check_morning_digest(1))

        assert results[6] is None
        assert results[8] is None
        assert results[7] == "Good morning! WHATSAPP: Mom asked about dinner"
        assert sender.sms == [(1, "Good morning! WHATSAPP: Mom asked about dinner")]

    def test_window_reaches_the_next_digest(self, digest_env, clock):
        build, _, compose = digest_env
        calendar = FakeCalendar([{"summary": "Dentist", "start": "2026-01-15T09:00:00+02:00", "duration_minutes": 30}])
        bridges = FakeBridgeHistory({"whatsapp": [_msg("Mom", "whatsapp", 30)]})
        _at(clock, 7)

        asyncio.run(build(calendar=calendar, bridges=bridges).check_digest("morning", 1))

        start, end = calendar.windows[0]
        assert datetime.fromisoformat(end) - datetime.fromisoformat(start) == timedelta(hours=6)
        assert compose.calls[0]["hours"] == 6
        assert compose.calls[0]["events"][0].title == "Dentist"
        # looks back to midnight because no evening digest is set
        since_ts = bridges.requests[0][1]
        assert since_ts == int(HELSINKI_0700_UTC.timestamp()) - 7 * 3600

    def test_nothing_new_sends_nothing(self, digest_env, clock):
        build, sender, compose = digest_env
        _at(clock, 7)
        assert asyncio.run(build(bridges=FakeBridgeHistory()).check_digest("morning", 1)) is None
        assert sender.total == 0
        assert compose.calls == []

    def test_messages_sorted_by_platform_priority_then_recency(self, digest_env, store, clock):
        build, _, compose = digest_env
        store.upsert_bridge(BridgeConnection(user_id=1, bridge_type="telegram", status="connected"))
        store.create_priority_sender(PrioritySender(user_id=1, platform="whatsapp", sender="Boss"))
        bridges = FakeBridgeHistory({
            "whatsapp": [_msg("Friend", "whatsapp", 10), _msg("Boss", "whatsapp", 200), _msg("Gym", "whatsapp", 5)],
            "telegram": [_msg("Carol", "telegram", 1)],
        })
        email = FakeEmail([{"from": "bank@example.com", "snippet": "statement", "date": HELSINKI_0700_UTC.isoformat()}])
        _at(clock, 7)

        asyncio.run(build(bridges=bridges, email=email).check_digest("morning", 1))

        order = [(m.platform, m.sender) for m in compose.calls[0]["messages"]]
        assert order == [
            ("email", "bank@example.com"),
            ("telegram", "Carol"),
            ("whatsapp", "Boss"),
            ("whatsapp", "Gym"),
            ("whatsapp", "Friend"),
        ]
        assert compose.calls[0]["map"]["whatsapp"] == ["Boss"]

    def test_one_failing_platform_does_not_block_the_rest(self, digest_env, store, clock):
        build, sender, compose = digest_env
        store.upsert_bridge(BridgeConnection(user_id=1, bridge_type="telegram", status="connected"))
        bridges = FakeBridgeHistory({"whatsapp": [_msg("Mom", "whatsapp", 30)]}, failing=("telegram",))
        _at(clock, 7)

        result = asyncio.run(build(bridges=bridges, email=FakeEmail(fail=True),
                                   calendar=FakeCalendar(fail=True)).check_digest("morning", 1))

        assert result is not None
        assert [m.sender for m in compose.calls[0]["messages"]] == ["Mom"]
        assert sender.total == 1

    def test_disconnected_bridge_is_not_fetched(self, digest_env, store, clock):
        build, _, _ = digest_env
        store.upsert_bridge(BridgeConnection(user_id=1, bridge_type="whatsapp", status="connecting"))
        bridges = FakeBridgeHistory({"whatsapp": [_msg("Mom", "whatsapp", 30)]})
        _at(clock, 7)

        assert asyncio.run(build(bridges=bridges).check_digest("morning", 1)) is None
        assert bridges.requests == []

    def test_bridge_lookup_failure_alerts_the_admin(self, digest_env, store, clock, monkeypatch):
        build, sender, _ = digest_env
        alerter = FakeAlerter()
        email = FakeEmail([{"from": "a@b.c", "snippet": "x", "date": HELSINKI_0700_UTC.isoformat()}])

        def broken(user_id, bridge_type):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "get_bridge", broken)
        _at(clock, 7)

        async def run():
            result = await build(email=email, alerter=alerter).check_digest("morning", 1)
            await asyncio.sleep(0)
            return result

        assert asyncio.run(run()) is not None
        subjects = [s for s, _ in alerter.alerts]
        assert "Bridge Check Failed - Whatsapp" in subjects
        assert "database is locked" in alerter.alerts[0][1]

    def test_composer_failure_uses_generic_text(self, digest_env, clock):
        build, sender, _ = digest_env
        _at(clock, 7)

        text = asyncio.run(build(compose=RecordingCompose(fail=True)).check_digest("morning", 1))

        assert text == "Good morning! Here's your morning digest covering the last 7 hours. Next digest in 6 hours."
        assert sender.sms[0][1] == text

    def test_malformed_hour_is_a_no_op(self, digest_env, store, clock):
        build, sender, _ = digest_env
        store.set_digests(1, morning="seven")
        _at(clock, 7)
        assert asyncio.run(build().check_digest("morning", 1)) is None
        assert sender.total == 0

    def test_missing_timezone_is_a_no_op(self, digest_env, store, clock):
        build, sender, _ = digest_env
        store.conn.execute("UPDATE users SET timezone = NULL WHERE id = 1")
        _at(clock, 7)
        assert asyncio.run(build().check_digest("morning", 1)) is None


class TestTick:
    def test_counts_sent_digests(self, digest_env, clock):
        build, sender, _ = digest_env
        _at(clock, 7)
        assert asyncio.run(build().tick()) == 1
        _at(clock, 10)
        assert asyncio.run(build().tick()) == 0
        assert sender.total == 1

    def test_run_forever_sleeps_to_the_next_hour(self, digest_env, clock):
        build, _, _ = digest_env
        _at(clock, 10)
        clock.advance(15 * 60)
        delays = []

        async def run():
            stop = asyncio.Event()

            async def sleep(seconds):
                delays.append(seconds)
                stop.set()

            await build(sleep=sleep).run_forever(stop)

        asyncio.run(run())
        assert delays == [45 * 60 + 1]


class TestHourExactness:
    @pytest.mark.parametrize("local_hour, fires", [(7, False), (8, True), (9, False)])
    def test_eight_oclock_digest(self, digest_env, store, clock, local_hour, fires):
        build, sender, _ = digest_env
        store.set_digests(1, morning="08:00", day="13:00")
        _at(clock, local_hour)

        result = asyncio.run(build().check_morning_digest(1))

        assert (result is not None) is fires
        assert sender.total == int(fires)
