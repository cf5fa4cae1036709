import pytest

from proactive_listener.store.models import BridgeConnection, UserSettings
from proactive_listener.store.store import ProactiveStore
from tests.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    s = ProactiveStore(tmp_path / "proactive.db", clock=clock)
    yield s
    s.close()


@pytest.fixture
def user(store):
    settings = UserSettings(
        user_id=1,
        phone_number="+358401234567",
        timezone="Europe/Helsinki",
        notification_type="sms",
        critical_enabled="sms",
    )
    store.upsert_user(settings)
    store.upsert_bridge(BridgeConnection(user_id=1, bridge_type="whatsapp", status="connected",
                                         room_id="!mgmt:localhost"))
    return settings
