"""
Pytest configuration and shared fixtures
"""
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


BROKER_ENV = [
    'MQTT_HOST',
    'MQTT_PORT',
    'MQTT_CLIENT_ID',
    'MQTT_USERNAME',
    'MQTT_PASSWORD',
    'MQTT_KEEPALIVE',
    'DASHBOARD_TOPIC',
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every dashboard variable from the environment"""
    for key in BROKER_ENV:
        # setenv first so teardown also drops values load_dotenv may add
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        'MQTT_HOST': 'test.mqtt.local',
        'MQTT_PORT': '1883',
        'MQTT_CLIENT_ID': 'dashboard_test',
        'MQTT_USERNAME': 'viewer',
        'MQTT_PASSWORD': 'test-password',
        'MQTT_KEEPALIVE': '30',
        'DASHBOARD_TOPIC': 'Muhendislik',
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def fake_paho_client(monkeypatch):
    """
    Patch paho.mqtt.client.Client to return a controllable fake.
    """
    fake = MagicMock()
    fake.is_connected.return_value = True
    fake.disconnect.return_value = 0
    fake.subscribe.return_value = (0, 1)  # (rc, mid)
    fake.publish.return_value = MagicMock(rc=0, mid=2)
    fake.ctor_calls = []

    def _ctor(*args, **kwargs):
        fake.ctor_calls.append(kwargs)
        return fake

    monkeypatch.setattr("paho.mqtt.client.Client", _ctor)
    return fake


@pytest.fixture
def sync_executor(monkeypatch):
    """Make the owner-thread executor run submitted work immediately"""
    submitted = []

    class FakeExecutor:
        def __init__(self, *a, **k):
            self.closed = False

        def submit(self, fn, *args):
            if self.closed:
                raise RuntimeError("cannot schedule new futures after shutdown")
            submitted.append((fn, args))
            fn(*args)

        def shutdown(self, *a, **k):
            self.closed = True

    monkeypatch.setattr("parking_dashboard.mqtt_client.ThreadPoolExecutor", FakeExecutor)
    return submitted


class FakeMQTTMessage:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


@pytest.fixture
def make_message():
    return FakeMQTTMessage
