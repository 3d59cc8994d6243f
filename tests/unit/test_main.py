from __future__ import annotations

import io
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

import parking_dashboard.main as m
from parking_dashboard.config import BrokerConfig, ConfigError, DashboardConfig
from parking_dashboard.core.models import ConnectionState

CFG = DashboardConfig(broker=BrokerConfig(host="localhost", client_id="dashboard_test"), topic="Muhendislik")


def test_parser_requires_subcommand():
    p = m.build_parser()
    with pytest.raises(SystemExit):
        p.parse_args([])


def test_version_flag_exits(monkeypatch):
    with pytest.raises(SystemExit) as exc:
        m.main(["--version"])
    assert exc.value.code == 0


def test_publish_requires_message():
    with pytest.raises(SystemExit):
        m.build_parser().parse_args(["publish"])


def test_resolve_config_applies_cli_overrides(clean_env):
    args = m.build_parser().parse_args(
        ["run", "--host", "10.0.0.5", "--port", "8883", "--client-id", "me", "--topic", "otopark/a"]
    )
    cfg = m.resolve_config(args)

    assert cfg.broker.host == "10.0.0.5"
    assert cfg.broker.port == 8883
    assert cfg.broker.client_id == "me"
    assert cfg.topic == "otopark/a"


def test_resolve_config_keeps_env_when_no_flags(clean_env, mock_env):
    args = m.build_parser().parse_args(["run"])
    cfg = m.resolve_config(args)

    assert cfg.broker.host == "test.mqtt.local"
    assert cfg.broker.username == "viewer"
    assert cfg.topic == "Muhendislik"


def test_resolve_config_rejects_invalid_topic_flag(clean_env):
    args = m.build_parser().parse_args(["run", "--topic", "a/#/b"])
    with pytest.raises(ConfigError, match="--topic"):
        m.resolve_config(args)


def test_invalid_topic_flag_exits_with_2(monkeypatch, clean_env):
    publish = MagicMock(return_value=0)
    monkeypatch.setattr(m, "publish_once", publish)
    with pytest.raises(SystemExit) as exc:
        m.main(["publish", "x", "--topic", "a/#/b"])
    assert exc.value.code == 2
    publish.assert_not_called()


def test_invalid_port_flag_exits_with_2(clean_env):
    with pytest.raises(SystemExit) as exc:
        m.main(["run", "--port", "70000"])
    assert exc.value.code == 2


def test_run_exits_with_run_dashboard_code(monkeypatch, clean_env):
    seen = {}

    def fake_run(cfg, *, stdin=None, out=None):
        seen["stdin"] = stdin
        return 7

    monkeypatch.setattr(m, "run_dashboard", fake_run)
    with pytest.raises(SystemExit) as exc:
        m.main(["run", "--no-input"])
    assert exc.value.code == 7
    assert seen["stdin"] is None


def test_publish_exits_with_publish_once_code(monkeypatch, clean_env):
    monkeypatch.setattr(m, "publish_once", lambda cfg, message, timeout: 0 if message == "hi" else 9)
    with pytest.raises(SystemExit) as exc:
        m.main(["publish", "hi"])
    assert exc.value.code == 0


def _fake_manager(state: ConnectionState) -> MagicMock:
    manager = MagicMock()
    manager.wait_for_state.return_value = state
    return manager


def test_publish_once_refuses_empty_message(monkeypatch):
    ctor = MagicMock()
    monkeypatch.setattr("parking_dashboard.mqtt_client.DashboardMQTTClient", ctor)
    assert m.publish_once(CFG, "   ") == 2
    ctor.assert_not_called()


def test_publish_once_publishes_and_closes(monkeypatch):
    manager = _fake_manager(ConnectionState.connected())
    monkeypatch.setattr("parking_dashboard.mqtt_client.DashboardMQTTClient", lambda: manager)

    assert m.publish_once(CFG, "merhaba", timeout=1) == 0

    manager.configure.assert_called_once_with(CFG.broker)
    manager.connect.assert_called_once()
    manager.publish.assert_called_once_with("Muhendislik", "merhaba", qos=1)
    manager.publish.return_value.wait_for_publish.assert_called_once_with(timeout=1)
    manager.close.assert_called_once()


def test_publish_once_returns_1_when_not_acknowledged(monkeypatch, caplog):
    manager = _fake_manager(ConnectionState.connected())
    manager.publish.return_value.is_published.return_value = False
    monkeypatch.setattr("parking_dashboard.mqtt_client.DashboardMQTTClient", lambda: manager)

    assert m.publish_once(CFG, "merhaba", timeout=1) == 1
    assert "not acknowledged" in caplog.text
    manager.close.assert_called_once()


def test_publish_once_returns_1_when_connect_fails(monkeypatch):
    manager = _fake_manager(ConnectionState.failed("Not authorized"))
    monkeypatch.setattr("parking_dashboard.mqtt_client.DashboardMQTTClient", lambda: manager)

    assert m.publish_once(CFG, "merhaba", timeout=1) == 1
    manager.publish.assert_not_called()
    manager.close.assert_called_once()


def test_publish_once_returns_1_when_publish_raises(monkeypatch):
    from parking_dashboard.mqtt_client import PublishError

    manager = _fake_manager(ConnectionState.connected())
    manager.publish.side_effect = PublishError("queue full")
    monkeypatch.setattr("parking_dashboard.mqtt_client.DashboardMQTTClient", lambda: manager)

    assert m.publish_once(CFG, "merhaba", timeout=1) == 1
    manager.close.assert_called_once()


def test_publish_lines_skips_blank_lines_and_stops_on_eof():
    manager = MagicMock()
    rt = m.Runtime(shutdown=SimpleNamespace(is_set=lambda: False, set=MagicMock()))

    m._publish_lines(manager, "Muhendislik", io.StringIO("bir\n\n  \niki\n"), rt)

    assert [c.args for c in manager.publish.call_args_list] == [("Muhendislik", "bir"), ("Muhendislik", "iki")]
    rt.shutdown.set.assert_called_once()


def test_publish_lines_logs_and_continues_when_not_connected():
    from parking_dashboard.mqtt_client import NotConnectedError

    manager = MagicMock()
    manager.publish.side_effect = [NotConnectedError("not connected"), None]
    rt = m.Runtime(shutdown=SimpleNamespace(is_set=lambda: False, set=MagicMock()))

    m._publish_lines(manager, "Muhendislik", io.StringIO("bir\niki\n"), rt)

    assert manager.publish.call_count == 2


def test_run_dashboard_subscribes_on_connect_and_prints(monkeypatch, fake_paho_client, sync_executor, make_message):
    import threading

    real_runtime = m.Runtime

    def runtime_already_shut_down(shutdown, manager=None):
        # wait loop exits right after wiring and connecting
        event = threading.Event()
        event.set()
        return real_runtime(shutdown=event, manager=manager)

    created = {}
    from parking_dashboard import mqtt_client

    original_init = mqtt_client.DashboardMQTTClient.__init__

    def capture_init(self, *a, **k):
        original_init(self, *a, **k)
        created["manager"] = self

    monkeypatch.setattr(mqtt_client.DashboardMQTTClient, "__init__", capture_init)
    monkeypatch.setattr(m, "Runtime", runtime_already_shut_down)
    monkeypatch.setattr(m, "_install_signal_handlers", lambda rt: None)

    # Broker accepts as soon as connect_async is requested
    def accept(*a, **k):
        fake_paho_client.on_connect(fake_paho_client, None, {}, 0, None)
        fake_paho_client.on_message(
            fake_paho_client, None, make_message("Muhendislik", b'{"otopark_bos_alan":"12"}')
        )

    fake_paho_client.connect_async.side_effect = accept

    # Broker confirms the first disconnect request
    confirmed = []

    def confirm_disconnect():
        if not confirmed:
            confirmed.append(True)
            fake_paho_client.on_disconnect(fake_paho_client, None, None, 0, None)
        return 0

    fake_paho_client.disconnect.side_effect = confirm_disconnect
    out = io.StringIO()

    assert m.run_dashboard(CFG, stdin=None, out=out) == 0

    fake_paho_client.subscribe.assert_called_once_with("Muhendislik", qos=0)
    text = out.getvalue()
    assert "* Connecting..." in text
    assert "* Connected" in text
    assert "Free spaces: 12" in text
    assert len(created["manager"].store) == 1
    assert "* Disconnected" in text
    assert "Messages received: 1" in text
