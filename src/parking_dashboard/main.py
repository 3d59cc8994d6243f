"""
Parking Dashboard entrypoint.

CLI:
  parking-dashboard run              -> connect, subscribe, print messages; stdin lines are published
  parking-dashboard publish MESSAGE  -> connect, publish one message, disconnect
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Optional, TextIO

from parking_dashboard.config import ConfigError, DashboardConfig, load_config, package_version
from parking_dashboard.core.log_config import configure_logging
from parking_dashboard.topics import TopicError, validate_topic_filter

configure_logging()
logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_TIMEOUT_S = 10.0


def get_version_string() -> str:
    return package_version()


@dataclass
class Runtime:
    shutdown: threading.Event
    manager: Optional[object] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def resolve_config(args: argparse.Namespace) -> DashboardConfig:
    """Environment config with any broker/topic flags given on the command line applied on top."""
    cfg = load_config()
    overrides = {
        "host": args.host,
        "port": args.port,
        "client_id": args.client_id,
        "username": args.username,
        "password": args.password,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    broker = dataclasses.replace(cfg.broker, **overrides) if overrides else cfg.broker
    if args.topic:
        try:
            validate_topic_filter(args.topic)
        except TopicError as exc:
            raise ConfigError(f"Invalid --topic: {exc}") from exc
    return DashboardConfig(broker=broker, topic=args.topic or cfg.topic)


def _publish_lines(manager, topic: str, stream: TextIO, rt: Runtime) -> None:
    from parking_dashboard.mqtt_client import ConnectionManagerError

    for line in stream:
        if rt.shutdown.is_set():
            return
        text = line.strip()
        if not text:
            continue
        try:
            manager.publish(topic, text)
        except (ConnectionManagerError, TopicError) as exc:
            logger.error("Publish failed: %s", exc)
    logger.info("Input closed; requesting shutdown")
    rt.shutdown.set()


def run_dashboard(
    cfg: DashboardConfig,
    *,
    stdin: Optional[TextIO] = None,
    out: TextIO = sys.stdout,
) -> int:
    """
    Runtime mode: connect, subscribe to cfg.topic once connected, print every
    message. Lines read from stdin (if given) are published to cfg.topic.
    Blocks until shutdown; returns process exit code.
    """
    from parking_dashboard.console import ConsoleView
    from parking_dashboard.core.models import ConnectionStatus
    from parking_dashboard.mqtt_client import ConnectionManagerError, DashboardMQTTClient

    manager = DashboardMQTTClient()
    rt = Runtime(shutdown=threading.Event(), manager=manager)
    _install_signal_handlers(rt)
    view = ConsoleView(out)

    def _on_state(state) -> None:
        view.show_state(state)
        if state.status is ConnectionStatus.CONNECTED:
            try:
                manager.subscribe(cfg.topic)
            except (ConnectionManagerError, ValueError) as exc:
                logger.error("Subscribe to %s failed: %s", cfg.topic, exc)

    manager.state_changes.subscribe(_on_state)
    manager.messages.subscribe(view.show_message)

    logger.info("============================================================")
    logger.info("Parking Dashboard")
    logger.info("Version: %s", get_version_string())
    logger.info("Broker: %s:%s", cfg.broker.host, cfg.broker.port)
    logger.info("Topic: %s", cfg.topic)
    logger.info("============================================================")

    manager.configure(cfg.broker)
    manager.connect()

    if stdin is not None:
        threading.Thread(
            target=_publish_lines,
            args=(manager, cfg.topic, stdin, rt),
            daemon=True,
            name="dashboard-input",
        ).start()

    try:
        while not rt.shutdown.is_set():
            rt.shutdown.wait(0.5)
    finally:
        logger.info("Shutting down...")
        manager.close()
        view.show_summary(manager.store)

    return 0


def publish_once(cfg: DashboardConfig, message: str, *, timeout: float = DEFAULT_PUBLISH_TIMEOUT_S) -> int:
    """Connect, publish message to cfg.topic with QoS 1 and disconnect. Returns process exit code."""
    from parking_dashboard.core.models import ConnectionStatus
    from parking_dashboard.mqtt_client import DashboardMQTTClient

    if not message.strip():
        logger.error("Refusing to publish an empty message")
        return 2

    manager = DashboardMQTTClient()
    try:
        manager.configure(cfg.broker)
        manager.connect()
        state = manager.wait_for_state(ConnectionStatus.CONNECTED, ConnectionStatus.FAILED, timeout=timeout)
        if state.status is not ConnectionStatus.CONNECTED:
            logger.error("Could not connect to %s:%s: %s", cfg.broker.host, cfg.broker.port, state.describe())
            return 1
        info = manager.publish(cfg.topic, message, qos=1)
        info.wait_for_publish(timeout=timeout)
        if not info.is_published():
            logger.error("Publish to %s not acknowledged within %ss", cfg.topic, timeout)
            return 1
        logger.info("Published to %s", cfg.topic)
        return 0
    except (RuntimeError, ValueError) as exc:
        logger.error("Publish to %s failed: %s", cfg.topic, exc)
        return 1
    finally:
        manager.close()


def _broker_args() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument("--host", help="Broker host (env MQTT_HOST)")
    p.add_argument("--port", type=int, help="Broker port (env MQTT_PORT)")
    p.add_argument("--client-id", dest="client_id", help="MQTT client id (env MQTT_CLIENT_ID)")
    p.add_argument("--username", help="Broker username (env MQTT_USERNAME)")
    p.add_argument("--password", help="Broker password (env MQTT_PASSWORD)")
    p.add_argument("--topic", help="Topic to subscribe and publish to (env DASHBOARD_TOPIC)")
    return p


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="parking-dashboard")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    common = _broker_args()

    run_parser = sub.add_parser("run", parents=[common], help="Show messages and publish lines typed on stdin")
    run_parser.add_argument(
        "--no-input",
        action="store_true",
        help="Do not read messages to publish from stdin",
    )

    publish_parser = sub.add_parser("publish", parents=[common], help="Publish a single message and exit")
    publish_parser.add_argument("message", help="Text to publish")
    publish_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_PUBLISH_TIMEOUT_S,
        help="Seconds to wait for the connection and the delivery (default: %(default)s)",
    )

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        cfg = resolve_config(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(2)

    if args.cmd == "run":
        raise SystemExit(run_dashboard(cfg, stdin=None if args.no_input else sys.stdin))

    if args.cmd == "publish":
        raise SystemExit(publish_once(cfg, args.message, timeout=args.timeout))

    raise SystemExit(2)


if __name__ == "__main__":
    main()
