"""
MQTT connection manager for the parking dashboard.

Owns at most one paho client. paho invokes callbacks on its network thread;
every callback hands its work to a single-worker executor (the owner thread)
so that the message store and the event channels are only ever touched from
one thread.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from parking_dashboard.config import BrokerConfig
from parking_dashboard.core.models import ConnectionState, ConnectionStatus, Message
from parking_dashboard.core.store import MessageStore
from parking_dashboard.events import EventChannel
from parking_dashboard.topics import validate_topic_filter, validate_topic_name

logger = logging.getLogger(__name__)


class ConnectionManagerError(RuntimeError):
    """Raised when the connection manager is used incorrectly or the client refuses a request."""


class NotConnectedError(ConnectionManagerError):
    """Raised when publish/subscribe is attempted without an active broker connection."""


class PublishError(ConnectionManagerError):
    """Raised when the client refuses to queue a publish."""


class SubscribeError(ConnectionManagerError):
    """Raised when the client refuses to queue a subscribe."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _connack_reason(reason_code: Any) -> str:
    if isinstance(reason_code, int):
        return mqtt.connack_string(reason_code)
    return str(reason_code)


def _disconnect_reason(reason_code: Any) -> str:
    if isinstance(reason_code, int):
        return mqtt.error_string(reason_code)
    return str(reason_code)


class DashboardMQTTClient:
    """
    Connection manager: configure(), connect(), subscribe(), publish(), disconnect().

    Connection state changes are published on state_changes and received
    messages on messages; both are emitted from the owner thread only, after
    the message has been appended to store.
    """

    def __init__(self, store: Optional[MessageStore] = None) -> None:
        self.store = store if store is not None else MessageStore()
        self.state_changes: EventChannel[ConnectionState] = EventChannel("state")
        self.messages: EventChannel[Message] = EventChannel("messages")

        self._cfg: Optional[BrokerConfig] = None
        self._client: Optional[mqtt.Client] = None
        self._loop_running = False
        self._disconnect_requested = False
        self._reconnect_pending = False

        self._state = ConnectionState.disconnected()
        self._state_cond = threading.Condition()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dashboard-owner")

    # -------------------------
    # Introspection
    # -------------------------
    @property
    def config(self) -> Optional[BrokerConfig]:
        return self._cfg

    @property
    def state(self) -> ConnectionState:
        with self._state_cond:
            return self._state

    def is_connected(self) -> bool:
        return self.state.status is ConnectionStatus.CONNECTED

    def wait_for_state(self, *statuses: ConnectionStatus, timeout: Optional[float] = None) -> ConnectionState:
        """
        Block until the state is one of statuses or timeout expires; return the
        state at that point. Must not be called from a state/message subscriber.
        """
        with self._state_cond:
            self._state_cond.wait_for(lambda: self._state.status in statuses, timeout=timeout)
            return self._state

    # -------------------------
    # Control
    # -------------------------
    def configure(self, cfg: BrokerConfig) -> None:
        """Replace the broker client with one built for cfg. Does not connect."""
        old = self._client
        if old is not None:
            logger.info("Replacing broker client for %s:%s", self._cfg.host, self._cfg.port)
            self._teardown(old)

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.client_id,
            protocol=mqtt.MQTTv311,
        )
        if cfg.username:
            client.username_pw_set(cfg.username, cfg.password or None)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe

        self._cfg = cfg
        self._client = client
        self._disconnect_requested = False
        self._reconnect_pending = False
        logger.info("Configured broker %s:%s as %s", cfg.host, cfg.port, cfg.client_id)

        if self.state.status is not ConnectionStatus.DISCONNECTED:
            self._post(self._set_state, ConnectionState.disconnected())

    def connect(self) -> None:
        """
        Start an asynchronous connection attempt. The outcome arrives later as
        a CONNECTED or FAILED state; a failed attempt is not retried.
        """
        client, cfg = self._client, self._cfg
        if client is None or cfg is None:
            raise ConnectionManagerError("configure() must be called before connect()")
        if self._loop_running:
            if self._disconnect_requested:
                # teardown still in flight; reconnect once it is confirmed
                self._reconnect_pending = True
                logger.info("connect() queued until disconnect completes")
                return
            logger.info("connect() ignored: connection already %s", self.state.status.value)
            return
        self._start_attempt(client, cfg)

    def _start_attempt(self, client: mqtt.Client, cfg: BrokerConfig) -> None:
        self._reconnect_pending = False
        self._disconnect_requested = False
        self._loop_running = True
        self._post(self._set_state, ConnectionState.connecting())
        try:
            client.connect_async(cfg.host, cfg.port, keepalive=cfg.keepalive_s)
            client.loop_start()
        except (OSError, ValueError) as exc:
            logger.error("MQTT connect to %s:%s failed: %s", cfg.host, cfg.port, exc)
            self._post(self._fail_attempt, client, str(exc))

    def disconnect(self) -> None:
        """Tear the connection down. DISCONNECTED is emitted once confirmed."""
        client = self._client
        if client is None:
            return
        self._disconnect_requested = True
        self._reconnect_pending = False

        if self.state.status is ConnectionStatus.CONNECTED:
            rc = client.disconnect()
            if rc == mqtt.MQTT_ERR_SUCCESS:
                # on_disconnect confirms
                return
            logger.warning("MQTT disconnect rc=%s; closing locally", mqtt.error_string(rc))

        self._post(self._cancel_attempt, client)

    def subscribe(self, topic: str, qos: int = 0) -> int:
        """Request a subscription to topic. Returns the request message id."""
        validate_topic_filter(topic)
        client = self._require_connected("subscribe")
        result, mid = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(f"Failed to subscribe to topic {topic}: {mqtt.error_string(result)}")
        logger.info("Subscribe requested: %s (mid=%s)", topic, mid)
        return mid

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> mqtt.MQTTMessageInfo:
        """Queue payload for topic. No delivery confirmation is surfaced."""
        validate_topic_name(topic)
        client = self._require_connected("publish")
        info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Failed to publish message to topic {topic}: {mqtt.error_string(info.rc)}")
        logger.debug("Published to %s: %s", topic, payload)
        return info

    def close(self, timeout: float = 2.0) -> None:
        """Disconnect, wait for the teardown to settle and stop the owner thread."""
        self.disconnect()
        if self._client is not None:
            self.wait_for_state(ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED, timeout=timeout)
        self._executor.shutdown(wait=True)

    # -------------------------
    # Owner-thread handoff
    # -------------------------
    def _post(self, fn: Callable[..., None], *args: Any) -> None:
        try:
            self._executor.submit(self._run_guarded, fn, *args)
        except RuntimeError:
            logger.debug("Owner executor closed; dropping %s", getattr(fn, "__name__", fn))

    @staticmethod
    def _run_guarded(fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Owner-thread task %s failed", getattr(fn, "__name__", fn))

    def _require_connected(self, op: str) -> mqtt.Client:
        client = self._client
        state = self.state
        if client is None or state.status is not ConnectionStatus.CONNECTED:
            raise NotConnectedError(f"cannot {op}: not connected to broker (state={state.status.value})")
        return client

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_cond:
            if state == self._state:
                return
            previous = self._state
            self._state = state
            self._state_cond.notify_all()
        logger.info("Connection state %s -> %s", previous.status.value, state.describe())
        self.state_changes.emit(state)

    def _teardown(self, client: mqtt.Client) -> None:
        client.on_connect = None
        client.on_connect_fail = None
        client.on_disconnect = None
        client.on_message = None
        client.on_subscribe = None
        self._stop_loop(client)

    def _stop_loop(self, client: mqtt.Client) -> None:
        # DISCONNECTING state keeps paho's loop from reconnecting on its own
        client.disconnect()
        client.loop_stop()
        if client is self._client:
            self._loop_running = False

    def _fail_attempt(self, client: mqtt.Client, reason: str) -> None:
        if client is not self._client:
            return
        self._stop_loop(client)
        self._set_state(ConnectionState.failed(reason))

    def _cancel_attempt(self, client: mqtt.Client) -> None:
        if client is not self._client:
            return
        self._stop_loop(client)
        self._set_state(ConnectionState.disconnected())
        self._resume_pending_connect(client)

    def _resume_pending_connect(self, client: mqtt.Client) -> None:
        if self._reconnect_pending and client is self._client and not self._loop_running:
            logger.info("Disconnect confirmed; starting queued connect")
            self._start_attempt(client, self._cfg)

    def _handle_connack(self, client: mqtt.Client, reason_code: Any) -> None:
        if client is not self._client:
            return
        if self._disconnect_requested:
            self._cancel_attempt(client)
            return
        if reason_code != 0:
            reason = _connack_reason(reason_code)
            logger.error("MQTT connect rejected: %s", reason)
            self._fail_attempt(client, reason)
            return
        logger.info("Connected to MQTT broker %s:%s", self._cfg.host, self._cfg.port)
        self._set_state(ConnectionState.connected())

    def _handle_disconnected(self, client: mqtt.Client, reason_code: Any) -> None:
        if client is not self._client:
            return
        self._stop_loop(client)
        status = self.state.status
        if status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED):
            self._resume_pending_connect(client)
            return
        if self._disconnect_requested or reason_code == 0:
            self._set_state(ConnectionState.disconnected())
            self._resume_pending_connect(client)
            return
        reason = _disconnect_reason(reason_code)
        if status is ConnectionStatus.CONNECTING:
            # dropped before CONNACK: the attempt failed
            logger.error("MQTT connect failed: %s", reason)
            self._fail_attempt(client, reason)
            return
        logger.warning("Unexpected disconnect: %s", reason)
        self._set_state(ConnectionState.disconnected(reason))

    def _deliver_message(self, client: mqtt.Client, topic: str, payload: str, received_at: datetime) -> None:
        if client is not self._client:
            return
        latest = self.store.latest()
        if latest is not None and received_at < latest.received_at:
            # wall clock stepped back; keep insertion order monotonic
            received_at = latest.received_at
        msg = Message.from_payload(topic, payload, received_at=received_at)
        self.store.append(msg)
        logger.debug("Stored message %s on %s", msg.id, topic)
        self.messages.emit(msg)

    # -------------------------
    # paho callbacks (network thread)
    # -------------------------
    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        self._post(self._handle_connack, client, reason_code)

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        cfg = self._cfg
        reason = f"broker {cfg.host}:{cfg.port} unreachable" if cfg else "broker unreachable"
        logger.error("MQTT connect failed: %s", reason)
        self._post(self._fail_attempt, client, reason)

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        self._post(self._handle_disconnected, client, reason_code)

    def _on_subscribe(
        self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: Any, properties: Any
    ) -> None:
        for rc in reason_codes or []:
            if getattr(rc, "is_failure", False):
                logger.warning("Subscription mid=%s refused by broker: %s", mid, rc)
                return
        logger.info("Subscription mid=%s acknowledged", mid)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        received_at = _utc_now()
        try:
            payload_str = msg.payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.error("Payload decode failed topic=%s err=%s", msg.topic, exc)
            return
        self._post(self._deliver_message, client, msg.topic, payload_str, received_at)
