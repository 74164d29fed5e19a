"""Realtime row-change feed delivered over MQTT."""

import asyncio
import json
import logging
import threading
from typing import Any

import paho.mqtt.client as mqtt

from ..config import RealtimeConfig
from .base import ChangeCallback, ChangeEvent, Unsubscribe

logger = logging.getLogger(__name__)


def parse_change(payload: str) -> ChangeEvent | None:
    """Decode a change message.

    Accepts the Supabase realtime shape (``type``/``record``) as well as
    ``eventType``/``new``. Returns None for deletes and malformed payloads.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring non-JSON change payload: {payload[:100]}")
        return None

    if not isinstance(data, dict):
        return None
    if data.get("errors"):
        return None

    event_type = str(data.get("type") or data.get("eventType") or "").upper()
    row = data.get("record") or data.get("new")

    # Deletes are soft updates, hard DELETE events are never applied
    if event_type not in ("INSERT", "UPDATE") or not isinstance(row, dict):
        return None
    return ChangeEvent(event_type=event_type, row=row)


class MQTTChangeFeed:
    """Per-table change subscriptions on one MQTT connection.

    Callbacks run on paho's network thread; consumers hop back onto
    their event loop themselves.
    """

    def __init__(self, config: RealtimeConfig):
        self.config = config
        self._callbacks: dict[str, list[ChangeCallback]] = {}
        self._lock = threading.Lock()

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False

    def topic_for(self, table: str) -> str:
        return f"{self.config.topic_prefix}/{table}"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to change feed at {self.config.broker}:{self.config.port}")

            # Re-subscribe after reconnects
            with self._lock:
                tables = list(self._callbacks)
            for table in tables:
                client.subscribe(self.topic_for(table))
        else:
            logger.error(f"Failed to connect to change feed: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Dispatch an incoming change to the table's subscribers."""
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Ignoring undecodable message on {msg.topic}")
            return

        table = msg.topic.rsplit("/", 1)[-1]
        event = parse_change(payload)
        if event is None:
            return

        logger.debug(f"Realtime {event.event_type} received for {table}")
        with self._lock:
            callbacks = list(self._callbacks.get(table, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Change callback for {table} failed: {e}", exc_info=True)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from change feed: {reason_code}")

    async def connect(self) -> bool:
        """Connect to the broker.

        Returns:
            True if connection successful.
        """
        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for change feed connection")
            return False

        except OSError as e:
            logger.error(f"Failed to connect to change feed: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from the broker."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    def subscribe(self, table: str, callback: ChangeCallback) -> Unsubscribe:
        """Receive changes for one table.

        Returns:
            Function that releases the subscription.
        """
        with self._lock:
            callbacks = self._callbacks.setdefault(table, [])
            first = not callbacks
            callbacks.append(callback)

        if first and self._connected:
            self._client.subscribe(self.topic_for(table))
        logger.info(f"Subscribed to changes on {self.topic_for(table)}")

        def unsubscribe() -> None:
            with self._lock:
                remaining = self._callbacks.get(table, [])
                if callback in remaining:
                    remaining.remove(callback)
                empty = not remaining
                if empty:
                    self._callbacks.pop(table, None)
            if empty and self._connected:
                self._client.unsubscribe(self.topic_for(table))
                logger.info(f"Unsubscribed from {self.topic_for(table)}")

        return unsubscribe

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected
