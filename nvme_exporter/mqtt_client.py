from __future__ import annotations

import json
import logging
import ssl
from typing import Any

import paho.mqtt.client as mqtt

from nvme_exporter.config import MqttConfig
from nvme_exporter.sink import MetricsSink


def device_slug(path: str) -> str:
    """Turn a device path such as /dev/nvme0n1 into a topic segment."""
    slug = path.strip("/").replace("/", "_")
    for char in "+#":
        slug = slug.replace(char, "_")
    return slug or "_"


class MqttSink(MetricsSink):
    """Mirrors gauges to retained MQTT topics.

    Each gauge lives at ``<base_topic>/<device>/<gauge>``. Retracting a
    series publishes an empty retained payload, which clears the topic on
    the broker.
    """

    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False
        self._counters: dict[str, int] = {}

        # Set up callbacks
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            self.client.tls_set(
                ca_certs=config.ca_cert,
                cert_reqs=ssl.CERT_REQUIRED,
            )

        # Set Last Will and Testament for availability
        self.client.will_set(
            self._availability_topic,
            payload="offline",
            qos=1,
            retain=True,
        )

        self.client.reconnect_delay_set(min_delay=1, max_delay=120)

    @property
    def _availability_topic(self) -> str:
        return f"{self.config.base_topic}/status"

    @property
    def connected(self) -> bool:
        return self._connected

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if not reason_code.is_failure:
            self._connected = True
            self.logger.info(
                "Connected to MQTT broker %s:%s", self.config.host, self.config.port
            )
            self.client.publish(
                self._availability_topic,
                payload="online",
                qos=1,
                retain=True,
            )
        else:
            self._connected = False
            self.logger.error("Failed to connect to MQTT broker: %s", reason_code)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if not reason_code.is_failure:
            self.logger.info("Disconnected from MQTT broker (clean)")
        else:
            self.logger.warning(
                "Unexpectedly disconnected from MQTT broker: %s. "
                "Will attempt to reconnect.",
                reason_code,
            )

    def connect(self) -> None:
        self.logger.info(
            "Connecting to MQTT broker %s:%s", self.config.host, self.config.port
        )
        self.client.connect(
            self.config.host,
            self.config.port,
            keepalive=self.config.keepalive,
        )
        # Start the network loop in the background for automatic reconnection
        self.client.loop_start()

    def disconnect(self) -> None:
        if self._connected:
            self.client.publish(
                self._availability_topic,
                payload="offline",
                qos=1,
                retain=True,
            )
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info("Disconnected from MQTT broker")

    def _topic(self, path: str, leaf: str) -> str:
        return f"{self.config.base_topic}/{device_slug(path)}/{leaf}"

    def _publish(self, topic: str, payload: str | bytes) -> bool:
        result = self.client.publish(
            topic,
            payload=payload,
            qos=self.config.qos,
            retain=True,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish to %s, error code: %s", topic, result.rc)
            return False
        return True

    def set_info(self, path: str, model: str, serial: str, firmware: str) -> None:
        payload = json.dumps(
            {"device": path, "model": model, "serial": serial, "firmware": firmware}
        )
        self._publish(self._topic(path, "info"), payload)

    def retract_info(self, path: str) -> None:
        self._publish(self._topic(path, "info"), b"")

    def set_gauge(self, name: str, path: str, value: float) -> None:
        self._publish(self._topic(path, name), str(value))

    def retract_gauge(self, name: str, path: str) -> None:
        self._publish(self._topic(path, name), b"")

    def increment_counter(self, name: str) -> None:
        self._counters[name] = self._counters.get(name, 0) + 1
        self._publish(f"{self.config.base_topic}/{name}", str(self._counters[name]))

    def export(self) -> bytes:
        return b""
