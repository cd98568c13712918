"""Identidad del dispositivo y nombres derivados (client id, topics)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import cached_property

from ...errors import ConfigError


class MessageType(str, Enum):
    """Tipo de mensaje publicado por el dispositivo."""
    EVENTS = "events"
    STATE = "state"


@dataclass(frozen=True)
class Identity:
    """Identidad inmutable del dispositivo durante la vida del proceso.

    El client id y los topics son funciones puras de estos campos y se
    calculan una sola vez.
    """
    project_id: str
    cloud_region: str
    registry_id: str
    device_id: str
    message_type: str = MessageType.EVENTS.value

    def __post_init__(self):
        for name in ("project_id", "cloud_region", "registry_id", "device_id"):
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ConfigError(f"{name} is required")
        try:
            MessageType(self.message_type)
        except ValueError:
            raise ConfigError(
                f"message_type must be one of {[m.value for m in MessageType]}, got: {self.message_type}"
            )

    @cached_property
    def client_id(self) -> str:
        return (
            f"projects/{self.project_id}/locations/{self.cloud_region}"
            f"/registries/{self.registry_id}/devices/{self.device_id}"
        )

    @cached_property
    def publish_topic(self) -> str:
        return f"/devices/{self.device_id}/{self.message_type}"

    @cached_property
    def config_topic(self) -> str:
        return f"/devices/{self.device_id}/config"
