"""Estadísticas de la sesión y de los ciclos de publicación."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class SessionStats:
    """Contadores de la sesión MQTT.

    Se actualizan desde el hilo de paho y desde el scheduler, por eso cada
    incremento pasa por `incr`.
    """

    connects: int = 0
    connect_failures: int = 0
    disconnects: int = 0
    reconnects: int = 0
    credentials_refreshed: int = 0
    published: int = 0
    acknowledged: int = 0
    publish_failed: int = 0
    messages_received: int = 0
    errors: int = 0
    last_publish_at: float = 0
    last_message_at: float = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def __str__(self) -> str:
        return (
            f"Stats: published={self.published} acked={self.acknowledged} "
            f"publish_failed={self.publish_failed} received={self.messages_received} "
            f"connects={self.connects} disconnects={self.disconnects}"
        )

    def to_dict(self) -> dict:
        """Convierte a diccionario."""
        with self._lock:
            return {
                "connects": self.connects,
                "connect_failures": self.connect_failures,
                "disconnects": self.disconnects,
                "reconnects": self.reconnects,
                "credentials_refreshed": self.credentials_refreshed,
                "published": self.published,
                "acknowledged": self.acknowledged,
                "publish_failed": self.publish_failed,
                "messages_received": self.messages_received,
                "errors": self.errors,
                "last_publish_at": self.last_publish_at,
                "last_message_at": self.last_message_at,
                "started_at": self.started_at.isoformat(),
                "success_rate": self._success_rate(),
            }

    def _success_rate(self) -> float:
        """Calcula tasa de éxito de publicación."""
        total = self.published + self.publish_failed
        if total == 0:
            return 1.0
        return self.published / total


@dataclass
class CycleStats:
    """Estadísticas de los ciclos del scheduler."""

    cycles: int = 0
    succeeded: int = 0
    sampler_errors: int = 0
    malformed: int = 0
    publish_failed: int = 0
    last_cycle_at: float = 0

    def __str__(self) -> str:
        return (
            f"Cycles: total={self.cycles} ok={self.succeeded} sampler_errors={self.sampler_errors} "
            f"malformed={self.malformed} publish_failed={self.publish_failed}"
        )

    def to_dict(self) -> dict:
        return {
            "cycles": self.cycles,
            "succeeded": self.succeeded,
            "sampler_errors": self.sampler_errors,
            "malformed": self.malformed,
            "publish_failed": self.publish_failed,
            "last_cycle_at": self.last_cycle_at,
        }
