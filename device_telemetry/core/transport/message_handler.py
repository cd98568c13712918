"""Handler de mensajes de configuración recibidos del broker."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundConfigMessage:
    """Mensaje de configuración entregado por el broker."""
    topic: str
    raw_payload: bytes
    text: str
    received_at: float


def decode_payload(payload: bytes) -> str:
    """Decodifica el payload a texto.

    Si el payload es base64 válido se decodifica primero; si no, se
    interpreta directamente como UTF-8.
    """
    try:
        decoded = base64.b64decode(payload, validate=True)
        if decoded:
            return decoded.decode("utf-8")
    except (binascii.Error, ValueError):
        pass
    return payload.decode("utf-8", errors="replace")


class InboundMessageHandler:
    """Decodifica mensajes de configuración y los delega.

    Responsabilidades:
    - Decodificación del payload
    - Delegación al consumidor de configuración
    - Conteo de recibidos/fallidos
    """

    def __init__(self, consumer: Optional[Callable[[InboundConfigMessage], None]] = None):
        self._consumer = consumer
        self.received = 0
        self.failed = 0

    def handle(self, topic: str, payload: bytes):
        """Procesa un mensaje entrante. Nunca propaga excepciones."""
        self.received += 1

        try:
            text = decode_payload(payload)
            logger.info("[HANDLER] Message received on %s: %s", topic, text)

            if self._consumer is not None:
                self._consumer(
                    InboundConfigMessage(
                        topic=topic,
                        raw_payload=payload,
                        text=text,
                        received_at=time.time(),
                    )
                )
        except Exception as e:
            logger.exception("[HANDLER] Error: %s", e)
            self.failed += 1

    __call__ = handle
