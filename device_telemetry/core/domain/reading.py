"""Modelo de dominio para lecturas de sensores del dispositivo."""

from __future__ import annotations

import json
import math
from typing import Any

from pydantic import BaseModel, field_validator

from .identity import Identity


class ReadingRecord(BaseModel):
    """Lectura de un ciclo de publicación.

    Se construye a partir de la línea del muestreador, se serializa y se
    descarta tras el intento de publicación.
    """

    timestamp: str
    temperature: float
    humidity: float
    moisture: float
    light: float

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v):
        if not v or not v.strip():
            raise ValueError("timestamp is required")
        return v.strip()

    @field_validator("temperature", "humidity", "moisture", "light")
    @classmethod
    def validate_finite(cls, v):
        if math.isnan(v):
            raise ValueError("Value is NaN")
        if math.isinf(v):
            raise ValueError("Value is infinite")
        return v

    def to_payload(self, identity: Identity) -> dict[str, Any]:
        """Convierte al objeto JSON publicado en el topic de telemetría."""
        return {
            "registryid": identity.registry_id,
            "deviceid": identity.device_id,
            "timestamp": self.timestamp,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "moisture": self.moisture,
            "light": self.light,
        }

    def to_json(self, identity: Identity) -> str:
        return json.dumps(self.to_payload(identity))
