"""Parser de la salida del muestreador de sensores.

Formato esperado (una sola línea):
    timestamp,temperature,humidity,moisture,light

El timestamp se pasa tal cual; los cuatro campos restantes deben ser
numéricos y finitos. Cualquier otra cosa falla el ciclo en lugar de
publicar NaN.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..core.domain.reading import ReadingRecord
from ..errors import MalformedSampleError

logger = logging.getLogger(__name__)

SAMPLE_FIELDS = ("timestamp", "temperature", "humidity", "moisture", "light")


def parse_sample(raw: str) -> ReadingRecord:
    """Convierte la línea del muestreador en un ReadingRecord.

    Raises:
        MalformedSampleError: número de campos incorrecto o campos no numéricos
    """
    line = raw.replace("\r", "").replace("\n", "").strip()
    fields = [f.strip() for f in line.split(",")]

    if len(fields) != len(SAMPLE_FIELDS):
        raise MalformedSampleError(
            f"Expected {len(SAMPLE_FIELDS)} fields, got {len(fields)}",
            raw=raw,
        )

    try:
        return ReadingRecord(**dict(zip(SAMPLE_FIELDS, fields)))
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise MalformedSampleError(f"Invalid sample: {errors}", raw=raw) from e
