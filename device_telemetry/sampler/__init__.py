"""Sampler - Proceso externo de sensores y parseo de su salida."""

from .parser import parse_sample, SAMPLE_FIELDS
from .runner import SensorSampler, DEFAULT_SAMPLER_COMMAND

__all__ = ["parse_sample", "SAMPLE_FIELDS", "SensorSampler", "DEFAULT_SAMPLER_COMMAND"]
