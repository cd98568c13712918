"""Taxonomía de errores del publicador de telemetría.

Solo ConfigError y los errores de la credencial inicial son fatales
(se lanzan antes de abrir la conexión). El resto se registra y se entrega
a los observadores de la sesión sin detener el proceso.
"""

from __future__ import annotations

from typing import Optional


class DeviceTelemetryError(Exception):
    """Base de todos los errores del publicador."""


class ConfigError(DeviceTelemetryError):
    """Configuración de arranque inválida o incompleta."""


class KeyReadError(DeviceTelemetryError):
    """No se pudo leer o cargar la clave privada."""


class SigningError(DeviceTelemetryError):
    """El algoritmo no es soportado por el material de la clave."""


class ConnectError(DeviceTelemetryError):
    """El broker rechazó la conexión o el transporte falló al conectar."""

    def __init__(self, message: str, reason_code: Optional[int] = None):
        super().__init__(message)
        self.reason_code = reason_code


class PublishError(DeviceTelemetryError):
    """Una publicación no pudo entregarse al transporte."""

    def __init__(self, message: str, topic: Optional[str] = None):
        super().__init__(message)
        self.topic = topic


class TransportError(DeviceTelemetryError):
    """Cierre o error genérico del transporte."""

    def __init__(self, message: str, reason_code: Optional[int] = None):
        super().__init__(message)
        self.reason_code = reason_code


class SubscribeError(TransportError):
    """Fallo al suscribirse a un topic."""


class SamplerExecutionError(DeviceTelemetryError):
    """El proceso de muestreo no pudo ejecutarse o terminó con error."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class MalformedSampleError(DeviceTelemetryError):
    """La salida del muestreador no respeta el formato esperado."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
