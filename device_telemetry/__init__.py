"""Publicador de telemetría del dispositivo.

Este paquete proporciona:
- Credenciales JWT de corta duración (auth/)
- Sesión MQTT autenticada con suscripción al topic de configuración (core/transport/)
- Muestreo del proceso de sensores y parseo de su salida (sampler/)
- Scheduler de ciclos de publicación (scheduler.py)
"""

from .core.domain import Identity, ReadingRecord
from .core.transport import InboundMessageHandler, SessionManager, SessionState, TransportConfig
from .scheduler import PublishCycleScheduler

__all__ = [
    "Identity",
    "ReadingRecord",
    "InboundMessageHandler",
    "SessionManager",
    "SessionState",
    "TransportConfig",
    "PublishCycleScheduler",
]
