"""Transport layer - Sesión MQTT y mensajes entrantes."""

from .session import SessionManager, SessionState, TransportConfig, PLACEHOLDER_USERNAME
from .message_handler import InboundConfigMessage, InboundMessageHandler, decode_payload

__all__ = [
    "SessionManager",
    "SessionState",
    "TransportConfig",
    "PLACEHOLDER_USERNAME",
    "InboundConfigMessage",
    "InboundMessageHandler",
    "decode_payload",
]
