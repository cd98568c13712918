"""Domain layer - Identidad del dispositivo y lecturas."""

from .identity import Identity, MessageType
from .reading import ReadingRecord

__all__ = ["Identity", "MessageType", "ReadingRecord"]
