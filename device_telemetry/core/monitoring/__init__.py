"""Monitoring layer - Métricas de sesión y de ciclos."""

from .stats import CycleStats, SessionStats

__all__ = ["CycleStats", "SessionStats"]
