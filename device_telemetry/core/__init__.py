"""Core module - Sesión autenticada del dispositivo.

Estructura:
- domain/      → Identidad del dispositivo y lecturas
- transport/   → Sesión MQTT y mensajes de configuración
- monitoring/  → Estadísticas de sesión y ciclos
"""
