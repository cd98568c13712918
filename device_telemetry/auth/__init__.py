"""Módulo de autenticación del dispositivo frente al bridge MQTT."""

from .credentials import (
    Algorithm,
    Credential,
    CredentialMinter,
    DEFAULT_VALIDITY_SECONDS,
    load_private_key,
    mint_credential,
)

__all__ = [
    "Algorithm",
    "Credential",
    "CredentialMinter",
    "DEFAULT_VALIDITY_SECONDS",
    "load_private_key",
    "mint_credential",
]
