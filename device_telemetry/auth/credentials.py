"""
Credenciales JWT de corta duración para el bridge MQTT.

FLUJO:
1. Se lee la clave privada del dispositivo (PEM)
2. Se firma {iat, exp, aud} con RS256 o ES256
3. El token viaja como password de la conexión MQTT

SEGURIDAD:
- exp - iat es siempre la validez configurada (20 minutos por defecto)
- Un token nunca se usa para autenticar a partir de su exp
- El audience es el project id del dispositivo
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ..core.domain.identity import Identity
from ..errors import KeyReadError, SigningError

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_SECONDS = 20 * 60


class Algorithm(str, Enum):
    """Algoritmos de firma asimétrica aceptados por el bridge."""
    RS256 = "RS256"
    ES256 = "ES256"


_KEY_TYPES = {
    Algorithm.RS256: rsa.RSAPrivateKey,
    Algorithm.ES256: ec.EllipticCurvePrivateKey,
}


@dataclass(frozen=True)
class Credential:
    """Token firmado. Nunca se muta; se reemplaza completo al renovarse."""
    token: str
    issued_at: int
    expires_at: int
    audience: str
    algorithm: str

    @property
    def validity_seconds(self) -> int:
        return self.expires_at - self.issued_at

    def remaining(self, now: Optional[float] = None) -> float:
        """Segundos hasta la expiración (negativo si ya expiró)."""
        now = time.time() if now is None else now
        return self.expires_at - now

    def is_expired(self, now: Optional[float] = None) -> bool:
        return self.remaining(now) <= 0

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        return self.remaining(now) <= seconds


def _resolve_algorithm(algorithm: Union[str, Algorithm]) -> Algorithm:
    try:
        return Algorithm(algorithm)
    except ValueError:
        raise SigningError(
            f"Unsupported algorithm: {algorithm} (expected one of {[a.value for a in Algorithm]})"
        )


def load_private_key(private_key: bytes):
    """Carga una clave privada PEM sin password.

    Raises:
        KeyReadError: si los bytes no son una clave privada PEM válida
    """
    try:
        return serialization.load_pem_private_key(private_key, password=None)
    except (ValueError, TypeError) as e:
        raise KeyReadError(f"Invalid private key: {e}") from e


def mint_credential(
    identity: Identity,
    private_key: bytes,
    algorithm: Union[str, Algorithm],
    validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
    now: Optional[float] = None,
) -> Credential:
    """Firma un token {iat, exp, aud} para la identidad dada.

    Args:
        identity: Identidad del dispositivo (project_id es el audience)
        private_key: Clave privada PEM
        algorithm: RS256 o ES256
        validity_seconds: Validez del token en segundos
        now: Epoch actual (inyectable para tests)

    Returns:
        Credential con el token firmado

    Raises:
        KeyReadError: clave no cargable
        SigningError: algoritmo no soportado por la clave
    """
    if validity_seconds <= 0:
        raise ValueError("validity_seconds must be positive")

    alg = _resolve_algorithm(algorithm)
    key = load_private_key(private_key)

    if not isinstance(key, _KEY_TYPES[alg]):
        raise SigningError(
            f"Key type {type(key).__name__} cannot sign with {alg.value}"
        )

    issued_at = int(time.time() if now is None else now)
    expires_at = issued_at + int(validity_seconds)
    claims = {
        "iat": issued_at,
        "exp": expires_at,
        "aud": identity.project_id,
    }

    try:
        token = jwt.encode(claims, key, algorithm=alg.value)
    except (jwt.PyJWTError, NotImplementedError, ValueError, TypeError) as e:
        raise SigningError(f"Signing failed with {alg.value}: {e}") from e

    return Credential(
        token=token,
        issued_at=issued_at,
        expires_at=expires_at,
        audience=identity.project_id,
        algorithm=alg.value,
    )


class CredentialMinter:
    """Emite credenciales leyendo la clave del dispositivo desde disco.

    Uso:
        minter = CredentialMinter("rsa_private.pem", "RS256")
        minter.load_key()           # falla al arrancar si la clave no existe
        credential = minter.mint(identity)
    """

    def __init__(
        self,
        private_key_file: Union[str, Path],
        algorithm: Union[str, Algorithm],
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.private_key_file = Path(private_key_file)
        self.algorithm = _resolve_algorithm(algorithm)
        self.validity_seconds = int(validity_seconds)
        self._clock = clock
        self._minted = 0

    def load_key(self) -> bytes:
        """Lee los bytes de la clave privada.

        Raises:
            KeyReadError: si el archivo no existe o no es legible
        """
        try:
            return self.private_key_file.read_bytes()
        except OSError as e:
            raise KeyReadError(f"Cannot read private key file {self.private_key_file}: {e}") from e

    def mint(self, identity: Identity) -> Credential:
        """Lee la clave y firma una credencial nueva."""
        credential = mint_credential(
            identity,
            self.load_key(),
            self.algorithm,
            validity_seconds=self.validity_seconds,
            now=self._clock(),
        )
        self._minted += 1
        logger.info(
            "[AUTH] Minted %s credential aud=%s expires_at=%d",
            credential.algorithm, credential.audience, credential.expires_at,
        )
        return credential

    @property
    def minted_count(self) -> int:
        return self._minted
