"""Fixtures compartidos de los tests del publicador."""

from typing import Callable
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from device_telemetry.auth.credentials import CredentialMinter
from device_telemetry.core.domain.identity import Identity
from device_telemetry.core.transport.session import SessionManager, TransportConfig


def _pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def rsa_pem(rsa_key) -> bytes:
    return _pem(rsa_key)


@pytest.fixture(scope="session")
def ec_pem(ec_key) -> bytes:
    return _pem(ec_key)


@pytest.fixture
def rsa_key_file(tmp_path, rsa_pem):
    path = tmp_path / "rsa_private.pem"
    path.write_bytes(rsa_pem)
    return path


@pytest.fixture
def identity() -> Identity:
    return Identity(
        project_id="p",
        cloud_region="us-central1",
        registry_id="r1",
        device_id="d1",
        message_type="events",
    )


@pytest.fixture
def clock():
    """Reloj controlable: clock.now se puede mover en el test."""

    class FakeClock:
        now = 1_700_000_000.0

        def __call__(self) -> float:
            return self.now

    return FakeClock()


@pytest.fixture
def minter(rsa_key_file, clock) -> CredentialMinter:
    return CredentialMinter(rsa_key_file, "RS256", validity_seconds=20 * 60, clock=clock)


def _publish_info(rc: int = 0, mid: int = 1):
    info = MagicMock()
    info.rc = rc
    info.mid = mid
    return info


@pytest.fixture
def mqtt_client():
    """Cliente paho simulado; loop_start no hace nada por defecto."""
    client = MagicMock()
    client.subscribe.return_value = (0, 7)
    client.publish.return_value = _publish_info()
    return client


@pytest.fixture
def make_session(identity, minter, mqtt_client, clock) -> Callable[..., SessionManager]:
    """Crea un SessionManager cuyo cliente paho es `mqtt_client`.

    Con connack=0 (o un código de rechazo) el CONNACK se simula al llamar a
    loop_start; con connack=None el broker nunca responde.
    """

    def _make(connack=0, **kwargs) -> SessionManager:
        kwargs.setdefault("minter", minter)
        kwargs.setdefault("clock", clock)
        session = SessionManager(
            identity,
            TransportConfig(host="mqtt.example.com", port=8883, connect_timeout=0.2),
            client_factory=lambda ident, cfg: mqtt_client,
            **kwargs,
        )
        if connack is not None:
            mqtt_client.loop_start.side_effect = lambda: session._on_connect(
                mqtt_client, None, {}, connack, None
            )
        else:
            mqtt_client.loop_start.side_effect = None
        return session

    return _make
