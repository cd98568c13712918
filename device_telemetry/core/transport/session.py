"""Sesión MQTT autenticada con JWT contra el bridge del proveedor.

Máquina de estados:

    DISCONNECTED → CONNECTING → CONNECTED → CLOSING → DISCONNECTED
                     ↓               ↓
                DISCONNECTED    DISCONNECTED   (rechazo, error o cierre inesperado)

Las transiciones pasan todas por `_transition`. Los callbacks de paho
(hilo de red) son los únicos que confirman CONNECTED y detectan cierres;
el resto de componentes solo lee el estado.
"""

from __future__ import annotations

import logging
import ssl
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from ...auth.credentials import Credential, CredentialMinter
from ...errors import (
    ConnectError,
    DeviceTelemetryError,
    KeyReadError,
    PublishError,
    SigningError,
    SubscribeError,
    TransportError,
)
from ..domain.identity import Identity
from ..monitoring.stats import SessionStats

logger = logging.getLogger(__name__)

# El bridge ignora el usuario; solo el JWT autentica.
PLACEHOLDER_USERNAME = "unused"
DEFAULT_REFRESH_MARGIN = 60.0


class SessionState(Enum):
    """Estado de la conexión con el broker."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


_ALLOWED_TRANSITIONS = {
    SessionState.DISCONNECTED: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.CONNECTED, SessionState.DISCONNECTED, SessionState.CLOSING},
    SessionState.CONNECTED: {SessionState.CLOSING, SessionState.DISCONNECTED},
    SessionState.CLOSING: {SessionState.DISCONNECTED},
}


@dataclass(frozen=True)
class TransportConfig:
    """Parámetros del endpoint MQTT."""
    host: str = "mqtt.googleapis.com"
    port: int = 8883
    ca_certs: Optional[str] = None
    keepalive: int = 60
    connect_timeout: float = 10.0
    tls_enabled: bool = True


def _rc_value(reason_code) -> int:
    """Normaliza ReasonCode de paho (o int) a entero."""
    return int(getattr(reason_code, "value", reason_code))


def _rc_failed(reason_code) -> bool:
    failure = getattr(reason_code, "is_failure", None)
    if failure is not None:
        return bool(failure)
    return _rc_value(reason_code) != 0


def _default_client_factory(identity: Identity, config: TransportConfig) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=identity.client_id,
        protocol=mqtt.MQTTv311,
    )
    if config.tls_enabled:
        client.tls_set(ca_certs=config.ca_certs, tls_version=ssl.PROTOCOL_TLSv1_2)
    return client


class SessionManager:
    """Dueño exclusivo de la conexión MQTT del dispositivo.

    Responsabilidades:
    - Conexión con una credencial vigente (el JWT va como password)
    - Suscripción automática al topic de configuración al conectar
    - Publicación en el topic de telemetría
    - Renovación de la credencial antes de expirar (si está habilitada)
    - Entrega de errores a observadores, nunca excepciones al host

    Uso:
        session = SessionManager(identity, TransportConfig(), minter)
        session.add_error_observer(lambda err: ...)
        session.connect()
        session.publish(identity.publish_topic, payload, qos=1)
        session.close()
    """

    def __init__(
        self,
        identity: Identity,
        transport_config: TransportConfig,
        minter: Optional[CredentialMinter] = None,
        client_factory: Optional[Callable[[Identity, TransportConfig], mqtt.Client]] = None,
        message_handler: Optional[Callable[[str, bytes], None]] = None,
        refresh_credentials: bool = True,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], float] = time.time,
    ):
        self.identity = identity
        self.transport_config = transport_config
        self._minter = minter
        self._client_factory = client_factory or _default_client_factory
        self._message_handler = message_handler
        self.refresh_credentials = refresh_credentials
        self.refresh_margin = refresh_margin
        self._clock = clock

        self._client: Optional[mqtt.Client] = None
        self._state = SessionState.DISCONNECTED
        self._credential: Optional[Credential] = None
        self._subscriptions: set[str] = set()
        self._pending_subscriptions: dict[int, str] = {}
        self._state_lock = threading.Lock()
        self._subs_lock = threading.Lock()
        self._transport_stopped = True
        self._closed = False
        self._connack = threading.Event()
        self._error_observers: list[Callable[[DeviceTelemetryError], None]] = []
        self._stats = SessionStats()

    # ------------------------------------------------------------------
    # Observadores
    # ------------------------------------------------------------------

    def set_message_handler(self, handler: Optional[Callable[[str, bytes], None]]):
        """Configura el handler de mensajes entrantes."""
        self._message_handler = handler

    def add_error_observer(self, observer: Callable[[DeviceTelemetryError], None]):
        if observer not in self._error_observers:
            self._error_observers.append(observer)

    def remove_error_observer(self, observer: Callable[[DeviceTelemetryError], None]):
        if observer in self._error_observers:
            self._error_observers.remove(observer)

    def _report(self, error: DeviceTelemetryError):
        self._stats.incr("errors")
        logger.error("[SESSION] %s: %s", type(error).__name__, error)
        for observer in list(self._error_observers):
            try:
                observer(error)
            except Exception as e:
                logger.exception("[SESSION] Error observer failed: %s", e)

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> bool:
        with self._state_lock:
            old_state = self._state
            if new_state not in _ALLOWED_TRANSITIONS[old_state]:
                logger.debug("[SESSION] Ignored transition %s -> %s", old_state.value, new_state.value)
                return False
            self._state = new_state
        logger.info("[SESSION] %s -> %s", old_state.value, new_state.value)
        return True

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    @property
    def subscriptions(self) -> frozenset[str]:
        with self._subs_lock:
            return frozenset(self._subscriptions)

    @property
    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "broker": f"{self.transport_config.host}:{self.transport_config.port}",
            "client_id": self.identity.client_id,
            "subscriptions": sorted(self.subscriptions),
            "credential_expires_at": self._credential.expires_at if self._credential else None,
            **self._stats.to_dict(),
        }

    def health_check(self) -> dict:
        now = self._clock()
        return {
            "healthy": self.is_connected and self._credential is not None and not self._credential.is_expired(now),
            "state": self._state.value,
            "connected": self.is_connected,
            "credential_remaining_seconds": self._credential.remaining(now) if self._credential else None,
            "published": self._stats.published,
            "publish_failed": self._stats.publish_failed,
        }

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def _mint(self) -> Optional[Credential]:
        if self._minter is None:
            self._report(ConnectError("No credential available and no minter configured"))
            return None
        try:
            return self._minter.mint(self.identity)
        except (KeyReadError, SigningError) as e:
            self._report(e)
            return None

    def connect(self, credential: Optional[Credential] = None) -> bool:
        """Conecta al broker con la credencial dada (o una recién emitida).

        Llamar a connect estando CONNECTING o CONNECTED no hace nada.

        Returns:
            True si el broker confirmó la conexión
        """
        if self._state in (SessionState.CONNECTED, SessionState.CONNECTING):
            logger.info("[SESSION] connect() ignored, already %s", self._state.value)
            return self.is_connected

        if credential is None or credential.is_expired(self._clock()):
            if credential is not None:
                logger.warning("[SESSION] Credential expired at %d, minting a new one", credential.expires_at)
            credential = self._mint()
            if credential is None:
                self._stats.incr("connect_failures")
                return False

        if not self._transition(SessionState.CONNECTING):
            return self.is_connected

        self._closed = False
        self._teardown_client()
        self._credential = credential
        self._connack.clear()

        cfg = self.transport_config
        try:
            client = self._client_factory(self.identity, cfg)
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message
            client.on_publish = self._on_publish
            client.on_subscribe = self._on_subscribe
            client.on_pre_connect = self._on_pre_connect
            client.username_pw_set(PLACEHOLDER_USERNAME, credential.token)
            self._client = client
            self._transport_stopped = False

            logger.info("[SESSION] Connecting to %s:%d as %s", cfg.host, cfg.port, self.identity.client_id)
            client.connect(cfg.host, cfg.port, keepalive=cfg.keepalive)
            client.loop_start()
        except Exception as e:
            self._transition(SessionState.DISCONNECTED)
            self._stats.incr("connect_failures")
            self._teardown_client()
            self._report(ConnectError(f"Transport error while connecting: {e}"))
            return False

        if not self._connack.wait(cfg.connect_timeout):
            if self._transition(SessionState.DISCONNECTED):
                self._stats.incr("connect_failures")
                self._teardown_client(disconnect=True)
                self._report(ConnectError(f"No CONNACK within {cfg.connect_timeout}s"))

        return self.is_connected

    def close(self):
        """Cierra la sesión. Seguro en cualquier estado."""
        self._closed = True
        if self._transition(SessionState.CLOSING):
            client = self._client
            if client is not None:
                try:
                    client.disconnect()
                except Exception as e:
                    logger.warning("[SESSION] Disconnect error: %s", e)
            self._teardown_client()
            self._clear_subscriptions()
            self._transition(SessionState.DISCONNECTED)
            logger.info("[SESSION] Closed. %s", self._stats)
        else:
            self._teardown_client()

    def _teardown_client(self, disconnect: bool = False):
        client, self._client = self._client, None
        self._transport_stopped = True
        if client is None:
            return
        try:
            if disconnect:
                client.disconnect()
        except Exception as e:
            logger.warning("[SESSION] Disconnect error: %s", e)
        try:
            client.loop_stop()
        except Exception as e:
            logger.warning("[SESSION] loop_stop error: %s", e)

    def refresh_if_needed(self) -> bool:
        """Renueva la credencial si expira dentro del margen.

        Hace una reconexión controlada con la nueva credencial. Si el
        transporte quedó detenido (conexión inicial fallida, CONNACK
        rechazado o sin respuesta) vuelve a conectar con una credencial
        vigente; mientras paho siga reintentando por su cuenta no hace nada.
        Tras close() no reconecta.

        Returns:
            True si hubo renovación o reconexión y la sesión quedó conectada
        """
        if self._state is SessionState.DISCONNECTED and self._transport_stopped and not self._closed:
            return self._reconnect()

        if not self.refresh_credentials or not self.is_connected or self._credential is None:
            return False
        if not self._credential.expires_within(self.refresh_margin, self._clock()):
            return False

        logger.info(
            "[SESSION] Credential expires in %.0fs, refreshing",
            self._credential.remaining(self._clock()),
        )
        credential = self._mint()
        if credential is None:
            return False

        self._stats.incr("credentials_refreshed")
        self.close()
        return self.connect(credential)

    def _reconnect(self) -> bool:
        credential = self._credential
        if credential is not None and credential.expires_within(self.refresh_margin, self._clock()):
            credential = None

        logger.info("[SESSION] Transport stopped, reconnecting")
        self._stats.incr("reconnects")
        return self.connect(credential)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload, qos: int = 1) -> bool:
        """Publica un payload. Solo válido en CONNECTED.

        Returns:
            True si el transporte aceptó el mensaje
        """
        client = self._client
        if not self.is_connected or client is None:
            self._stats.incr("publish_failed")
            self._report(PublishError(f"Not connected (state={self._state.value})", topic=topic))
            return False

        try:
            info = client.publish(topic, payload, qos=qos)
        except Exception as e:
            self._stats.incr("publish_failed")
            self._report(PublishError(f"Publish raised: {e}", topic=topic))
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._stats.incr("publish_failed")
            self._report(PublishError(f"Publish failed: {mqtt.error_string(info.rc)}", topic=topic))
            return False

        self._stats.incr("published")
        self._stats.last_publish_at = time.time()
        logger.debug("[SESSION] Published mid=%s topic=%s", info.mid, topic)
        return True

    def wait_for_acks(self, timeout: float = 5.0) -> bool:
        """Espera a que el broker confirme todas las publicaciones qos=1."""
        deadline = time.monotonic() + timeout
        while self._stats.acknowledged < self._stats.published:
            if time.monotonic() >= deadline or not self.is_connected:
                return False
            time.sleep(0.1)
        return True

    def _clear_subscriptions(self):
        with self._subs_lock:
            self._subscriptions.clear()
            self._pending_subscriptions.clear()

    def _subscribe(self, client: mqtt.Client, topic: str, qos: int = 1):
        with self._subs_lock:
            if topic in self._subscriptions:
                return
        try:
            result, mid = client.subscribe(topic, qos=qos)
        except Exception as e:
            self._report(SubscribeError(f"Subscribe to {topic} raised: {e}"))
            return

        if result != mqtt.MQTT_ERR_SUCCESS:
            self._report(SubscribeError(f"Subscribe to {topic} failed: {mqtt.error_string(result)}", result))
            return

        with self._subs_lock:
            self._subscriptions.add(topic)
            self._pending_subscriptions[mid] = topic
        logger.info("[SESSION] Subscribed to %s", topic)

    # ------------------------------------------------------------------
    # Callbacks de paho (hilo de red)
    # ------------------------------------------------------------------

    def _on_pre_connect(self, client, userdata):
        """Callback previo a cada (re)conexión del transporte."""
        if client is not self._client:
            return
        self._ensure_fresh_credential(client)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de conexión."""
        if client is not self._client:
            return

        if _rc_failed(reason_code):
            self._transition(SessionState.DISCONNECTED)
            self._stats.incr("connect_failures")
            # Sin reintento automático con una credencial rechazada;
            # refresh_if_needed() vuelve a conectar con una nueva.
            self._transport_stopped = True
            self._connack.set()
            try:
                client.disconnect()
            except Exception as e:
                logger.warning("[SESSION] Disconnect after refusal failed: %s", e)
            self._report(ConnectError(f"Connection refused: {reason_code}", _rc_value(reason_code)))
            return

        if self._state is SessionState.DISCONNECTED:
            # Reconexión automática del transporte
            self._transition(SessionState.CONNECTING)
        if not self._transition(SessionState.CONNECTED):
            self._connack.set()
            return

        self._stats.incr("connects")
        self._connack.set()
        logger.info("[SESSION] Connected to broker")
        self._subscribe(client, self.identity.config_topic, qos=1)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de desconexión."""
        if client is not self._client and self._state is not SessionState.CLOSING:
            return

        self._clear_subscriptions()
        self._stats.incr("disconnects")

        if self._state is SessionState.CLOSING:
            self._transition(SessionState.DISCONNECTED)
            logger.info("[SESSION] Connection closed")
            return

        if self._transition(SessionState.DISCONNECTED):
            self._report(TransportError(f"Connection lost: {reason_code}", _rc_value(reason_code)))
            self._ensure_fresh_credential(client)

    def _ensure_fresh_credential(self, client):
        """Instala una credencial nueva en el cliente si la actual no sirve.

        Una credencial expirada se reemplaza siempre; una próxima a expirar
        solo con la renovación habilitada.
        """
        credential = self._credential
        if credential is None:
            return
        now = self._clock()
        if not credential.is_expired(now):
            if not self.refresh_credentials or not credential.expires_within(self.refresh_margin, now):
                return

        fresh = self._mint()
        if fresh is None:
            return
        self._credential = fresh
        self._stats.incr("credentials_refreshed")
        client.username_pw_set(PLACEHOLDER_USERNAME, fresh.token)
        logger.info("[SESSION] Installed fresh credential for transport reconnect")

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje - delega al handler."""
        self._stats.incr("messages_received")
        self._stats.last_message_at = time.time()
        if self._message_handler is None:
            return
        try:
            self._message_handler(msg.topic, msg.payload)
        except Exception as e:
            logger.exception("[SESSION] Message handler error: %s", e)

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        """Callback de PUBACK."""
        self._stats.incr("acknowledged")
        logger.info("[SESSION] Publish success mid=%s", mid)

    def _on_subscribe(self, client, userdata, mid, reason_codes=None, properties=None):
        """Callback de SUBACK."""
        with self._subs_lock:
            topic = self._pending_subscriptions.pop(mid, None)
        if topic is None:
            return
        if any(_rc_failed(rc) for rc in (reason_codes or [])):
            with self._subs_lock:
                self._subscriptions.discard(topic)
            self._report(SubscribeError(f"Broker refused subscription to {topic}"))
