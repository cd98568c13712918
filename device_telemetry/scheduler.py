"""Scheduler de ciclos de publicación.

Cada tick: muestreador → parseo → JSON → SessionManager.publish (qos=1).

Corre en su propio hilo para que un muestreador lento nunca bloquee el hilo
de red de paho (keepalive y mensajes de configuración siguen fluyendo).
Si la sesión no está conectada el tick se pierde: no hay buffer ni cola de
reintentos.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from .core.domain.identity import Identity
from .core.monitoring.stats import CycleStats
from .core.transport.session import SessionManager
from .errors import MalformedSampleError, SamplerExecutionError
from .sampler.parser import parse_sample
from .sampler.runner import SensorSampler

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_INTERVAL = 300.0
PUBLISH_QOS = 1


class PublishCycleScheduler:
    """Dispara ciclos de muestreo + publicación con periodo fijo.

    - start() → hilo daemon que ejecuta run_cycle() cada `interval` segundos
    - stop() → detiene el hilo (el ciclo en curso termina)
    - run_cycle() → un único ciclo, nunca lanza excepciones
    """

    def __init__(
        self,
        identity: Identity,
        session: SessionManager,
        sampler: SensorSampler,
        interval: float = DEFAULT_PUBLISH_INTERVAL,
        first_delay: Optional[float] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._identity = identity
        self._session = session
        self._sampler = sampler
        self.interval = interval
        self.first_delay = interval if first_delay is None else first_delay

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stats = CycleStats()

    def run_cycle(self) -> bool:
        """Ejecuta un ciclo completo.

        Returns:
            True si la lectura se entregó al transporte
        """
        self._stats.cycles += 1
        self._stats.last_cycle_at = time.time()

        self._session.refresh_if_needed()

        try:
            raw = self._sampler.sample()
        except SamplerExecutionError as e:
            self._stats.sampler_errors += 1
            logger.error("[SCHEDULER] Sampler error: %s", e)
            return False

        try:
            record = parse_sample(raw)
        except MalformedSampleError as e:
            self._stats.malformed += 1
            logger.warning("[SCHEDULER] Malformed sample %r: %s", e.raw, e)
            return False

        payload = record.to_json(self._identity)
        logger.info("[SCHEDULER] Publish: %s", payload)

        if not self._session.publish(self._identity.publish_topic, payload, qos=PUBLISH_QOS):
            self._stats.publish_failed += 1
            logger.warning("[SCHEDULER] Publish dropped (state=%s)", self._session.state.value)
            return False

        self._stats.succeeded += 1
        if self._stats.succeeded % 10 == 0:
            logger.info("[SCHEDULER] %s", self._stats)
        return True

    def _loop(self):
        delay = self.first_delay
        while not self._stop_event.wait(delay):
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("[SCHEDULER] Unexpected cycle error: %s", e)
            delay = self.interval

    def start(self) -> None:
        """Inicia el hilo del scheduler."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="publish-cycle-scheduler",
        )
        self._thread.start()
        logger.info(
            "[SCHEDULER] Started interval=%.1fs first_delay=%.1fs topic=%s",
            self.interval, self.first_delay, self._identity.publish_topic,
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Detiene el scheduler."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("[SCHEDULER] Stopped. %s", self._stats)

    def run_forever(self) -> None:
        """Bloquea hasta stop() o KeyboardInterrupt."""
        self.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("[SCHEDULER] Interrupted")
        finally:
            self.stop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return self._stats.to_dict()
