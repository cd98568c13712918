"""Ejecución del proceso externo de muestreo de sensores."""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Optional, Sequence, Union

from ..errors import SamplerExecutionError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLER_COMMAND = "python ./pythin-grovepi/script.py"


class SensorSampler:
    """Lanza el script de sensores y devuelve su línea de salida.

    Se invoca una vez por ciclo. Puede bloquear; por eso el scheduler lo
    ejecuta en su propio hilo y nunca en el hilo de red de paho.
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]] = DEFAULT_SAMPLER_COMMAND,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout
        self.cwd = cwd

        if not self.command:
            raise ValueError("sampler command is empty")

    def sample(self) -> str:
        """Ejecuta el muestreador y devuelve stdout sin saltos de línea.

        Raises:
            SamplerExecutionError: ejecutable ausente, timeout o exit code != 0
        """
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SamplerExecutionError(f"Sampler timed out after {e.timeout}s") from e
        except OSError as e:
            raise SamplerExecutionError(f"Sampler could not be started: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise SamplerExecutionError(
                f"Sampler exited with code {result.returncode}: {stderr[:500]}",
                returncode=result.returncode,
                stderr=stderr,
            )

        output = (result.stdout or "").replace("\r", "").replace("\n", "")
        logger.debug("[SAMPLER] Output: %s", output)
        return output
