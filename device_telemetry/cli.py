"""CLI entry point del publicador de telemetría del dispositivo."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional, Sequence

from common.config import Settings, get_settings

from .auth.credentials import Algorithm, CredentialMinter
from .core.domain.identity import Identity, MessageType
from .core.transport.message_handler import InboundMessageHandler
from .core.transport.session import SessionManager, TransportConfig
from .errors import ConfigError, KeyReadError, SigningError
from .sampler.runner import SensorSampler
from .scheduler import PublishCycleScheduler

logger = logging.getLogger(__name__)


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Device telemetry publisher (JWT-authenticated MQTT bridge)",
        epilog="Every option can also be set through the environment or an .env file (IOT_ENV_FILE).",
    )
    p.add_argument("--project-id", default=defaults.project_id,
                   help="Cloud project id (default: GCLOUD_PROJECT or GOOGLE_CLOUD_PROJECT)")
    p.add_argument("--cloud-region", default=defaults.cloud_region)
    p.add_argument("--registry-id", default=defaults.registry_id)
    p.add_argument("--device-id", default=defaults.device_id)
    p.add_argument("--private-key-file", default=defaults.private_key_file)
    p.add_argument("--algorithm", default=defaults.algorithm, choices=[a.value for a in Algorithm],
                   help="JWT signing algorithm")
    p.add_argument("--mqtt-bridge-hostname", default=defaults.mqtt_bridge_hostname)
    p.add_argument("--mqtt-bridge-port", type=int, default=defaults.mqtt_bridge_port)
    p.add_argument("--message-type", default=defaults.message_type, choices=[m.value for m in MessageType])
    p.add_argument("--ca-certs", default=defaults.ca_certs, help="CA bundle for the TLS connection")
    p.add_argument("--jwt-expires-minutes", type=int, default=defaults.jwt_expires_minutes)
    p.add_argument("--no-refresh", action="store_true", default=not defaults.jwt_refresh,
                   help="never re-mint the JWT after the initial connect")
    p.add_argument("--publish-interval", type=float, default=defaults.publish_interval_seconds,
                   help="seconds between publish cycles")
    p.add_argument("--sampler-command", default=defaults.sampler_command)
    p.add_argument("--once", action="store_true", help="run a single publish cycle and exit")
    p.add_argument("--log-level", default=defaults.log_level)
    return p


def parse_settings(argv: Optional[Sequence[str]] = None, defaults: Optional[Settings] = None) -> tuple[Settings, bool]:
    """Combina entorno y argumentos; valida la configuración de arranque.

    Returns:
        (settings, once)

    Raises:
        ConfigError: falta un campo obligatorio o un valor no es válido
    """
    if defaults is None:
        try:
            defaults = get_settings()
        except ValueError as e:
            raise ConfigError(f"Invalid environment configuration: {e}") from e

    args = build_parser(defaults).parse_args(argv)

    settings = replace(
        defaults,
        project_id=args.project_id,
        cloud_region=args.cloud_region,
        registry_id=args.registry_id,
        device_id=args.device_id,
        private_key_file=args.private_key_file,
        algorithm=args.algorithm,
        mqtt_bridge_hostname=args.mqtt_bridge_hostname,
        mqtt_bridge_port=args.mqtt_bridge_port,
        message_type=args.message_type,
        ca_certs=args.ca_certs,
        jwt_expires_minutes=args.jwt_expires_minutes,
        jwt_refresh=not args.no_refresh,
        publish_interval_seconds=args.publish_interval,
        sampler_command=args.sampler_command,
        log_level=args.log_level,
    )

    missing = [
        name for name in ("project_id", "registry_id", "device_id", "private_key_file", "algorithm")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigError(f"Missing required options: {', '.join(missing)}")
    if settings.algorithm not in [a.value for a in Algorithm]:
        raise ConfigError(f"Unsupported algorithm: {settings.algorithm}")
    if not 0 < settings.mqtt_bridge_port < 65536:
        raise ConfigError(f"Invalid MQTT bridge port: {settings.mqtt_bridge_port}")
    if settings.jwt_expires_minutes <= 0:
        raise ConfigError("jwt-expires-minutes must be positive")
    if settings.publish_interval_seconds <= 0:
        raise ConfigError("publish-interval must be positive")

    return settings, bool(args.once)


def build_identity(settings: Settings) -> Identity:
    return Identity(
        project_id=settings.project_id,
        cloud_region=settings.cloud_region,
        registry_id=settings.registry_id,
        device_id=settings.device_id,
        message_type=settings.message_type,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        settings, once = parse_settings(argv)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    try:
        identity = build_identity(settings)
        minter = CredentialMinter(
            settings.private_key_file,
            settings.algorithm,
            validity_seconds=settings.jwt_expires_minutes * 60,
        )
        # Credencial inicial: clave ilegible o algoritmo incompatible abortan el arranque
        credential = minter.mint(identity)
    except (ConfigError, KeyReadError, SigningError) as e:
        logger.error("Startup failed: %s", e)
        return 1

    logger.info("Device telemetry publisher started")
    logger.info(
        "Config: client_id=%s topic=%s interval=%.1fs refresh=%s",
        identity.client_id, identity.publish_topic,
        settings.publish_interval_seconds, settings.jwt_refresh,
    )

    session = SessionManager(
        identity,
        TransportConfig(
            host=settings.mqtt_bridge_hostname,
            port=settings.mqtt_bridge_port,
            ca_certs=settings.ca_certs,
        ),
        minter=minter,
        message_handler=InboundMessageHandler(),
        refresh_credentials=settings.jwt_refresh,
    )
    scheduler = PublishCycleScheduler(
        identity,
        session,
        SensorSampler(settings.sampler_command),
        interval=settings.publish_interval_seconds,
    )

    if not session.connect(credential):
        logger.warning("Client not connected, each publish cycle will try to reconnect first")

    try:
        if once:
            ok = scheduler.run_cycle() and session.wait_for_acks()
            return 0 if ok else 1
        scheduler.run_forever()
        return 0
    finally:
        session.close()
        logger.info("Session stats: %s", session.stats)


if __name__ == "__main__":
    sys.exit(main())
