from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env next to where the daemon is launched (the device working dir).
    return str(Path.cwd() / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    project_id: Optional[str]
    cloud_region: str
    registry_id: Optional[str]
    device_id: Optional[str]
    private_key_file: Optional[str]
    algorithm: Optional[str]

    mqtt_bridge_hostname: str
    mqtt_bridge_port: int
    message_type: str
    ca_certs: Optional[str]

    jwt_expires_minutes: int
    jwt_refresh: bool
    publish_interval_seconds: float
    sampler_command: str
    log_level: str


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("IOT_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    project_id = os.getenv("GCLOUD_PROJECT") or os.getenv("GOOGLE_CLOUD_PROJECT") or None

    return Settings(
        project_id=project_id,
        cloud_region=os.getenv("CLOUD_REGION", "us-central1"),
        registry_id=os.getenv("REGISTRY_ID") or None,
        device_id=os.getenv("DEVICE_ID") or None,
        private_key_file=os.getenv("PRIVATE_KEY_FILE") or None,
        algorithm=os.getenv("JWT_ALGORITHM") or None,
        mqtt_bridge_hostname=os.getenv("MQTT_BRIDGE_HOSTNAME", "mqtt.googleapis.com"),
        mqtt_bridge_port=int(os.getenv("MQTT_BRIDGE_PORT", "8883")),
        message_type=os.getenv("MESSAGE_TYPE", "events"),
        ca_certs=os.getenv("CA_CERTS") or None,
        jwt_expires_minutes=int(os.getenv("JWT_EXPIRES_MINUTES", "20")),
        jwt_refresh=_env_bool("JWT_REFRESH", True),
        publish_interval_seconds=float(os.getenv("PUBLISH_INTERVAL_SECONDS", "300")),
        sampler_command=os.getenv("SAMPLER_COMMAND", "python ./pythin-grovepi/script.py"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
